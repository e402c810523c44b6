from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from annotator.config import settings
from annotator.api import songs


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None]:
    yield
    # Release the catalog's pooled HTTP connections
    await songs.close_song_service()


app = FastAPI(
    title="Lyrics Annotation API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# API routes
app.include_router(songs.router, prefix="/api/songs", tags=["songs"])


@app.get("/api/health")
async def health_check() -> dict[str, str]:
    return {"status": "ok"}
