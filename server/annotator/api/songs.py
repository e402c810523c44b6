import asyncio
import json
import logging
from collections.abc import AsyncGenerator

from fastapi import APIRouter, HTTPException
from fastapi.responses import StreamingResponse

from annotator.errors import LyricsNotFoundError, ValidationError
from annotator.models.annotation import (
    AnnotationResult,
    ClearCachedDataRequest,
    FetchLyricsRequest,
    FuriganaStreamRequest,
    LineEvent,
    SearchLyricsRequest,
    SoramimiStreamRequest,
    TranslateStreamRequest,
)
from annotator.services.catalog import KugouCatalog
from annotator.services.llm_service import LLMService
from annotator.services.song_service import AnnotationJob, SongService
from annotator.services.storage import song_store

router = APIRouter()
logger = logging.getLogger(__name__)

NDJSON = "application/x-ndjson"

_service: SongService | None = None


def get_song_service() -> SongService:
    global _service
    if _service is None:
        _service = SongService(song_store, KugouCatalog(), LLMService())
    return _service


async def close_song_service() -> None:
    global _service
    if _service is not None:
        await _service.catalog.aclose()
        _service = None


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, LyricsNotFoundError):
        return HTTPException(status_code=404, detail=str(exc) or "Lyrics not found")
    return HTTPException(status_code=400, detail=str(exc))


def _dumps(payload: dict) -> str:
    return json.dumps(payload, ensure_ascii=False) + "\n"


def _line_payload(job: AnnotationJob, event: LineEvent) -> dict:
    payload: dict = {"type": "line", "lineIndex": event.line_index}
    if job.kind == "translation":
        payload["translation"] = event.text
    else:
        payload[job.kind] = [seg.model_dump(by_alias=True, exclude_none=True) for seg in event.segments]
    payload["progress"] = event.progress
    return payload


def _complete_payload(job: AnnotationJob, result: AnnotationResult) -> dict:
    payload: dict = {
        "type": "complete",
        "totalLines": job.total_lines,
        "successCount": result.completed_count,
    }
    if job.kind == "translation":
        payload["translations"] = result.texts()
    else:
        payload[job.kind] = [
            [seg.model_dump(by_alias=True, exclude_none=True) for seg in line]
            for line in result.lines
        ]
    payload["success"] = result.success
    if result.error:
        payload["error"] = result.error
    return payload


async def _stream_job(job: AnnotationJob) -> AsyncGenerator[str]:
    """Run a job and relay its events as NDJSON.

    Closing the response (client disconnect) sets the abort event; the
    generation then stops and the partial result is not cached.
    """
    queue: asyncio.Queue[LineEvent | None] = asyncio.Queue()
    abort = asyncio.Event()

    async def run() -> AnnotationResult:
        try:
            return await job.run(queue.put, abort)
        finally:
            await queue.put(None)

    yield _dumps({"type": "start", "totalLines": job.total_lines})

    task = asyncio.create_task(run())
    try:
        while True:
            event = await queue.get()
            if event is None:
                break
            yield _dumps(_line_payload(job, event))

        result = await task
        yield _dumps(_complete_payload(job, result))
    finally:
        if not task.done():
            logger.info("Client left %s stream for %s; aborting", job.kind, job.song_id)
            abort.set()


def _respond(prepared) -> StreamingResponse | dict:
    if isinstance(prepared, AnnotationJob):
        return StreamingResponse(_stream_job(prepared), media_type=NDJSON)
    return prepared.model_dump(by_alias=True)


@router.get("/{song_id}")
async def get_song(song_id: str) -> dict:
    """Stored song metadata and lyrics, without annotations."""
    try:
        song = await get_song_service().get_song(song_id)
    except (ValidationError, LyricsNotFoundError) as e:
        raise _http_error(e) from e
    return song.model_dump(by_alias=True)


@router.post("/{song_id}/lyrics")
async def fetch_lyrics(song_id: str, request: FetchLyricsRequest) -> dict:
    """Resolve, fetch and cache lyrics; reports the status of requested annotations."""
    try:
        response = await get_song_service().fetch_lyrics(song_id, request)
    except (ValidationError, LyricsNotFoundError) as e:
        raise _http_error(e) from e
    return response.model_dump(by_alias=True)


@router.post("/{song_id}/search")
async def search_lyrics(song_id: str, request: SearchLyricsRequest) -> dict:
    try:
        candidates = await get_song_service().search_lyrics(song_id, request.query)
    except ValidationError as e:
        raise _http_error(e) from e
    return {"candidates": [c.model_dump(by_alias=True) for c in candidates]}


@router.post("/{song_id}/translate-stream", response_model=None)
async def translate_stream(song_id: str, request: TranslateStreamRequest) -> StreamingResponse | dict:
    try:
        prepared = await get_song_service().prepare_translation(song_id, request.language, request.force)
    except (ValidationError, LyricsNotFoundError) as e:
        raise _http_error(e) from e
    return _respond(prepared)


@router.post("/{song_id}/furigana-stream", response_model=None)
async def furigana_stream(song_id: str, request: FuriganaStreamRequest) -> StreamingResponse | dict:
    try:
        prepared = await get_song_service().prepare_furigana(song_id, request.force)
    except (ValidationError, LyricsNotFoundError) as e:
        raise _http_error(e) from e
    return _respond(prepared)


@router.post("/{song_id}/soramimi-stream", response_model=None)
async def soramimi_stream(song_id: str, request: SoramimiStreamRequest) -> StreamingResponse | dict:
    try:
        prepared = await get_song_service().prepare_soramimi(
            song_id,
            target_language=request.target_language,
            force=request.force,
            furigana=request.furigana,
        )
    except (ValidationError, LyricsNotFoundError) as e:
        raise _http_error(e) from e
    return _respond(prepared)


@router.post("/{song_id}/clear-cached-data")
async def clear_cached_data(song_id: str, request: ClearCachedDataRequest) -> dict:
    try:
        cleared = await get_song_service().clear_cached_data(
            song_id,
            translations=request.clear_translations,
            furigana=request.clear_furigana,
            soramimi=request.clear_soramimi,
        )
    except (ValidationError, LyricsNotFoundError) as e:
        raise _http_error(e) from e
    return {"success": True, "cleared": cleared}
