"""LLM service using Google Gemini for streamed lyric annotations."""

import logging
from collections.abc import AsyncGenerator

from google import genai
from google.genai import types

from annotator.config import settings

logger = logging.getLogger(__name__)


class LLMService:
    """Gemini integration yielding raw text chunks for the annotation engine."""

    def __init__(self) -> None:
        self._client: genai.Client | None = None

    def _get_client(self) -> genai.Client:
        if self._client is None:
            api_key = settings.google_ai_api_key
            if not api_key:
                raise RuntimeError(
                    "GOOGLE_AI_API_KEY is not set. Please set it in your .env file or environment."
                )
            self._client = genai.Client(api_key=api_key)
        return self._client

    async def stream_text(
        self,
        system_prompt: str,
        user_content: str,
        temperature: float,
    ) -> AsyncGenerator[str]:
        """Stream a single completion as text chunks.

        Chunk boundaries are arbitrary. Errors propagate so the engine can
        mark the run as failed and back-fill the remaining lines.
        """
        client = self._get_client()

        config = types.GenerateContentConfig(
            system_instruction=system_prompt,
            temperature=temperature,
            max_output_tokens=settings.max_output_tokens,
        )

        logger.debug(
            "Starting Gemini stream (model=%s, temperature=%.2f, %d chars)",
            settings.gemini_model,
            temperature,
            len(user_content),
        )

        response = await client.aio.models.generate_content_stream(
            model=settings.gemini_model,
            contents=user_content,
            config=config,
        )

        async for chunk in response:
            if chunk.text:
                yield chunk.text
