"""Tests for LLMService streaming over the google-genai SDK."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from annotator.services.llm_service import LLMService


def _mock_client(chunks: list[str | None]) -> MagicMock:
    async def mock_async_iter():
        for text in chunks:
            chunk = MagicMock()
            chunk.text = text
            yield chunk

    mock_models = MagicMock()
    mock_models.generate_content_stream = AsyncMock(return_value=mock_async_iter())

    mock_aio = MagicMock()
    mock_aio.models = mock_models

    mock_client = MagicMock()
    mock_client.aio = mock_aio
    return mock_client


class TestLLMServiceInit:
    """Test LLMService initialization."""

    def test_lazy_client(self) -> None:
        service = LLMService()
        assert service._client is None

    @patch("annotator.services.llm_service.settings")
    def test_raises_without_api_key(self, mock_settings: MagicMock) -> None:
        mock_settings.google_ai_api_key = ""
        service = LLMService()
        with pytest.raises(RuntimeError, match="GOOGLE_AI_API_KEY is not set"):
            service._get_client()

    @patch("annotator.services.llm_service.genai")
    @patch("annotator.services.llm_service.settings")
    def test_creates_client_with_api_key(
        self,
        mock_settings: MagicMock,
        mock_genai: MagicMock,
    ) -> None:
        mock_settings.google_ai_api_key = "test-key"
        mock_genai.Client.return_value = MagicMock()
        service = LLMService()
        client = service._get_client()
        mock_genai.Client.assert_called_once_with(api_key="test-key")
        assert client is not None

    @patch("annotator.services.llm_service.genai")
    @patch("annotator.services.llm_service.settings")
    def test_reuses_client(
        self,
        mock_settings: MagicMock,
        mock_genai: MagicMock,
    ) -> None:
        mock_settings.google_ai_api_key = "test-key"
        mock_genai.Client.return_value = MagicMock()
        service = LLMService()
        client1 = service._get_client()
        client2 = service._get_client()
        assert client1 is client2
        assert mock_genai.Client.call_count == 1


class TestStreamText:
    """Test stream_text method."""

    @pytest.mark.asyncio
    @patch("annotator.services.llm_service.genai")
    @patch("annotator.services.llm_service.settings")
    async def test_streams_chunks(
        self,
        mock_settings: MagicMock,
        mock_genai: MagicMock,
    ) -> None:
        mock_settings.google_ai_api_key = "test-key"
        mock_settings.gemini_model = "gemini-test"
        mock_settings.max_output_tokens = 1024
        mock_client = _mock_client(["1: Hel", None, "lo\n2: World\n"])
        mock_genai.Client.return_value = mock_client

        service = LLMService()
        chunks: list[str] = []
        async for chunk in service.stream_text("system", "1: a\n2: b", 0.3):
            chunks.append(chunk)

        # Empty chunks are dropped
        assert chunks == ["1: Hel", "lo\n2: World\n"]

        call = mock_client.aio.models.generate_content_stream.call_args
        assert call.kwargs["model"] == "gemini-test"
        assert call.kwargs["contents"] == "1: a\n2: b"
        config = call.kwargs["config"]
        assert config.system_instruction == "system"
        assert config.temperature == 0.3
        assert config.max_output_tokens == 1024

    @pytest.mark.asyncio
    @patch("annotator.services.llm_service.genai")
    @patch("annotator.services.llm_service.settings")
    async def test_errors_propagate(
        self,
        mock_settings: MagicMock,
        mock_genai: MagicMock,
    ) -> None:
        mock_settings.google_ai_api_key = "test-key"
        mock_settings.max_output_tokens = 1024
        mock_client = MagicMock()
        mock_client.aio.models.generate_content_stream = AsyncMock(side_effect=Exception("API down"))
        mock_genai.Client.return_value = mock_client

        service = LLMService()
        with pytest.raises(Exception, match="API down"):
            async for _ in service.stream_text("system", "1: a", 0.3):
                pass
