"""Unit tests for the OpenAI-compatible LLM provider used by LLM cleansing."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import openai
import pytest

from src.config.settings import Settings
from src.providers.llm.openai_provider import OpenAILLMProvider
from src.utils.errors import LLMError

_CLIENT = "src.providers.llm.openai_provider.openai.AsyncOpenAI"


def _settings(**overrides) -> Settings:
    defaults = {"llm_api_key": "sk-llm", "llm_base_url": "", "openai_api_key": "", "embedding_api_key": ""}
    defaults.update(overrides)
    return Settings(**defaults)


class TestOpenAILLMProvider:
    async def test_complete_success(self) -> None:
        mock_response = MagicMock()
        mock_response.choices = [MagicMock(message=MagicMock(content="Clean text"))]
        mock_response.usage = MagicMock(total_tokens=42)

        mock_client = AsyncMock()
        mock_client.chat.completions.create = AsyncMock(return_value=mock_response)

        with patch(_CLIENT, return_value=mock_client):
            provider = OpenAILLMProvider(_settings())
            result = await provider.complete("system", "user", model="gpt-4o", temperature=0.1)

        assert result == "Clean text"
        kwargs = mock_client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["temperature"] == 0.1
        assert kwargs["messages"][0] == {"role": "system", "content": "system"}

    async def test_default_model(self) -> None:
        mock_response = MagicMock()
        mock_response.choices = [MagicMock(message=MagicMock(content="ok"))]
        mock_client = AsyncMock()
        mock_client.chat.completions.create = AsyncMock(return_value=mock_response)

        with patch(_CLIENT, return_value=mock_client):
            await OpenAILLMProvider(_settings()).complete("s", "u")

        assert mock_client.chat.completions.create.call_args.kwargs["model"] == "gpt-4o-mini"

    async def test_empty_response_raises(self) -> None:
        mock_response = MagicMock()
        mock_response.choices = []
        mock_client = AsyncMock()
        mock_client.chat.completions.create = AsyncMock(return_value=mock_response)

        with patch(_CLIENT, return_value=mock_client):
            provider = OpenAILLMProvider(_settings())
            with pytest.raises(LLMError, match="empty response"):
                await provider.complete("s", "u")

    async def test_api_error_becomes_llm_error(self) -> None:
        mock_client = AsyncMock()
        mock_client.chat.completions.create = AsyncMock(
            side_effect=openai.APIError(message="Rate limit exceeded", request=MagicMock(), body=None)
        )
        with patch(_CLIENT, return_value=mock_client):
            provider = OpenAILLMProvider(_settings())
            with pytest.raises(LLMError):
                await provider.complete("s", "u")

    def test_custom_endpoint(self) -> None:
        with patch(_CLIENT) as client_cls:
            provider = OpenAILLMProvider(_settings(llm_api_key="", llm_base_url="http://localhost:1234/v1"))
        assert client_cls.call_args.kwargs["base_url"] == "http://localhost:1234/v1"
        assert provider.get_provider_name() == "openai-compatible"
        assert provider.is_available() is True

    def test_key_falls_back_to_embedding_key(self) -> None:
        with patch(_CLIENT):
            provider = OpenAILLMProvider(_settings(llm_api_key="", openai_api_key="sk-shared"))
        assert provider.is_available() is True

    def test_unavailable_without_key_or_endpoint(self) -> None:
        with patch(_CLIENT):
            provider = OpenAILLMProvider(_settings(llm_api_key=""))
        assert provider.is_available() is False
