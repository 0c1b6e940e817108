"""OpenAI-compatible LLM provider adapter.

Wraps the ``openai`` async client to implement :class:`ILLMProvider` for the
LLM-assisted cleansing stage.  The model is chosen per call (a cleansing
config names its own ``llm_model_id``); when ``llm_base_url`` is configured
the client talks to that OpenAI-compatible endpoint instead of OpenAI.
"""

from __future__ import annotations

import openai
import structlog

from src.config.settings import Settings
from src.interfaces.llm_provider import ILLMProvider
from src.utils.errors import LLMError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_MODEL = "gpt-4o-mini"


class OpenAILLMProvider(ILLMProvider):
    """Chat-completion provider backed by an OpenAI-compatible API."""

    def __init__(self, settings: Settings) -> None:
        self._api_key = settings.resolved_llm_api_key()
        self._timeout = settings.llm_timeout_seconds

        client_kwargs: dict = {
            "api_key": self._api_key or "not-needed",
            "timeout": openai.Timeout(self._timeout, connect=5.0),
        }
        if settings.llm_base_url:
            client_kwargs["base_url"] = settings.llm_base_url

        self._client = openai.AsyncOpenAI(**client_kwargs)
        self._has_custom_endpoint = bool(settings.llm_base_url)
        self._provider_label = "openai-compatible" if settings.llm_base_url else "openai"

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        model: str | None = None,
        temperature: float = 0.3,
        max_tokens: int = 2000,
    ) -> str:
        """Generate a text completion via the chat completions API."""
        model_name = model or _DEFAULT_MODEL
        try:
            response = await self._client.chat.completions.create(
                model=model_name,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
            )
            content = response.choices[0].message.content if response.choices else None
            if not content:
                raise LLMError(
                    message=f"{self._provider_label} returned empty response",
                    provider_name=self.get_provider_name(),
                )
            logger.info(
                "openai_completion",
                model=model_name,
                provider=self._provider_label,
                tokens=response.usage.total_tokens if response.usage else None,
            )
            return content
        except openai.APITimeoutError as exc:
            raise LLMError(
                message=f"{self._provider_label} timed out after {self._timeout:g}s",
                provider_name=self.get_provider_name(),
            ) from exc
        except openai.APIError as exc:
            raise LLMError(
                message=f"{self._provider_label} API error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    def is_available(self) -> bool:
        """Return ``True`` if an API key or a custom endpoint is configured."""
        return bool(self._api_key) or self._has_custom_endpoint

    def get_provider_name(self) -> str:
        return self._provider_label
