"""OpenAI-compatible embedding provider adapter.

Wraps the ``openai`` async client to implement :class:`IEmbeddingProvider`.
Serves three provider kinds through the same client:

* ``openai``  -- api.openai.com (API key required)
* ``custom``  -- any OpenAI-compatible base URL; ``/v1`` is appended when missing
* ``gemini``  -- Google's OpenAI-compatible endpoint
"""

from __future__ import annotations

import openai
import structlog

from src.interfaces.embedding_provider import IEmbeddingProvider
from src.models.embedding import EmbeddingConfig, EmbeddingProviderKind
from src.utils.errors import ConfigError, EmbeddingError

logger = structlog.get_logger(logger_name=__name__)

_OPENAI_BATCH_LIMIT = 2048

_GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"

# Known embedding model dimensions.
_MODEL_DIMENSIONS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
    "text-embedding-004": 768,
    "BAAI/bge-base-en-v1.5": 768,
    "BAAI/bge-large-en-v1.5": 1024,
}

_DEFAULT_DIMENSION = 1536


def normalize_base_url(base_url: str) -> str:
    """Return *base_url* ending in ``/v1`` without a trailing slash.

    >>> normalize_base_url("http://localhost:8080/")
    'http://localhost:8080/v1'
    """
    url = base_url.strip().rstrip("/")
    if not url.endswith("/v1"):
        url = f"{url}/v1"
    return url


class OpenAIEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider backed by an OpenAI-compatible embeddings API.

    Splits inputs into batches of 2048 (the per-call limit) and reorders
    each response by the ``index`` the API reports, so output order always
    matches input order.
    """

    def __init__(self, config: EmbeddingConfig) -> None:
        self._config = config
        self._model = config.model
        self._api_key = config.api_key

        client_kwargs: dict = {"max_retries": config.max_retries}
        if config.provider == EmbeddingProviderKind.OPENAI:
            if not self._api_key:
                raise ConfigError(
                    "OpenAI embedding API key is required",
                    provider_name="openai_embedding",
                )
            if config.base_url:
                client_kwargs["base_url"] = normalize_base_url(config.base_url)
        elif config.provider == EmbeddingProviderKind.CUSTOM:
            if not config.base_url:
                raise ConfigError(
                    "Custom embedding provider requires a base URL",
                    provider_name="custom_embedding",
                )
            client_kwargs["base_url"] = normalize_base_url(config.base_url)
        elif config.provider == EmbeddingProviderKind.GEMINI:
            if not self._api_key:
                raise ConfigError(
                    "Gemini embedding API key is required",
                    provider_name="gemini_embedding",
                )
            client_kwargs["base_url"] = config.base_url or _GEMINI_BASE_URL
        else:
            raise ConfigError(
                f"Unsupported provider for OpenAI-compatible client: {config.provider.value}",
                provider_name="embedding",
            )

        # Local OpenAI-compatible servers often accept any key.
        client_kwargs["api_key"] = self._api_key or "not-needed"
        self._client = openai.AsyncOpenAI(**client_kwargs)

        if self._model.startswith("text-embedding-3-") and config.dimensions:
            self._dimension = config.dimensions
            self._send_dimensions = True
        else:
            self._dimension = (
                _MODEL_DIMENSIONS.get(self._model) or config.dimensions or _DEFAULT_DIMENSION
            )
            self._send_dimensions = False
        self._provider_label = f"{config.provider.value}_embedding"

    # ------------------------------------------------------------------
    # IEmbeddingProvider implementation
    # ------------------------------------------------------------------

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for a batch of texts, preserving order."""
        if not texts:
            return []

        try:
            all_embeddings: list[list[float]] = []
            for start in range(0, len(texts), _OPENAI_BATCH_LIMIT):
                batch = texts[start : start + _OPENAI_BATCH_LIMIT]
                kwargs: dict = {"input": batch, "model": self._model}
                if self._send_dimensions:
                    kwargs["dimensions"] = self._dimension
                response = await self._client.embeddings.create(**kwargs)

                if len(response.data) != len(batch):
                    raise EmbeddingError(
                        message=(
                            f"{self._provider_label} returned {len(response.data)} "
                            f"vectors for {len(batch)} inputs"
                        ),
                        provider_name=self.get_provider_name(),
                    )
                ordered = sorted(response.data, key=lambda item: item.index)
                all_embeddings.extend(list(item.embedding) for item in ordered)
                logger.info(
                    "openai_embedding_batch",
                    model=self._model,
                    provider=self._provider_label,
                    batch_size=len(batch),
                    tokens=response.usage.total_tokens if response.usage else None,
                )
            return all_embeddings
        except openai.APIError as exc:
            raise EmbeddingError(
                message=f"{self._provider_label} API error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def embed_single(self, text: str) -> list[float]:
        """Generate an embedding vector for a single text string."""
        result = await self.embed([text])
        return result[0]

    def get_dimension(self) -> int:
        return self._dimension

    def get_provider_name(self) -> str:
        return self._provider_label

    def is_available(self) -> bool:
        """Return ``True`` if an API key or a custom endpoint is configured."""
        return bool(self._api_key) or self._config.provider == EmbeddingProviderKind.CUSTOM
