"""Ollama embedding provider adapter (local, no API key).

Talks to the OpenAI-compatible ``/v1`` endpoint that Ollama exposes.
Defaults to ``nomic-embed-text`` (768 dimensions).
"""

from __future__ import annotations

import httpx
import openai
import structlog

from src.interfaces.embedding_provider import IEmbeddingProvider
from src.models.embedding import EmbeddingConfig
from src.utils.errors import EmbeddingError

logger = structlog.get_logger(logger_name=__name__)

_OLLAMA_BATCH_LIMIT = 512
_DEFAULT_BASE_URL = "http://localhost:11434"

_MODEL_DIMENSIONS: dict[str, int] = {
    "nomic-embed-text": 768,
    "mxbai-embed-large": 1024,
    "all-minilm": 384,
    "snowflake-arctic-embed": 1024,
}


class OllamaEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider backed by a model served through Ollama."""

    def __init__(self, config: EmbeddingConfig) -> None:
        self._config = config
        self._base_url = (config.base_url or _DEFAULT_BASE_URL).rstrip("/")
        if self._base_url.endswith("/v1"):
            self._base_url = self._base_url[: -len("/v1")]
        self._client = openai.AsyncOpenAI(
            base_url=f"{self._base_url}/v1",
            api_key="ollama",  # Ollama ignores the key but the client requires one
            max_retries=config.max_retries,
        )
        self._model = config.model or "nomic-embed-text"
        model_family = self._model.split(":", 1)[0]
        self._dimension = config.dimensions or _MODEL_DIMENSIONS.get(model_family, 768)

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors, batching 512 texts per call."""
        if not texts:
            return []

        try:
            all_embeddings: list[list[float]] = []
            for start in range(0, len(texts), _OLLAMA_BATCH_LIMIT):
                batch = texts[start : start + _OLLAMA_BATCH_LIMIT]
                response = await self._client.embeddings.create(
                    input=batch,
                    model=self._model,
                )
                if len(response.data) != len(batch):
                    raise EmbeddingError(
                        message=(
                            f"Ollama returned {len(response.data)} vectors "
                            f"for {len(batch)} inputs"
                        ),
                        provider_name=self.get_provider_name(),
                    )
                ordered = sorted(response.data, key=lambda item: item.index)
                all_embeddings.extend(list(item.embedding) for item in ordered)
                logger.info(
                    "ollama_embedding_batch",
                    model=self._model,
                    batch_size=len(batch),
                )
            return all_embeddings
        except openai.APIError as exc:
            raise EmbeddingError(
                message=f"Ollama embedding API error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def embed_single(self, text: str) -> list[float]:
        result = await self.embed([text])
        return result[0]

    def get_dimension(self) -> int:
        return self._dimension

    def get_provider_name(self) -> str:
        return "ollama_embedding"

    def is_available(self) -> bool:
        """Return ``True`` if the Ollama server answers ``/api/tags``."""
        try:
            response = httpx.get(f"{self._base_url}/api/tags", timeout=3.0)
            return response.status_code == 200
        except (httpx.ConnectError, httpx.TimeoutException):
            return False
