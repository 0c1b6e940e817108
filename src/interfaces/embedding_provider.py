"""Abstract base class for text-embedding service providers.

Defines the contract for turning text into fixed-length vectors.  The
embedding model itself is always external: implementations wrap an
OpenAI-compatible HTTP API (OpenAI, Ollama, Gemini, or any custom endpoint).
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations (src/providers/embedding/):
#   OpenAIEmbeddingProvider  -- OpenAI and any OpenAI-compatible base URL
#   OllamaEmbeddingProvider  -- local models served by Ollama
class IEmbeddingProvider(ABC):
    """Contract for text-embedding services used by processing and search."""

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for a batch of texts.

        Parameters
        ----------
        texts:
            One or more text strings to embed.  Implementations handle
            batching internally if the underlying API has a per-call limit.

        Returns
        -------
        list[list[float]]
            One vector per input, in the same order as *texts*.

        Raises
        ------
        EmbeddingError
            If the upstream API fails or returns a different number of vectors.
        """

    @abstractmethod
    async def embed_single(self, text: str) -> list[float]:
        """Generate an embedding vector for a single text string."""

    @abstractmethod
    def get_dimension(self) -> int:
        """Return the length of the vectors this provider produces."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a short identifier used in logs and error messages."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured and reachable."""
