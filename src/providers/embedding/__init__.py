"""Embedding provider implementations.

Embeddings convert text into fixed-length vectors that are stored in the
collection's vector store and compared at query time.

Implementations of IEmbeddingProvider:
    1. OpenAIEmbeddingProvider -- OpenAI, Gemini, or any OpenAI-compatible
       base URL (``custom``).
    2. OllamaEmbeddingProvider -- models served locally by Ollama.

``EmbeddingProviderRegistry`` picks the implementation from settings and
hands out one provider per collection embedding model.
"""

from src.providers.embedding.factory import (
    EmbeddingProviderRegistry,
    create_embedding_provider,
    parse_provider_kind,
)
from src.providers.embedding.ollama_embedding_provider import OllamaEmbeddingProvider
from src.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

__all__ = [
    "EmbeddingProviderRegistry",
    "OllamaEmbeddingProvider",
    "OpenAIEmbeddingProvider",
    "create_embedding_provider",
    "parse_provider_kind",
]
