"""ragstack domain models -- re-exports all public model classes.

    - rag.py           -- collections, documents, chunks, strategies, cleansing configs
    - vector_store.py  -- vector-store configs and the adapter wire shapes
    - embedding.py     -- embedding provider configuration
"""

from __future__ import annotations

from src.models.embedding import EmbeddingConfig, EmbeddingProviderKind
from src.models.rag import (
    ChunkingStrategy,
    ChunkingStrategyType,
    CleansingConfig,
    Collection,
    CustomCleansingRule,
    Document,
    DocumentChunk,
    DocumentProjection,
    ProcessingOutcome,
    ProcessingStatus,
    SearchResult,
    TextChunk,
)
from src.models.vector_store import (
    ConnectionTestResult,
    VectorHit,
    VectorItem,
    VectorStoreConfig,
    VectorStoreType,
)

__all__ = [
    "ChunkingStrategy",
    "ChunkingStrategyType",
    "CleansingConfig",
    "Collection",
    "ConnectionTestResult",
    "CustomCleansingRule",
    "Document",
    "DocumentChunk",
    "DocumentProjection",
    "EmbeddingConfig",
    "EmbeddingProviderKind",
    "ProcessingOutcome",
    "ProcessingStatus",
    "SearchResult",
    "TextChunk",
    "VectorHit",
    "VectorItem",
    "VectorStoreConfig",
    "VectorStoreType",
]
