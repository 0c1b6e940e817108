"""Shared pytest fixtures for the ragstack test suite."""

from __future__ import annotations

import hashlib
import re
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from src.interfaces.embedding_provider import IEmbeddingProvider
from src.models.rag import Collection
from src.models.vector_store import VectorStoreConfig, VectorStoreType
from src.providers.embedding.factory import EmbeddingProviderRegistry
from src.providers.storage.sqlite_rag_store import SQLiteRagStore

_WORD_RE = re.compile(r"[a-z0-9]+")


class HashingEmbeddingProvider(IEmbeddingProvider):
    """Deterministic bag-of-words embedder for tests.

    Each lower-cased word is hashed into one of ``dimension`` buckets, so
    texts sharing words point in similar directions.
    """

    def __init__(self, dimension: int = 256) -> None:
        self._dimension = dimension
        self.calls: list[list[str]] = []

    def _vector(self, text: str) -> list[float]:
        vector = [0.0] * self._dimension
        for word in _WORD_RE.findall(text.lower()):
            bucket = int(hashlib.md5(word.encode("utf-8")).hexdigest(), 16) % self._dimension  # noqa: S324
            vector[bucket] += 1.0
        if not any(vector):
            vector[0] = 1.0
        return vector

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        return [self._vector(t) for t in texts]

    async def embed_single(self, text: str) -> list[float]:
        return (await self.embed([text]))[0]

    def get_dimension(self) -> int:
        return self._dimension

    def get_provider_name(self) -> str:
        return "hashing_embedding"

    def is_available(self) -> bool:
        return True


@pytest.fixture
def embedding_provider() -> HashingEmbeddingProvider:
    return HashingEmbeddingProvider()


@pytest.fixture
def embedding_registry(embedding_provider: HashingEmbeddingProvider) -> MagicMock:
    registry = MagicMock(spec=EmbeddingProviderRegistry)
    registry.for_model.return_value = embedding_provider
    return registry


@pytest.fixture
async def rag_store(tmp_path: Path) -> SQLiteRagStore:
    store = SQLiteRagStore(db_path=tmp_path / "ragstack.db")
    await store.initialize()
    return store


@pytest.fixture
def local_index_dir(tmp_path: Path) -> str:
    return str(tmp_path / "local_index")


@pytest.fixture
async def local_store(rag_store: SQLiteRagStore, local_index_dir: str) -> VectorStoreConfig:
    """A saved, enabled, default local-index vector store."""
    return await rag_store.save_vector_store(
        VectorStoreConfig(
            name="local",
            type=VectorStoreType.LOCAL_INDEX,
            connection_string=local_index_dir,
            is_default=True,
        )
    )


@pytest.fixture
async def collection(rag_store: SQLiteRagStore, local_store: VectorStoreConfig) -> Collection:
    return await rag_store.create_collection(
        Collection(name="handbook", vector_store_id=local_store.id, embedding_model="test-embed")
    )
