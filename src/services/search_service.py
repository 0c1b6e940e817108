"""Semantic search over a collection's vector namespace.

The query is embedded with the collection's own embedding model (cached in
an expiring in-memory cache), sent to the collection's vector store, and
each hit is enriched with a short projection of its source document.
Result order is exactly the adapter's: score descending, id ascending.
"""

from __future__ import annotations

import hashlib
import time
from typing import Any, Callable

import structlog

from src.interfaces.cache_provider import ICacheProvider
from src.interfaces.rag_store import IRagStore
from src.interfaces.vector_store_adapter import IVectorStoreAdapter
from src.models.rag import Collection, SearchResult
from src.models.vector_store import VectorStoreConfig
from src.providers.cache.memory_cache import MemoryCacheProvider
from src.providers.embedding.factory import EmbeddingProviderRegistry
from src.providers.vector_store.factory import create_adapter
from src.utils.concurrency import with_timeout
from src.utils.errors import (
    CollectionInactiveError,
    ConfigError,
    NotFoundError,
    VectorStoreDisabledError,
)
from src.utils.logging import get_logger

logger: structlog.BoundLogger = get_logger(__name__)


def query_cache_key(model: str, dimensions: int | None, query: str) -> str:
    """Cache key for a query embedding; the query text is hashed."""
    digest = hashlib.sha256(query.encode("utf-8")).hexdigest()
    return f"query_embedding:{model}:{dimensions or 0}:{digest}"


class SearchService:
    """Read-only nearest-chunk search.

    Parameters
    ----------
    store:
        Relational store for collections, stores and documents.
    embeddings:
        Resolves the embedding provider for a collection's model.
    cache:
        Query-embedding cache.  Defaults to a private
        :class:`MemoryCacheProvider` (512 entries, 300 s).
    local_index_dir:
        Default data directory handed to ``local-index`` adapters.
    embedding_timeout, vector_store_timeout:
        Deadlines in seconds for the embedding and vector-store calls.
    default_top_k:
        Result count used when a search does not give one.
    adapter_factory:
        Builds an unconnected adapter for a store config.
    """

    def __init__(
        self,
        store: IRagStore,
        embeddings: EmbeddingProviderRegistry,
        cache: ICacheProvider | None = None,
        local_index_dir: str = "./data/local_index",
        embedding_timeout: float | None = 60.0,
        vector_store_timeout: float | None = 30.0,
        cache_ttl: int = 300,
        default_top_k: int = 10,
        adapter_factory: Callable[[VectorStoreConfig], IVectorStoreAdapter] | None = None,
    ) -> None:
        self._store = store
        self._embeddings = embeddings
        self._cache = cache if cache is not None else MemoryCacheProvider(max_size=512, ttl=cache_ttl)
        self._cache_ttl = cache_ttl
        self._default_top_k = default_top_k
        self._embedding_timeout = embedding_timeout
        self._vector_store_timeout = vector_store_timeout
        self._adapter_factory = adapter_factory or (
            lambda config: create_adapter(config, local_index_dir)
        )

    async def search(
        self,
        collection_id: int,
        query: str,
        top_k: int | None = None,
        filter: dict[str, Any] | None = None,  # noqa: A002
    ) -> dict[str, Any]:
        """Return the *top_k* chunks nearest to *query*.

        Returns
        -------
        dict
            ``{"results": list[SearchResult], "query": str, "collection_id": int}``.

        Raises
        ------
        ConfigError
            Empty query or ``top_k < 1``.
        NotFoundError
            Unknown collection or vector store.
        CollectionInactiveError, VectorStoreDisabledError
            The collection or its store cannot serve queries.
        OperationTimeoutError
            The embedding or vector-store call exceeded its deadline.
        """
        if not query or not query.strip():
            raise ConfigError("Search query must not be empty")
        if top_k is None:
            top_k = self._default_top_k
        if top_k < 1:
            raise ConfigError(f"top_k must be at least 1, got {top_k}")

        started = time.monotonic()
        collection = await self._store.get_collection(collection_id)
        if collection is None:
            raise NotFoundError(f"Collection {collection_id} not found")
        if not collection.is_active:
            raise CollectionInactiveError(f"Collection {collection.name!r} is not active")
        store_config = await self._store.get_vector_store(collection.vector_store_id)
        if store_config is None:
            raise NotFoundError(f"Vector store {collection.vector_store_id} not found")
        if not store_config.enabled:
            raise VectorStoreDisabledError(f"Vector store {store_config.name!r} is disabled")

        vector = await self._embed_query(collection, query)

        adapter = self._adapter_factory(store_config)
        try:
            await with_timeout(
                adapter.connect(),
                self._vector_store_timeout,
                operation="vector_store_connect",
                provider_name=adapter.get_provider_name(),
            )
            hits = await with_timeout(
                adapter.search(collection.name, vector, top_k, filter),
                self._vector_store_timeout,
                operation="vector_store_search",
                provider_name=adapter.get_provider_name(),
            )
        finally:
            await adapter.disconnect()

        document_ids = [
            doc_id for doc_id in (_document_id(hit.metadata) for hit in hits) if doc_id is not None
        ]
        projections = await self._store.get_document_projections(document_ids)
        results = [
            SearchResult(
                id=hit.id,
                score=hit.score,
                metadata=hit.metadata,
                document=projections.get(_document_id(hit.metadata)),  # type: ignore[arg-type]
            )
            for hit in hits
        ]

        logger.info(
            "search_completed",
            collection_id=collection_id,
            top_k=top_k,
            results_count=len(results),
            filtered=bool(filter),
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        return {"results": results, "query": query, "collection_id": collection_id}

    async def _embed_query(self, collection: Collection, query: str) -> list[float]:
        key = query_cache_key(collection.embedding_model, collection.embedding_dimensions, query)
        cached = await self._cache.get(key)
        if cached is not None:
            return cached

        provider = self._embeddings.for_model(collection.embedding_model, collection.embedding_dimensions)
        vector = await with_timeout(
            provider.embed_single(query),
            self._embedding_timeout,
            operation="query_embedding",
            provider_name=provider.get_provider_name(),
        )
        await self._cache.set(key, vector, ttl=self._cache_ttl)
        return vector


def _document_id(metadata: dict[str, Any]) -> int | None:
    """Read ``document_id`` from hit metadata; backends may return it as a string."""
    raw = metadata.get("document_id")
    try:
        return int(raw) if raw is not None else None
    except (TypeError, ValueError):
        return None
