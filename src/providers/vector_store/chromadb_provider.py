"""ChromaDB client/server vector store adapter.

Wraps ``chromadb.HttpClient`` to implement :class:`IVectorStoreAdapter` for
the ``client-server-index`` backend type.  Each namespace maps to one Chroma
collection configured for cosine distance; scores are ``1 - distance``.

The Chroma client is synchronous, so every call runs in a worker thread via
``asyncio.to_thread``; that keeps the event loop free and lets callers bound
each call with ``asyncio.wait_for``.
"""

from __future__ import annotations

import asyncio
import json
import os
from typing import Any
from urllib.parse import urlparse

# Disable ChromaDB telemetry before importing chromadb.  ChromaDB's bundled
# PostHog client can clash with the installed posthog version, so telemetry
# is switched off through the env var, the posthog SDK and client Settings.
os.environ["ANONYMIZED_TELEMETRY"] = "False"

import posthog

posthog.disabled = True

import chromadb
import chromadb.errors
import structlog

from src.interfaces.vector_store_adapter import IVectorStoreAdapter
from src.models.vector_store import NamespaceStats, VectorHit, VectorItem, VectorStoreConfig
from src.utils.errors import ConfigError

logger = structlog.get_logger(logger_name=__name__)

# Extra rows fetched beyond top_k so equal-score entries at the cut-off can
# be ordered by id before trimming.  The window doubles while the last row
# fetched still ties with the row at the cut-off.
_TIE_MARGIN = 10

_MISSING_COLLECTION_ERRORS: tuple[type[BaseException], ...] = (
    ValueError,
    chromadb.errors.ChromaError,
)


class _NoopEmbeddingFunction(chromadb.EmbeddingFunction[list[str]]):
    """Embedding function that is never called.

    Every upsert and query passes pre-computed vectors.  Supplying this
    stops Chroma from loading its default ONNX embedding model.
    """

    def __call__(self, input: list[str]) -> list[list[float]]:  # noqa: A002
        raise NotImplementedError(
            "ragstack passes pre-computed embeddings; "
            "Chroma's built-in embedding should never be called."
        )

    def name(self) -> str:
        return "noop_precomputed"


def _scalar_metadata(metadata: dict[str, Any]) -> dict[str, Any] | None:
    """Coerce metadata to the str/int/float/bool values Chroma accepts."""
    flat: dict[str, Any] = {}
    for key, value in metadata.items():
        if value is None:
            continue
        if isinstance(value, (str, int, float, bool)):
            flat[key] = value
        else:
            flat[key] = json.dumps(value, ensure_ascii=False, default=str)
    return flat or None


def _where_clause(filter: dict[str, Any]) -> dict[str, Any]:  # noqa: A002
    """Translate an equality filter to Chroma's ``where`` syntax."""
    conditions = [{key: {"$eq": value}} for key, value in sorted(filter.items())]
    if len(conditions) == 1:
        return conditions[0]
    return {"$and": conditions}


class ChromaDBProvider(IVectorStoreAdapter):
    """Vector store adapter for a Chroma server reached over HTTP.

    ``connection_string`` is the server URL (``http://localhost:8000``).
    ``credential``, when set, is sent as a bearer token.  ``settings`` may
    carry ``tenant`` and ``database``.
    """

    def __init__(self, config: VectorStoreConfig) -> None:
        super().__init__(config)
        self._client: Any | None = None
        self._embedding_function = _NoopEmbeddingFunction()

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def validate_config(self) -> None:
        url = (self._config.connection_string or "").strip()
        if not url:
            raise ConfigError(
                "Connection string is required for client-server-index stores",
                provider_name=self.get_provider_name(),
            )
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise self._connection_error(None, f"Invalid Chroma URL {url!r}: expected http(s)://host:port")

    def get_provider_name(self) -> str:
        return "chromadb"

    def troubleshooting(self) -> str:
        return (
            "ChromaDB connection troubleshooting:\n"
            "1. Check that the Chroma server is running: docker run -p 8000:8000 chromadb/chroma\n"
            "2. Check the URL format, e.g. http://localhost:8000\n"
            "3. Check that no firewall blocks the port\n"
            "4. If the server enforces token auth, check the credential"
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _do_connect(self) -> None:
        try:
            self._client = await asyncio.to_thread(self._open_client)
        except Exception as exc:
            raise self._connection_error(exc, "Failed to connect to Chroma server") from exc
        logger.info("chromadb_connected", url=self._config.connection_string)

    def _open_client(self) -> Any:
        parsed = urlparse((self._config.connection_string or "").strip())
        ssl = parsed.scheme == "https"
        port = parsed.port or (443 if ssl else 8000)
        headers = {}
        if self._config.credential:
            headers["Authorization"] = f"Bearer {self._config.credential}"

        kwargs: dict[str, Any] = {
            "host": parsed.hostname,
            "port": port,
            "ssl": ssl,
            "headers": headers or None,
            "settings": chromadb.config.Settings(anonymized_telemetry=False),
        }
        for key in ("tenant", "database"):
            if self._config.settings.get(key):
                kwargs[key] = str(self._config.settings[key])

        client = chromadb.HttpClient(**kwargs)
        client.heartbeat()
        return client

    async def _do_disconnect(self) -> None:
        self._client = None
        logger.debug("chromadb_disconnected", url=self._config.connection_string)

    # ------------------------------------------------------------------
    # Data operations
    # ------------------------------------------------------------------

    def _get_collection(self, namespace: str) -> Any | None:
        try:
            return self._client.get_collection(
                name=namespace,
                embedding_function=self._embedding_function,
            )
        except _MISSING_COLLECTION_ERRORS:
            return None

    def _upsert_sync(self, namespace: str, items: list[VectorItem]) -> None:
        collection = self._client.get_or_create_collection(
            name=namespace,
            metadata={"hnsw:space": "cosine"},
            embedding_function=self._embedding_function,
        )
        collection.upsert(
            ids=[item.id for item in items],
            embeddings=[item.vector for item in items],
            metadatas=[_scalar_metadata(item.metadata) for item in items],
        )

    async def _do_upsert(self, namespace: str, items: list[VectorItem]) -> None:
        await asyncio.to_thread(self._upsert_sync, namespace, items)
        logger.info("chromadb_upsert", namespace=namespace, count=len(items))

    def _search_sync(
        self,
        namespace: str,
        query_vector: list[float],
        top_k: int,
        filter: dict[str, Any] | None,  # noqa: A002
    ) -> list[VectorHit]:
        collection = self._get_collection(namespace)
        if collection is None:
            return []
        total = collection.count()
        if total == 0:
            return []

        kwargs: dict[str, Any] = {
            "query_embeddings": [query_vector],
            "include": ["metadatas", "distances"],
        }
        if filter:
            kwargs["where"] = _where_clause(filter)

        n_results = min(top_k + _TIE_MARGIN, total)
        while True:
            hits = self._query(collection, kwargs, n_results)
            if len(hits) < n_results or n_results >= total or len(hits) <= top_k:
                return hits
            if hits[-1].score != hits[top_k - 1].score:
                return hits
            n_results = min(n_results * 2, total)

    @staticmethod
    def _query(collection: Any, kwargs: dict[str, Any], n_results: int) -> list[VectorHit]:
        results = collection.query(n_results=n_results, **kwargs)
        ids = results["ids"][0] if results.get("ids") else []
        metadatas = results["metadatas"][0] if results.get("metadatas") else [None] * len(ids)
        distances = results["distances"][0] if results.get("distances") else [1.0] * len(ids)
        return [
            VectorHit(id=item_id, score=1.0 - float(distance), metadata=dict(meta or {}))
            for item_id, meta, distance in zip(ids, metadatas, distances, strict=True)
        ]

    async def _do_search(
        self,
        namespace: str,
        query_vector: list[float],
        top_k: int,
        filter: dict[str, Any] | None,  # noqa: A002
    ) -> list[VectorHit]:
        hits = await asyncio.to_thread(self._search_sync, namespace, query_vector, top_k, filter)
        logger.info("chromadb_query", namespace=namespace, results_count=len(hits))
        return hits

    def _delete_sync(self, namespace: str, ids: list[str]) -> None:
        collection = self._get_collection(namespace)
        if collection is not None:
            collection.delete(ids=ids)

    async def _do_delete(self, namespace: str, ids: list[str]) -> None:
        await asyncio.to_thread(self._delete_sync, namespace, ids)
        logger.info("chromadb_delete", namespace=namespace, count=len(ids))

    def _delete_namespace_sync(self, namespace: str) -> None:
        try:
            self._client.delete_collection(name=namespace)
        except _MISSING_COLLECTION_ERRORS:
            logger.debug("chromadb_namespace_absent", namespace=namespace)

    async def _do_delete_namespace(self, namespace: str) -> None:
        await asyncio.to_thread(self._delete_namespace_sync, namespace)
        logger.info("chromadb_delete_namespace", namespace=namespace)

    def _list_namespaces_sync(self) -> list[str]:
        # Some client releases return bare names instead of collection objects.
        return [str(getattr(entry, "name", entry)) for entry in self._client.list_collections()]

    async def _do_list_namespaces(self) -> list[str]:
        return await asyncio.to_thread(self._list_namespaces_sync)

    def _namespace_stats_sync(self, namespace: str) -> NamespaceStats:
        collection = self._get_collection(namespace)
        if collection is None:
            return NamespaceStats(namespace=namespace)
        count = collection.count()
        dimension = None
        if count:
            sample = collection.get(limit=1, include=["embeddings"])
            embeddings = sample.get("embeddings")
            if embeddings is not None and len(embeddings):
                dimension = len(embeddings[0])
        return NamespaceStats(namespace=namespace, vector_count=count, dimension=dimension)

    async def _do_namespace_stats(self, namespace: str) -> NamespaceStats:
        return await asyncio.to_thread(self._namespace_stats_sync, namespace)
