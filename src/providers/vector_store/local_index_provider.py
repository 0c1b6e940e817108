"""In-process vector index persisted to a local directory.

Exact (brute-force) cosine search over a numpy matrix per namespace.  No
server is needed, which makes this the zero-setup backend for development
and small corpora.

On-disk layout under the data directory::

    collections.json            {namespace: {"dimension": int, "count": int}}
    <namespace>_vectors.npy     float32 matrix, one row per entry
    <namespace>_documents.json  [{"id": str, "metadata": {...}}, ...] row-aligned

Writes go through a temp file and ``os.replace`` so a crash never leaves a
half-written index.  A process-wide lock per directory serializes writers
from concurrent adapters.
"""

from __future__ import annotations

import asyncio
import json
import os
import threading
from pathlib import Path
from typing import Any

import numpy as np
import structlog

from src.interfaces.vector_store_adapter import IVectorStoreAdapter
from src.models.vector_store import NamespaceStats, VectorHit, VectorItem, VectorStoreConfig
from src.utils.errors import ConfigError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DATA_DIR = "./data/local_index"
_MANIFEST = "collections.json"

_DIR_LOCKS: dict[str, threading.Lock] = {}
_DIR_LOCKS_GUARD = threading.Lock()


def _lock_for(directory: Path) -> threading.Lock:
    key = str(directory.resolve())
    with _DIR_LOCKS_GUARD:
        lock = _DIR_LOCKS.get(key)
        if lock is None:
            lock = threading.Lock()
            _DIR_LOCKS[key] = lock
        return lock


def _write_json(path: Path, payload: Any) -> None:
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
    os.replace(tmp, path)


def _matches(metadata: dict[str, Any], filter: dict[str, Any]) -> bool:  # noqa: A002
    return all(metadata.get(key) == value for key, value in filter.items())


class LocalIndexProvider(IVectorStoreAdapter):
    """Vector store backed by numpy arrays on the local filesystem.

    The data directory is ``connection_string`` when set, otherwise
    ``settings["data_dir"]``, otherwise the directory passed by the factory.
    """

    def __init__(self, config: VectorStoreConfig, default_data_dir: str = _DEFAULT_DATA_DIR) -> None:
        super().__init__(config)
        raw_dir = config.connection_string or config.settings.get("data_dir") or default_data_dir
        self._data_dir = Path(str(raw_dir)).expanduser()

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def validate_config(self) -> None:
        if self._data_dir.exists() and not self._data_dir.is_dir():
            raise ConfigError(
                f"Local index path {self._data_dir} exists and is not a directory",
                provider_name=self.get_provider_name(),
            )

    def get_provider_name(self) -> str:
        return "local_index"

    def troubleshooting(self) -> str:
        return (
            "Local index troubleshooting:\n"
            f"1. Check that {self._data_dir} can be created by the server process\n"
            "2. Check write permissions on the directory and its parent\n"
            "3. Leave the connection string empty to use the default data directory"
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _do_connect(self) -> None:
        try:
            await asyncio.to_thread(self._prepare_directory)
        except OSError as exc:
            raise self._connection_error(exc, "Cannot open local index directory") from exc
        logger.info("local_index_connected", data_dir=str(self._data_dir))

    async def _do_disconnect(self) -> None:
        logger.debug("local_index_disconnected", data_dir=str(self._data_dir))

    def _prepare_directory(self) -> None:
        self._data_dir.mkdir(parents=True, exist_ok=True)
        if not os.access(self._data_dir, os.W_OK):
            raise PermissionError(f"{self._data_dir} is not writable")

    # ------------------------------------------------------------------
    # Data operations
    # ------------------------------------------------------------------

    async def _do_upsert(self, namespace: str, items: list[VectorItem]) -> None:
        await asyncio.to_thread(self._upsert_sync, namespace, items)
        logger.info("local_index_upsert", namespace=namespace, count=len(items))

    async def _do_search(
        self,
        namespace: str,
        query_vector: list[float],
        top_k: int,
        filter: dict[str, Any] | None,  # noqa: A002
    ) -> list[VectorHit]:
        return await asyncio.to_thread(self._search_sync, namespace, query_vector, top_k, filter)

    async def _do_delete(self, namespace: str, ids: list[str]) -> None:
        await asyncio.to_thread(self._delete_sync, namespace, ids)
        logger.info("local_index_delete", namespace=namespace, count=len(ids))

    async def _do_delete_namespace(self, namespace: str) -> None:
        await asyncio.to_thread(self._delete_namespace_sync, namespace)
        logger.info("local_index_delete_namespace", namespace=namespace)

    async def _do_list_namespaces(self) -> list[str]:
        return list(await asyncio.to_thread(self._locked_manifest))

    async def _do_namespace_stats(self, namespace: str) -> NamespaceStats:
        entry = (await asyncio.to_thread(self._locked_manifest)).get(namespace)
        if entry is None:
            return NamespaceStats(namespace=namespace)
        return NamespaceStats(namespace=namespace, vector_count=entry["count"], dimension=entry["dimension"])

    # ------------------------------------------------------------------
    # Synchronous internals (run in a worker thread)
    # ------------------------------------------------------------------

    def _vectors_path(self, namespace: str) -> Path:
        return self._data_dir / f"{namespace}_vectors.npy"

    def _documents_path(self, namespace: str) -> Path:
        return self._data_dir / f"{namespace}_documents.json"

    def _read_manifest(self) -> dict[str, dict[str, int]]:
        path = self._data_dir / _MANIFEST
        if not path.exists():
            return {}
        return json.loads(path.read_text(encoding="utf-8"))

    def _locked_manifest(self) -> dict[str, dict[str, int]]:
        with _lock_for(self._data_dir):
            return self._read_manifest()

    def _load(self, namespace: str) -> tuple[np.ndarray, list[dict[str, Any]]] | None:
        if namespace not in self._read_manifest():
            return None
        vectors = np.load(self._vectors_path(namespace), allow_pickle=False)
        documents = json.loads(self._documents_path(namespace).read_text(encoding="utf-8"))
        return vectors, documents

    def _save(self, namespace: str, vectors: np.ndarray, documents: list[dict[str, Any]]) -> None:
        vectors_tmp = self._data_dir / f"{namespace}_vectors.tmp.npy"
        np.save(vectors_tmp, vectors.astype(np.float32), allow_pickle=False)
        os.replace(vectors_tmp, self._vectors_path(namespace))
        _write_json(self._documents_path(namespace), documents)

        manifest = self._read_manifest()
        manifest[namespace] = {"dimension": int(vectors.shape[1]), "count": len(documents)}
        _write_json(self._data_dir / _MANIFEST, manifest)

    def _upsert_sync(self, namespace: str, items: list[VectorItem]) -> None:
        dimension = len(items[0].vector)
        with _lock_for(self._data_dir):
            loaded = self._load(namespace)
            if loaded is None:
                vectors = np.empty((0, dimension), dtype=np.float32)
                documents: list[dict[str, Any]] = []
            else:
                vectors, documents = loaded
                if vectors.shape[1] != dimension:
                    raise ConfigError(
                        f"Dimension mismatch for namespace {namespace!r}: "
                        f"index has {vectors.shape[1]}, got {dimension}",
                        provider_name=self.get_provider_name(),
                    )

            positions = {doc["id"]: row for row, doc in enumerate(documents)}
            new_rows: list[list[float]] = []
            for item in items:
                row = positions.get(item.id)
                if row is None:
                    positions[item.id] = len(documents)
                    documents.append({"id": item.id, "metadata": item.metadata})
                    new_rows.append(item.vector)
                else:
                    vectors[row] = np.asarray(item.vector, dtype=np.float32)
                    documents[row] = {"id": item.id, "metadata": item.metadata}

            if new_rows:
                vectors = np.vstack([vectors, np.asarray(new_rows, dtype=np.float32)])
            self._save(namespace, vectors, documents)

    def _search_sync(
        self,
        namespace: str,
        query_vector: list[float],
        top_k: int,
        filter: dict[str, Any] | None,  # noqa: A002
    ) -> list[VectorHit]:
        with _lock_for(self._data_dir):
            loaded = self._load(namespace)
        if loaded is None:
            return []
        vectors, documents = loaded
        if not documents:
            return []

        query = np.asarray(query_vector, dtype=np.float32)
        if query.shape[0] != vectors.shape[1]:
            raise ConfigError(
                f"Query dimension {query.shape[0]} does not match index dimension {vectors.shape[1]}",
                provider_name=self.get_provider_name(),
            )

        rows = np.arange(len(documents))
        if filter:
            rows = np.array(
                [row for row in rows if _matches(documents[row]["metadata"], filter)],
                dtype=np.int64,
            )
            if rows.size == 0:
                return []

        candidates = vectors[rows]
        norms = np.linalg.norm(candidates, axis=1) * np.linalg.norm(query)
        with np.errstate(divide="ignore", invalid="ignore"):
            scores = np.where(norms > 0, candidates @ query / norms, 0.0)

        ids = [documents[row]["id"] for row in rows]
        # Primary key: score descending; secondary: id ascending.
        order = sorted(range(len(ids)), key=lambda i: (-float(scores[i]), ids[i]))[:top_k]
        return [
            VectorHit(
                id=ids[i],
                score=float(scores[i]),
                metadata=documents[rows[i]]["metadata"],
            )
            for i in order
        ]

    def _delete_sync(self, namespace: str, ids: list[str]) -> None:
        doomed = set(ids)
        with _lock_for(self._data_dir):
            loaded = self._load(namespace)
            if loaded is None:
                return
            vectors, documents = loaded
            keep = [row for row, doc in enumerate(documents) if doc["id"] not in doomed]
            if len(keep) == len(documents):
                return
            rows = np.asarray(keep, dtype=np.int64)
            self._save(namespace, vectors[rows], [documents[row] for row in keep])

    def _delete_namespace_sync(self, namespace: str) -> None:
        with _lock_for(self._data_dir):
            manifest = self._read_manifest()
            if namespace not in manifest:
                return
            del manifest[namespace]
            _write_json(self._data_dir / _MANIFEST, manifest)
            self._vectors_path(namespace).unlink(missing_ok=True)
            self._documents_path(namespace).unlink(missing_ok=True)
