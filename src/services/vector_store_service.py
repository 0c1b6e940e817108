"""Vector-store configuration management.

A configuration is only persisted after a live connection test succeeds,
so every stored row points at a backend that was reachable when it was
saved.  Failures surface as :class:`VectorStoreConnectionError` carrying the
backend's troubleshooting text.
"""

from __future__ import annotations

import structlog

from src.interfaces.rag_store import IRagStore
from src.models.vector_store import ConnectionTestResult, VectorStoreConfig, VectorStoreType
from src.providers.vector_store.factory import create_adapter, probe_connection
from src.utils.errors import ConfigError, NotFoundError, StateError, VectorStoreConnectionError
from src.utils.logging import get_logger

logger: structlog.BoundLogger = get_logger(__name__)


def parse_store_type(value: str) -> VectorStoreType:
    """Return the backend type for *value* or raise ``ConfigError``."""
    try:
        return VectorStoreType(value.strip().lower())
    except ValueError as exc:
        supported = ", ".join(t.value for t in VectorStoreType)
        raise ConfigError(f"Unsupported vector store type {value!r} (expected one of {supported})") from exc


class VectorStoreService:
    """Create, update, test and delete vector-store configurations.

    Parameters
    ----------
    store:
        Relational store holding the configuration rows.
    local_index_dir:
        Data directory used by ``local-index`` stores with no explicit path.
    connect_timeout:
        Seconds allowed for each connection test.
    """

    def __init__(
        self,
        store: IRagStore,
        local_index_dir: str = "./data/local_index",
        connect_timeout: float | None = 30.0,
    ) -> None:
        self._store = store
        self._local_index_dir = local_index_dir
        self._connect_timeout = connect_timeout

    async def list_stores(self) -> list[VectorStoreConfig]:
        return await self._store.list_vector_stores()

    async def get_store(self, store_id: int) -> VectorStoreConfig:
        config = await self._store.get_vector_store(store_id)
        if config is None:
            raise NotFoundError(f"Vector store {store_id} not found")
        return config

    async def test(self, config: VectorStoreConfig) -> ConnectionTestResult:
        """Probe *config* without persisting anything."""
        return await probe_connection(config, self._local_index_dir, self._connect_timeout)

    async def create(self, config: VectorStoreConfig) -> VectorStoreConfig:
        """Validate, connection-test and persist a new configuration."""
        self._validate(config)
        await self._require_connection(config)
        stored = await self._store.save_vector_store(config.model_copy(update={"id": None}))
        logger.info(
            "vector_store_created",
            store_id=stored.id,
            name=stored.name,
            type=stored.type.value,
            is_default=stored.is_default,
        )
        return stored

    async def update(self, store_id: int, config: VectorStoreConfig) -> VectorStoreConfig:
        """Replace a configuration.  A ``None`` credential keeps the stored one."""
        existing = await self.get_store(store_id)
        if config.credential is None:
            config = config.model_copy(update={"credential": existing.credential})
        self._validate(config)
        if config.enabled:
            await self._require_connection(config)
        stored = await self._store.save_vector_store(config.model_copy(update={"id": store_id}))
        logger.info("vector_store_updated", store_id=store_id, enabled=stored.enabled)
        return stored

    async def delete(self, store_id: int) -> None:
        config = await self.get_store(store_id)
        if config.is_default:
            raise StateError("Cannot delete the default vector store; make another store default first")
        in_use = await self._store.count_collections_for_store(store_id)
        if in_use:
            raise StateError(f"Vector store {config.name!r} is used by {in_use} collection(s)")
        await self._store.delete_vector_store(store_id)
        logger.info("vector_store_deleted", store_id=store_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _validate(self, config: VectorStoreConfig) -> None:
        if not config.name or not config.name.strip():
            raise ConfigError("Vector store name is required")
        if config.is_default and not config.enabled:
            raise ConfigError("A disabled vector store cannot be the default")
        # Per-backend field checks, before any I/O.
        create_adapter(config, self._local_index_dir).validate_config()

    async def _require_connection(self, config: VectorStoreConfig) -> None:
        result = await self.test(config)
        if not result.success:
            logger.warning("vector_store_rejected", name=config.name, error=result.error)
            raise VectorStoreConnectionError(
                message=result.error or result.message,
                troubleshooting=result.troubleshooting or "",
            )
