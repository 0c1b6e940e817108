"""Vector store adapter selection and connection probing.

The stored ``type`` discriminator is the only thing that decides which
adapter class serves a configuration; callers never branch on it.
"""

from __future__ import annotations

from typing import Callable

import structlog

from src.interfaces.vector_store_adapter import IVectorStoreAdapter
from src.models.vector_store import ConnectionTestResult, VectorStoreConfig, VectorStoreType
from src.providers.vector_store.chromadb_provider import ChromaDBProvider
from src.providers.vector_store.local_index_provider import LocalIndexProvider
from src.providers.vector_store.pgvector_provider import PgVectorProvider
from src.utils.concurrency import with_timeout
from src.utils.errors import ConfigError, RagStackError, VectorStoreConnectionError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_LOCAL_INDEX_DIR = "./data/local_index"

_REGISTRY: dict[VectorStoreType, Callable[[VectorStoreConfig, str], IVectorStoreAdapter]] = {
    VectorStoreType.LOCAL_INDEX: lambda config, data_dir: LocalIndexProvider(config, default_data_dir=data_dir),
    VectorStoreType.CLIENT_SERVER_INDEX: lambda config, _data_dir: ChromaDBProvider(config),
    VectorStoreType.RELATIONAL_EXTENSION_INDEX: lambda config, _data_dir: PgVectorProvider(config),
}


def create_adapter(
    config: VectorStoreConfig,
    local_index_dir: str = _DEFAULT_LOCAL_INDEX_DIR,
) -> IVectorStoreAdapter:
    """Return a fresh, unconnected adapter for *config*.

    Raises
    ------
    ConfigError
        If ``config.type`` has no registered adapter.
    """
    builder = _REGISTRY.get(config.type)
    if builder is None:
        raise ConfigError(f"Unsupported vector store type: {config.type!r}", provider_name="vector_store")
    return builder(config, local_index_dir)


async def probe_connection(
    config: VectorStoreConfig,
    local_index_dir: str = _DEFAULT_LOCAL_INDEX_DIR,
    timeout: float | None = None,
) -> ConnectionTestResult:
    """Connect to and disconnect from the backend described by *config*.

    Never raises for backend problems: failures are reported in the result,
    with troubleshooting text when the backend supplies it.
    """
    try:
        adapter = create_adapter(config, local_index_dir)
    except ConfigError as exc:
        return ConnectionTestResult(success=False, message="Invalid configuration", error=str(exc))

    try:
        await with_timeout(
            adapter.connect(),
            timeout,
            operation="vector_store_connect",
            provider_name=adapter.get_provider_name(),
        )
    except VectorStoreConnectionError as exc:
        logger.warning("vector_store_test_failed", store=config.name, error=str(exc))
        return ConnectionTestResult(
            success=False,
            message="Connection failed",
            error=str(exc),
            troubleshooting=exc.troubleshooting,
        )
    except ConfigError as exc:
        return ConnectionTestResult(
            success=False,
            message="Invalid configuration",
            error=str(exc),
            troubleshooting=adapter.troubleshooting(),
        )
    except RagStackError as exc:
        logger.warning("vector_store_test_failed", store=config.name, error=str(exc))
        return ConnectionTestResult(
            success=False,
            message="Connection failed",
            error=str(exc),
            troubleshooting=adapter.troubleshooting(),
        )
    finally:
        await adapter.disconnect()

    logger.info("vector_store_test_succeeded", store=config.name, type=config.type.value)
    return ConnectionTestResult(success=True, message=f"Connected to {adapter.get_provider_name()}")
