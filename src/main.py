"""ragstack FastAPI application entry point.

Wires together the relational store, embedding and LLM providers, and the
services behind the HTTP routes.  Loads configuration from ``.env`` and
``config/config.yaml`` and configures structured logging before anything
else runs.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import structlog
import uvicorn
from fastapi import FastAPI

from src.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
)
from src.api.routes import router as api_router
from src.config.loader import load_config
from src.config.settings import Settings
from src.interfaces.llm_provider import ILLMProvider
from src.providers.cache.memory_cache import MemoryCacheProvider
from src.providers.embedding.factory import EmbeddingProviderRegistry
from src.providers.llm.openai_provider import OpenAILLMProvider
from src.providers.storage.sqlite_rag_store import SQLiteRagStore
from src.services.collection_service import CollectionService
from src.services.config_service import ConfigService
from src.services.ingestion.cleanser import LLMCleanser
from src.services.ingestion.document_processor import DocumentProcessingPipeline
from src.services.search_service import SearchService
from src.services.vector_store_service import VectorStoreService
from src.utils.logging import configure_logging, get_logger

# ---------------------------------------------------------------------------
# Module-level settings & logging
# ---------------------------------------------------------------------------

settings = Settings()
config = load_config(settings=settings)

configure_logging(
    log_level=settings.log_level,
    json_output=(settings.app_env == "production"),
)
_logger: structlog.BoundLogger = get_logger(__name__)


def _build_llm_provider(app_settings: Settings) -> ILLMProvider | None:
    """Return the cleansing LLM when a key or a compatible endpoint is configured."""
    if app_settings.resolved_llm_api_key() or app_settings.llm_base_url:
        return OpenAILLMProvider(settings=app_settings)
    return None


def _build_all(app_settings: Settings, app_config: dict[str, Any] | None = None) -> dict[str, Any]:
    """Construct every provider and service instance for the application.

    Returns a flat dict of named components to be stored on ``app.state``.
    """
    app_config = app_config or {}
    cleansing_cfg = app_config.get("cleansing", {})

    Path(app_settings.database_path).parent.mkdir(parents=True, exist_ok=True)
    rag_store = SQLiteRagStore(db_path=app_settings.database_path)

    embeddings = EmbeddingProviderRegistry(app_settings)
    llm_provider = _build_llm_provider(app_settings)
    cleanser = LLMCleanser(
        llm_provider=llm_provider,
        temperature=float(cleansing_cfg.get("llm_temperature", 0.3)),
        max_tokens=int(cleansing_cfg.get("llm_max_tokens", 2000)),
    )
    query_cache = MemoryCacheProvider(
        max_size=app_settings.query_cache_max_size,
        ttl=app_settings.query_cache_ttl_seconds,
    )

    document_pipeline = DocumentProcessingPipeline(
        store=rag_store,
        embeddings=embeddings,
        cleanser=cleanser,
        local_index_dir=app_settings.local_index_dir,
        embedding_timeout=app_settings.embedding_timeout_seconds,
        vector_store_timeout=app_settings.vector_store_timeout_seconds,
        max_concurrency=app_settings.processing_concurrency,
        max_upload_bytes=app_settings.max_upload_bytes,
    )
    search_service = SearchService(
        store=rag_store,
        embeddings=embeddings,
        cache=query_cache,
        local_index_dir=app_settings.local_index_dir,
        embedding_timeout=app_settings.embedding_timeout_seconds,
        vector_store_timeout=app_settings.vector_store_timeout_seconds,
        cache_ttl=app_settings.query_cache_ttl_seconds,
        default_top_k=app_settings.search_default_top_k,
    )

    return {
        "rag_store": rag_store,
        "embedding_registry": embeddings,
        "llm_provider": llm_provider,
        "query_cache": query_cache,
        "vector_store_service": VectorStoreService(
            store=rag_store,
            local_index_dir=app_settings.local_index_dir,
            connect_timeout=app_settings.vector_store_timeout_seconds,
        ),
        "collection_service": CollectionService(
            store=rag_store,
            local_index_dir=app_settings.local_index_dir,
            vector_store_timeout=app_settings.vector_store_timeout_seconds,
        ),
        "config_service": ConfigService(rag_store),
        "document_pipeline": document_pipeline,
        "search_service": search_service,
    }


# ---------------------------------------------------------------------------
# Application lifespan (startup / shutdown)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def _lifespan(application: FastAPI):  # noqa: ANN201
    """Build every component on startup and create the database schema."""
    app_settings: Settings = application.state.settings
    components = _build_all(app_settings, application.state.config)

    for key, value in components.items():
        setattr(application.state, key, value)

    await components["rag_store"].initialize()

    _logger.info(
        "app_startup",
        version=application.version,
        environment=app_settings.app_env,
        database=app_settings.database_path,
        embedding_provider=app_settings.embedding_provider,
        llm_cleansing=components["llm_provider"] is not None,
    )

    yield

    await components["query_cache"].clear()
    _logger.info("app_shutdown")


# ---------------------------------------------------------------------------
# FastAPI application factory
# ---------------------------------------------------------------------------


def create_app(
    app_settings: Settings | None = None,
    app_config: dict[str, Any] | None = None,
) -> FastAPI:
    """Build and configure the FastAPI application."""
    app_settings = app_settings or settings
    app_config = app_config if app_config is not None else config
    application = FastAPI(
        title="ragstack API",
        version=str(app_config.get("app", {}).get("version", "0.1.0")),
        description=(
            "Manage vector stores, collections and documents, turn documents "
            "into embedded chunks, and run semantic search over them."
        ),
        lifespan=_lifespan,
    )
    application.state.settings = app_settings
    application.state.config = app_config

    # -- Middleware (order matters: last added = first executed) --
    application.add_middleware(ErrorHandlingMiddleware)
    application.add_middleware(RequestLoggingMiddleware)
    configure_cors(application, allowed_origins=app_config.get("api", {}).get("cors_origins"))

    application.include_router(api_router)
    return application


app = create_app()

# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    uvicorn.run(
        "src.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=(settings.app_env == "development"),
    )
