"""CRUD for chunking strategies and cleansing configs.

Both kinds of settings rows share the same rules: values are validated
before anything is written, marking a row ``is_default`` clears the
previous default in the same transaction (done by the store), and the
current default cannot be deleted.
"""

from __future__ import annotations

import structlog

from src.interfaces.rag_store import IRagStore
from src.models.rag import ChunkingStrategy, CleansingConfig
from src.services.ingestion.chunker import validate_chunking_params
from src.services.ingestion.cleanser import compile_rule
from src.utils.errors import ConfigError, NotFoundError, StateError
from src.utils.logging import get_logger

logger: structlog.BoundLogger = get_logger(__name__)


def _require_name(name: str, kind: str) -> None:
    if not name or not name.strip():
        raise ConfigError(f"{kind} name is required")


class ConfigService:
    """Manages the chunking-strategy and cleansing-config tables.

    Parameters
    ----------
    store:
        Relational store holding the settings rows.
    """

    def __init__(self, store: IRagStore) -> None:
        self._store = store

    # ------------------------------------------------------------------
    # Chunking strategies
    # ------------------------------------------------------------------

    async def list_strategies(self) -> list[ChunkingStrategy]:
        return await self._store.list_strategies()

    async def get_strategy(self, strategy_id: int) -> ChunkingStrategy:
        strategy = await self._store.get_strategy(strategy_id)
        if strategy is None:
            raise NotFoundError(f"Chunking strategy {strategy_id} not found")
        return strategy

    async def create_strategy(self, strategy: ChunkingStrategy) -> ChunkingStrategy:
        self._validate_strategy(strategy)
        stored = await self._store.save_strategy(strategy.model_copy(update={"id": None}))
        logger.info(
            "chunking_strategy_created",
            strategy_id=stored.id,
            type=stored.type.value,
            is_default=stored.is_default,
        )
        return stored

    async def update_strategy(self, strategy_id: int, strategy: ChunkingStrategy) -> ChunkingStrategy:
        await self.get_strategy(strategy_id)
        self._validate_strategy(strategy)
        stored = await self._store.save_strategy(strategy.model_copy(update={"id": strategy_id}))
        logger.info("chunking_strategy_updated", strategy_id=strategy_id, is_default=stored.is_default)
        return stored

    async def delete_strategy(self, strategy_id: int) -> None:
        strategy = await self.get_strategy(strategy_id)
        if strategy.is_default:
            raise StateError("Cannot delete the default chunking strategy; make another one default first")
        await self._store.delete_strategy(strategy_id)
        logger.info("chunking_strategy_deleted", strategy_id=strategy_id)

    @staticmethod
    def _validate_strategy(strategy: ChunkingStrategy) -> None:
        _require_name(strategy.name, "Chunking strategy")
        validate_chunking_params(strategy.chunk_size, strategy.chunk_overlap)

    # ------------------------------------------------------------------
    # Cleansing configs
    # ------------------------------------------------------------------

    async def list_cleansing_configs(self) -> list[CleansingConfig]:
        return await self._store.list_cleansing_configs()

    async def get_cleansing_config(self, config_id: int) -> CleansingConfig:
        config = await self._store.get_cleansing_config(config_id)
        if config is None:
            raise NotFoundError(f"Cleansing config {config_id} not found")
        return config

    async def create_cleansing_config(self, config: CleansingConfig) -> CleansingConfig:
        self._validate_cleansing(config)
        stored = await self._store.save_cleansing_config(config.model_copy(update={"id": None}))
        logger.info(
            "cleansing_config_created",
            config_id=stored.id,
            llm_enabled=bool(stored.llm_model_id),
            is_default=stored.is_default,
        )
        return stored

    async def update_cleansing_config(self, config_id: int, config: CleansingConfig) -> CleansingConfig:
        await self.get_cleansing_config(config_id)
        self._validate_cleansing(config)
        stored = await self._store.save_cleansing_config(config.model_copy(update={"id": config_id}))
        logger.info("cleansing_config_updated", config_id=config_id, is_default=stored.is_default)
        return stored

    async def delete_cleansing_config(self, config_id: int) -> None:
        config = await self.get_cleansing_config(config_id)
        if config.is_default:
            raise StateError("Cannot delete the default cleansing config; make another one default first")
        await self._store.delete_cleansing_config(config_id)
        logger.info("cleansing_config_deleted", config_id=config_id)

    @staticmethod
    def _validate_cleansing(config: CleansingConfig) -> None:
        _require_name(config.name, "Cleansing config")
        for rule in config.custom_rules:
            compile_rule(rule)
        if config.llm_prompt is not None and not config.llm_prompt.strip():
            raise ConfigError("llm_prompt must not be blank; omit it to use the default prompt")
