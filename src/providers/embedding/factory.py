"""Embedding provider selection.

:func:`create_embedding_provider` maps an :class:`EmbeddingConfig` to one
concrete adapter.  :class:`EmbeddingProviderRegistry` builds configs from
application settings and keeps one provider per (model, dimensions) pair,
because each collection names its own embedding model.
"""

from __future__ import annotations

from typing import Callable

import structlog

from src.config.settings import Settings
from src.interfaces.embedding_provider import IEmbeddingProvider
from src.models.embedding import EmbeddingConfig, EmbeddingProviderKind
from src.providers.embedding.ollama_embedding_provider import OllamaEmbeddingProvider
from src.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from src.utils.errors import ConfigError

logger = structlog.get_logger(logger_name=__name__)

_BUILDERS: dict[EmbeddingProviderKind, Callable[[EmbeddingConfig], IEmbeddingProvider]] = {
    EmbeddingProviderKind.OPENAI: OpenAIEmbeddingProvider,
    EmbeddingProviderKind.CUSTOM: OpenAIEmbeddingProvider,
    EmbeddingProviderKind.GEMINI: OpenAIEmbeddingProvider,
    EmbeddingProviderKind.OLLAMA: OllamaEmbeddingProvider,
}


def parse_provider_kind(value: str) -> EmbeddingProviderKind:
    """Return the provider kind for *value* or raise ``ConfigError``."""
    try:
        return EmbeddingProviderKind(value.strip().lower())
    except ValueError as exc:
        supported = ", ".join(kind.value for kind in EmbeddingProviderKind)
        raise ConfigError(
            f"Unsupported embedding provider: {value!r} (expected one of {supported})",
            provider_name="embedding",
        ) from exc


def create_embedding_provider(config: EmbeddingConfig) -> IEmbeddingProvider:
    """Instantiate the adapter registered for ``config.provider``."""
    if not config.model:
        raise ConfigError("Embedding model is required", provider_name="embedding")
    return _BUILDERS[config.provider](config)


class EmbeddingProviderRegistry:
    """Settings-driven provider cache, one instance per application."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._kind = parse_provider_kind(settings.embedding_provider)
        self._providers: dict[tuple[str, int | None], IEmbeddingProvider] = {}

    def config_for(self, model: str, dimensions: int | None = None) -> EmbeddingConfig:
        base_url = self._settings.embedding_base_url
        if self._kind == EmbeddingProviderKind.OLLAMA:
            base_url = base_url or self._settings.ollama_base_url
        return EmbeddingConfig(
            provider=self._kind,
            model=model,
            api_key=self._settings.resolved_embedding_api_key(),
            base_url=base_url,
            dimensions=dimensions or self._settings.embedding_dimensions or None,
            max_retries=self._settings.embedding_max_retries,
        )

    def for_model(self, model: str, dimensions: int | None = None) -> IEmbeddingProvider:
        """Return the (cached) provider for *model*."""
        key = (model, dimensions)
        provider = self._providers.get(key)
        if provider is None:
            provider = create_embedding_provider(self.config_for(model, dimensions))
            self._providers[key] = provider
            logger.info(
                "embedding_provider_created",
                provider=provider.get_provider_name(),
                model=model,
                dimension=provider.get_dimension(),
            )
        return provider
