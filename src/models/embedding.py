"""Embedding provider configuration models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class EmbeddingProviderKind(str, Enum):  # noqa: UP042
    """Embedding backends reachable through an OpenAI-compatible API."""

    OPENAI = "openai"
    CUSTOM = "custom"
    OLLAMA = "ollama"
    GEMINI = "gemini"


class EmbeddingConfig(BaseModel):
    """Provider + model selection for one embedding provider instance."""

    model_config = ConfigDict(frozen=True)

    provider: EmbeddingProviderKind = EmbeddingProviderKind.OPENAI
    model: str = "text-embedding-3-small"
    api_key: str = ""
    base_url: str = ""
    dimensions: int | None = None
    max_retries: int = 2
