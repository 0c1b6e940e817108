"""Vector-store configuration and wire models.

A :class:`VectorStoreConfig` row selects one backend implementation through
its ``type`` discriminator.  :class:`VectorItem` and :class:`VectorHit` are
the only shapes that cross the adapter boundary.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class VectorStoreType(str, Enum):  # noqa: UP042
    """Closed set of supported backend kinds."""

    LOCAL_INDEX = "local-index"                                # In-process numpy index
    CLIENT_SERVER_INDEX = "client-server-index"                # Chroma server over HTTP
    RELATIONAL_EXTENSION_INDEX = "relational-extension-index"  # PostgreSQL + pgvector


class VectorStoreConfig(BaseModel):
    """Connection settings for one vector-store backend."""

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    name: str
    type: VectorStoreType
    connection_string: str | None = None
    credential: str | None = Field(default=None, description="API key or password, never logged.")
    settings: dict[str, Any] = Field(default_factory=dict)
    enabled: bool = True
    is_default: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))  # noqa: UP017
    updated_at: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))  # noqa: UP017


class VectorItem(BaseModel):
    """One entry to upsert: an id, its embedding and opaque metadata."""

    model_config = ConfigDict(frozen=True)

    id: str
    vector: list[float]
    metadata: dict[str, Any] = Field(default_factory=dict)


class VectorHit(BaseModel):
    """One nearest-neighbour result, scored by cosine similarity."""

    model_config = ConfigDict(frozen=True)

    id: str
    score: float
    metadata: dict[str, Any] = Field(default_factory=dict)


class ConnectionTestResult(BaseModel):
    """Outcome of a connect-then-disconnect probe."""

    model_config = ConfigDict(frozen=True)

    success: bool
    message: str = ""
    error: str | None = None
    troubleshooting: str | None = None


class NamespaceStats(BaseModel):
    """Entry count and vector width of one namespace as the backend reports it."""

    model_config = ConfigDict(frozen=True)

    namespace: str
    vector_count: int = 0
    dimension: int | None = None
