"""Pydantic request/response schemas for the ragstack API.

Request schemas end with ``Request``, response schemas with ``Response``.
Domain models from :mod:`src.models` are reused as response bodies where
their shape is already public; documents and vector stores get dedicated
response schemas so raw content and credentials never leave the server.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from src.models.rag import (
    ChunkingStrategy,
    ChunkingStrategyType,
    CleansingConfig,
    CustomCleansingRule,
    Document,
    DocumentChunk,
    ProcessingOutcome,
    ProcessingStatus,
    SearchResult,
)
from src.models.vector_store import VectorStoreConfig, VectorStoreType


class ErrorResponse(BaseModel):
    """Standard error response body."""

    error: str = Field(description="Stable error kind, e.g. 'not_found' or 'connection'.")
    detail: str | None = None
    troubleshooting: str | None = None


class HealthResponse(BaseModel):
    """Application health check response."""

    status: str
    version: str
    database: str
    vector_stores: int


# ---------------------------------------------------------------------------
# Vector stores
# ---------------------------------------------------------------------------


class VectorStoreRequest(BaseModel):
    """Create, update or test a vector-store configuration.

    On update a missing ``credential`` keeps the stored one.
    """

    name: str = Field(..., min_length=1, max_length=200)
    type: VectorStoreType
    connection_string: str | None = None
    credential: str | None = None
    settings: dict[str, Any] = Field(default_factory=dict)
    enabled: bool = True
    is_default: bool = False

    def to_config(self) -> VectorStoreConfig:
        return VectorStoreConfig(**self.model_dump())


class VectorStoreResponse(BaseModel):
    """A stored vector-store configuration; the credential is reduced to a flag."""

    id: int
    name: str
    type: VectorStoreType
    connection_string: str | None = None
    has_credential: bool = False
    settings: dict[str, Any] = Field(default_factory=dict)
    enabled: bool
    is_default: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_config(cls, config: VectorStoreConfig) -> VectorStoreResponse:
        data = config.model_dump(exclude={"credential"})
        return cls(**data, has_credential=bool(config.credential))


class ConnectionTestResponse(BaseModel):
    """Result of ``POST /vector-stores/test``; nothing is persisted."""

    success: bool
    message: str = ""
    error: str | None = None
    troubleshooting: str | None = None


# ---------------------------------------------------------------------------
# Collections and documents
# ---------------------------------------------------------------------------


class CreateCollectionRequest(BaseModel):
    """New collection; ``vector_store_id`` defaults to the default store."""

    name: str = Field(..., max_length=200)
    description: str | None = None
    vector_store_id: int | None = None
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int | None = None
    chunking_strategy_id: int | None = None
    cleansing_config_id: int | None = None
    metadata: dict[str, Any] | None = None
    is_active: bool = True


class DocumentResponse(BaseModel):
    """Document metadata without its raw content."""

    id: int
    collection_id: int
    filename: str
    title: str
    content_type: str
    file_size: int
    metadata: dict[str, Any] | None = None
    processing_status: ProcessingStatus
    error_message: str | None = None
    has_content: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_document(cls, document: Document) -> DocumentResponse:
        data = document.model_dump(exclude={"raw_content"})
        return cls(**data, has_content=bool(document.raw_content))


class CopyCollectionRequest(BaseModel):
    """Copy a collection's settings under a new name, optionally with its contents."""

    source_collection_id: int
    new_name: str = Field(..., max_length=200)
    copy_documents: bool = True
    copy_vectors: bool = False


class SyncCollectionsRequest(BaseModel):
    vector_store_id: int


class RegenerateRequest(BaseModel):
    """Target and settings for rebuilding a document."""

    collection_id: int
    chunking_strategy_id: int | None = None
    cleansing_config_id: int | None = None
    delete_original: bool = False
    process: bool = True


class UploadResponse(BaseModel):
    """Upload result; ``outcome`` is set only when processing was requested."""

    document: DocumentResponse
    outcome: ProcessingOutcome | None = None


class ProcessRequest(BaseModel):
    """Optional overrides for one processing run."""

    chunking_strategy_id: int | None = None
    cleansing_config_id: int | None = None


class ReprocessResponse(BaseModel):
    document_id: int
    message: str


class ChunkListResponse(BaseModel):
    document_id: int
    chunks: list[DocumentChunk]
    total: int


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


class SearchRequest(BaseModel):
    """Semantic search inside one collection.

    ``filter`` is a flat mapping of metadata keys to values; a hit matches
    when every key equals the given value.
    Empty queries and ``top_k < 1`` are rejected by the service with a
    ``config`` error rather than a validation error.
    """

    collection_id: int
    query: str = Field(..., max_length=4000)
    top_k: int | None = Field(default=None, le=1000)
    filter: dict[str, Any] | None = None


class SearchResponse(BaseModel):
    results: list[SearchResult]
    query: str
    collection_id: int
    total: int


# ---------------------------------------------------------------------------
# Chunking strategies and cleansing configs
# ---------------------------------------------------------------------------


class ChunkingStrategyRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    type: ChunkingStrategyType = ChunkingStrategyType.FIXED_SIZE
    chunk_size: int = 1000
    chunk_overlap: int = 200
    is_default: bool = False

    def to_model(self) -> ChunkingStrategy:
        return ChunkingStrategy(**self.model_dump())


class CleansingConfigRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    llm_model_id: str | None = None
    llm_prompt: str | None = None
    remove_headers: bool = True
    remove_footers: bool = True
    remove_page_numbers: bool = True
    normalize_whitespace: bool = True
    fix_encoding: bool = True
    remove_urls: bool = False
    remove_emails: bool = False
    custom_rules: list[CustomCleansingRule] = Field(default_factory=list)
    is_default: bool = False

    def to_model(self) -> CleansingConfig:
        return CleansingConfig(**self.model_dump())
