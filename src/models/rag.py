"""RAG domain models: collections, documents, chunks and their settings.

Defines Pydantic v2 models for the relational side of the RAG subsystem.
All models use frozen config; updates produce new instances via
``model_copy(update={...})``.

Lifecycle overview:
    1. A Document is created ``pending`` inside a Collection.
    2. The processing pipeline claims it (``processing``), cleanses and
       chunks its raw content, embeds each chunk and upserts the vectors
       into the collection's vector store.
    3. DocumentChunk rows are written only after the upsert succeeds and
       the document becomes ``completed``.  Any failure leaves the document
       ``failed`` with zero chunk rows.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)  # noqa: UP017


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------
class ProcessingStatus(str, Enum):  # noqa: UP042
    """Processing state of a document.

    Allowed transitions::

        pending -> processing -> completed
                              -> failed -> pending   (reprocess only)
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ChunkingStrategyType(str, Enum):  # noqa: UP042
    """How text is split into chunks."""

    FIXED_SIZE = "fixed_size"          # Hard cuts every chunk_size characters
    SENTENCE = "sentence"              # Prefer sentence boundaries
    PARAGRAPH = "paragraph"            # Prefer blank-line boundaries
    SLIDING_WINDOW = "sliding_window"  # Word windows with a fixed step


# ---------------------------------------------------------------------------
# Settings rows
# ---------------------------------------------------------------------------
class ChunkingStrategy(BaseModel):
    """A named parameter set applied when splitting cleansed text."""

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    name: str
    type: ChunkingStrategyType = ChunkingStrategyType.FIXED_SIZE
    chunk_size: int = Field(default=1000, description="Maximum chunk length in the strategy's unit.")
    chunk_overlap: int = Field(default=200, description="Units shared by consecutive chunks.")
    is_default: bool = False
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class CustomCleansingRule(BaseModel):
    """A user-supplied regex substitution applied during cleansing."""

    model_config = ConfigDict(frozen=True)

    pattern: str
    replacement: str = ""
    # Any of "i", "m", "s" (case-insensitive, multiline, dotall).
    flags: str = ""


class CleansingConfig(BaseModel):
    """Switches for the deterministic cleansing stage plus the optional LLM stage."""

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    name: str
    llm_model_id: str | None = Field(
        default=None, description="Chat model used for LLM-assisted cleansing; None disables it."
    )
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
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# Collection / Document / Chunk
# ---------------------------------------------------------------------------
class Collection(BaseModel):
    """A named namespace of document chunks living in exactly one vector store."""

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    name: str = Field(description="Unique name; also the namespace inside the vector store.")
    description: str | None = None
    vector_store_id: int
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int | None = None
    chunking_strategy_id: int | None = None
    cleansing_config_id: int | None = None
    metadata: dict[str, Any] | None = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class Document(BaseModel):
    """A source document owned by a collection."""

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    collection_id: int
    filename: str
    title: str
    content_type: str = "text/plain"
    file_size: int = 0
    raw_content: str | None = None
    metadata: dict[str, Any] | None = None
    processing_status: ProcessingStatus = ProcessingStatus.PENDING
    error_message: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class DocumentChunk(BaseModel):
    """A persisted chunk row; immutable once its document is completed."""

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    document_id: int
    sequence: int = Field(ge=0, description="Zero-based position of the chunk in the document.")
    text: str
    vector_id: str = Field(description="Identifier of the matching entry in the vector store.")
    metadata: dict[str, Any] = Field(default_factory=dict)


class TextChunk(BaseModel):
    """One slice of cleansed text produced by a chunking strategy.

    ``start`` and ``end`` are character offsets into the cleansed text, so
    ``text == source[start:end]`` always holds.
    """

    model_config = ConfigDict(frozen=True)

    index: int
    text: str
    start: int
    end: int


# ---------------------------------------------------------------------------
# Search results
# ---------------------------------------------------------------------------
class DocumentProjection(BaseModel):
    """Trimmed view of a document attached to a search hit."""

    model_config = ConfigDict(frozen=True)

    id: int
    title: str
    filename: str
    content_type: str


class SearchResult(BaseModel):
    """A vector hit enriched with its originating document (or None if deleted)."""

    model_config = ConfigDict(frozen=True)

    id: str
    score: float
    metadata: dict[str, Any] = Field(default_factory=dict)
    document: DocumentProjection | None = None


class ProcessingOutcome(BaseModel):
    """Result of one processing run, reported by batch processing."""

    model_config = ConfigDict(frozen=True)

    document_id: int
    status: ProcessingStatus
    chunk_count: int = 0
    error_kind: str | None = None
    error_message: str | None = None


# ---------------------------------------------------------------------------
# Collection maintenance
# ---------------------------------------------------------------------------
class CollectionStats(BaseModel):
    """Relational counts for a collection next to what its vector store reports.

    ``vector_count`` and ``dimension`` are ``None`` when the store could not
    be reached.
    """

    model_config = ConfigDict(frozen=True)

    collection_id: int
    name: str
    document_count: int = 0
    status_counts: dict[str, int] = Field(default_factory=dict)
    chunk_count: int = 0
    vector_count: int | None = None
    dimension: int | None = None


class CollectionCopyResult(BaseModel):
    """Outcome of copying a collection."""

    model_config = ConfigDict(frozen=True)

    collection: Collection
    documents_copied: int = 0
    vectors_copied: int = 0
    errors: list[str] = Field(default_factory=list)


class CollectionSyncReport(BaseModel):
    """Differences between a vector store's namespaces and its collection rows.

    ``added`` and ``deactivated`` stay empty for a dry run.
    """

    model_config = ConfigDict(frozen=True)

    vector_store_id: int
    namespaces: list[str] = Field(default_factory=list)
    missing_in_db: list[str] = Field(default_factory=list)
    missing_in_store: list[str] = Field(default_factory=list)
    added: list[Collection] = Field(default_factory=list)
    deactivated: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def in_sync(self) -> bool:
        return not self.missing_in_db and not self.missing_in_store
