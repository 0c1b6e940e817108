"""Abstract base class for the relational side of the RAG subsystem.

Holds vector-store configurations, collections, documents, chunk rows,
chunking strategies and cleansing configs.  The processing pipeline relies
on three guarantees from every implementation:

* :meth:`IRagStore.claim_document` is a single conditional update, so two
  concurrent claims on one ``pending`` document cannot both succeed.
* :meth:`IRagStore.complete_document` writes all chunk rows and the
  ``completed`` status in one transaction.
* Saving a row with ``is_default=True`` clears every other default of the
  same kind in the same transaction.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from src.models.rag import (
    ChunkingStrategy,
    CleansingConfig,
    Collection,
    Document,
    DocumentChunk,
    DocumentProjection,
)
from src.models.vector_store import VectorStoreConfig


# Concrete implementations (src/providers/storage/):
#   SQLiteRagStore  -- aiosqlite, single database file
class IRagStore(ABC):
    """Contract for persisting RAG configuration and document state."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create tables and indices if they do not exist."""

    # -- Vector stores ---------------------------------------------------

    @abstractmethod
    async def list_vector_stores(self) -> list[VectorStoreConfig]: ...

    @abstractmethod
    async def get_vector_store(self, store_id: int) -> VectorStoreConfig | None: ...

    @abstractmethod
    async def get_default_vector_store(self) -> VectorStoreConfig | None: ...

    @abstractmethod
    async def save_vector_store(self, config: VectorStoreConfig) -> VectorStoreConfig:
        """Insert *config* (``id`` is None) or update the row with its id.

        Returns
        -------
        VectorStoreConfig
            The stored row, with ``id`` and timestamps filled in.

        Raises
        ------
        ConfigError
            If another store already uses the same name.
        NotFoundError
            If ``config.id`` is set but no such row exists.
        """

    @abstractmethod
    async def delete_vector_store(self, store_id: int) -> bool: ...

    @abstractmethod
    async def count_collections_for_store(self, store_id: int) -> int: ...

    # -- Collections -----------------------------------------------------

    @abstractmethod
    async def list_collections(self) -> list[Collection]: ...

    @abstractmethod
    async def get_collection(self, collection_id: int) -> Collection | None: ...

    @abstractmethod
    async def create_collection(self, collection: Collection) -> Collection:
        """Insert *collection*; raises ``ConfigError`` on a duplicate name."""

    @abstractmethod
    async def delete_collection(self, collection_id: int) -> bool: ...

    @abstractmethod
    async def count_documents(self, collection_id: int) -> int: ...

    @abstractmethod
    async def set_collection_active(self, collection_id: int, is_active: bool) -> Collection: ...

    @abstractmethod
    async def count_documents_by_status(self, collection_id: int) -> dict[str, int]:
        """Return ``{status: count}`` for the statuses present in the collection."""

    @abstractmethod
    async def count_chunks(self, collection_id: int) -> int: ...

    # -- Documents -------------------------------------------------------

    @abstractmethod
    async def create_document(self, document: Document) -> Document: ...

    @abstractmethod
    async def get_document(self, document_id: int) -> Document | None: ...

    @abstractmethod
    async def list_documents(self, collection_id: int) -> list[Document]: ...

    @abstractmethod
    async def claim_document(self, document_id: int) -> bool:
        """Move a document from ``pending`` to ``processing``.

        Returns
        -------
        bool
            ``True`` if this call won the claim, ``False`` if the document is
            missing or not ``pending``.
        """

    @abstractmethod
    async def complete_document(
        self, document_id: int, chunks: list[DocumentChunk]
    ) -> list[DocumentChunk]:
        """Persist *chunks* and mark the document ``completed`` atomically."""

    @abstractmethod
    async def fail_document(self, document_id: int, error_message: str) -> None:
        """Delete chunk rows, clear content and metadata, mark ``failed``."""

    @abstractmethod
    async def reset_document(self, document_id: int) -> None:
        """Delete chunk rows, clear content, error and metadata, mark ``pending``."""

    @abstractmethod
    async def update_document_content(
        self,
        document_id: int,
        raw_content: str,
        file_size: int,
        content_type: str | None = None,
    ) -> Document: ...

    @abstractmethod
    async def delete_document(self, document_id: int) -> bool: ...

    @abstractmethod
    async def list_chunks(self, document_id: int) -> list[DocumentChunk]: ...

    @abstractmethod
    async def get_document_projections(
        self, document_ids: list[int]
    ) -> dict[int, DocumentProjection]:
        """Return ``{id: projection}`` for the ids that still exist."""

    # -- Chunking strategies ---------------------------------------------

    @abstractmethod
    async def list_strategies(self) -> list[ChunkingStrategy]: ...

    @abstractmethod
    async def get_strategy(self, strategy_id: int) -> ChunkingStrategy | None: ...

    @abstractmethod
    async def get_default_strategy(self) -> ChunkingStrategy | None: ...

    @abstractmethod
    async def save_strategy(self, strategy: ChunkingStrategy) -> ChunkingStrategy: ...

    @abstractmethod
    async def delete_strategy(self, strategy_id: int) -> bool: ...

    # -- Cleansing configs -----------------------------------------------

    @abstractmethod
    async def list_cleansing_configs(self) -> list[CleansingConfig]: ...

    @abstractmethod
    async def get_cleansing_config(self, config_id: int) -> CleansingConfig | None: ...

    @abstractmethod
    async def get_default_cleansing_config(self) -> CleansingConfig | None: ...

    @abstractmethod
    async def save_cleansing_config(self, config: CleansingConfig) -> CleansingConfig: ...

    @abstractmethod
    async def delete_cleansing_config(self, config_id: int) -> bool: ...
