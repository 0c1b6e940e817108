"""Collection creation, backend reconciliation and the read side of collections and documents."""

from __future__ import annotations

from typing import Any, Callable

import structlog

from src.interfaces.rag_store import IRagStore
from src.interfaces.vector_store_adapter import IVectorStoreAdapter, validate_namespace
from src.models.rag import Collection, CollectionStats, CollectionSyncReport, Document, DocumentChunk
from src.models.vector_store import NamespaceStats, VectorStoreConfig
from src.providers.vector_store.factory import create_adapter
from src.utils.concurrency import with_timeout
from src.utils.errors import ConfigError, NotFoundError, RagStackError, VectorStoreDisabledError
from src.utils.logging import get_logger

logger: structlog.BoundLogger = get_logger(__name__)

SYNCED_DESCRIPTION = "Synced from vector store"


class CollectionService:
    """Creates collections and answers lookups for collections and documents.

    Also reconciles collection rows with the namespaces a vector store
    actually holds.  Deleting a collection or document touches vectors, so it
    lives on
    :class:`~src.services.ingestion.document_processor.DocumentProcessingPipeline`.
    """

    def __init__(
        self,
        store: IRagStore,
        local_index_dir: str = "./data/local_index",
        vector_store_timeout: float | None = 30.0,
        adapter_factory: Callable[[VectorStoreConfig], IVectorStoreAdapter] | None = None,
    ) -> None:
        self._store = store
        self._vector_store_timeout = vector_store_timeout
        self._adapter_factory = adapter_factory or (
            lambda config: create_adapter(config, local_index_dir)
        )

    async def create_collection(
        self,
        name: str,
        vector_store_id: int | None = None,
        description: str | None = None,
        embedding_model: str = "text-embedding-3-small",
        embedding_dimensions: int | None = None,
        chunking_strategy_id: int | None = None,
        cleansing_config_id: int | None = None,
        metadata: dict[str, Any] | None = None,
        is_active: bool = True,
    ) -> Collection:
        """Create a collection bound to *vector_store_id* or the default store.

        Raises
        ------
        ConfigError
            Invalid name or dimensions, duplicate name, or no vector store
            given and no default configured.
        NotFoundError
            A referenced store, strategy or cleansing config does not exist.
        """
        validate_namespace(name)
        if not embedding_model or not embedding_model.strip():
            raise ConfigError("Embedding model is required")
        if embedding_dimensions is not None and embedding_dimensions < 1:
            raise ConfigError(f"embedding_dimensions must be positive, got {embedding_dimensions}")

        if vector_store_id is None:
            default_store = await self._store.get_default_vector_store()
            if default_store is None:
                raise ConfigError("No vector store given and no default vector store configured")
            vector_store_id = default_store.id
        elif await self._store.get_vector_store(vector_store_id) is None:
            raise NotFoundError(f"Vector store {vector_store_id} not found")

        if chunking_strategy_id is not None and await self._store.get_strategy(chunking_strategy_id) is None:
            raise NotFoundError(f"Chunking strategy {chunking_strategy_id} not found")
        if cleansing_config_id is not None and await self._store.get_cleansing_config(cleansing_config_id) is None:
            raise NotFoundError(f"Cleansing config {cleansing_config_id} not found")

        collection = await self._store.create_collection(
            Collection(
                name=name,
                description=description,
                vector_store_id=vector_store_id,  # type: ignore[arg-type]
                embedding_model=embedding_model,
                embedding_dimensions=embedding_dimensions,
                chunking_strategy_id=chunking_strategy_id,
                cleansing_config_id=cleansing_config_id,
                metadata=metadata,
                is_active=is_active,
            )
        )
        logger.info(
            "collection_created",
            collection_id=collection.id,
            name=collection.name,
            vector_store_id=collection.vector_store_id,
            embedding_model=collection.embedding_model,
        )
        return collection

    async def list_collections(self) -> list[Collection]:
        return await self._store.list_collections()

    async def get_collection(self, collection_id: int) -> Collection:
        collection = await self._store.get_collection(collection_id)
        if collection is None:
            raise NotFoundError(f"Collection {collection_id} not found")
        return collection

    async def list_documents(self, collection_id: int) -> list[Document]:
        await self.get_collection(collection_id)
        return await self._store.list_documents(collection_id)

    async def get_document(self, document_id: int) -> Document:
        document = await self._store.get_document(document_id)
        if document is None:
            raise NotFoundError(f"Document {document_id} not found")
        return document

    async def list_chunks(self, document_id: int) -> list[DocumentChunk]:
        await self.get_document(document_id)
        return await self._store.list_chunks(document_id)

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    async def collection_stats(self, collection_id: int) -> CollectionStats:
        """Return document, status and chunk counts plus what the vector store reports.

        An unreachable or disabled store leaves the vector fields ``None``
        instead of raising.
        """
        collection = await self.get_collection(collection_id)
        status_counts = await self._store.count_documents_by_status(collection_id)
        namespace_stats: NamespaceStats | None = None
        store_config = await self._store.get_vector_store(collection.vector_store_id)
        if store_config is not None and store_config.enabled:
            try:
                namespace_stats = await self._with_adapter(
                    store_config, lambda adapter: adapter.namespace_stats(collection.name)
                )
            except RagStackError as exc:
                logger.warning("collection_stats_unavailable", collection=collection.name, error=str(exc))

        return CollectionStats(
            collection_id=collection_id,
            name=collection.name,
            document_count=sum(status_counts.values()),
            status_counts=status_counts,
            chunk_count=await self._store.count_chunks(collection_id),
            vector_count=namespace_stats.vector_count if namespace_stats else None,
            dimension=namespace_stats.dimension if namespace_stats else None,
        )

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    async def sync_collections(self, vector_store_id: int, apply: bool = True) -> CollectionSyncReport:
        """Reconcile collection rows with the namespaces of one vector store.

        A namespace without a row gets one (``text-embedding-3-small``, the
        namespace's dimension).  An active collection with chunk rows whose
        namespace is gone is deactivated; rows are never deleted.  Collections
        that never indexed anything have no namespace yet and are left alone.
        With ``apply=False`` only the differences are reported.

        Raises
        ------
        NotFoundError
            If the vector store does not exist.
        VectorStoreDisabledError
            If the vector store is disabled.
        VectorStoreConnectionError
            If the backend cannot be reached.
        """
        store_config = await self._store.get_vector_store(vector_store_id)
        if store_config is None:
            raise NotFoundError(f"Vector store {vector_store_id} not found")
        if not store_config.enabled:
            raise VectorStoreDisabledError(f"Vector store {store_config.name!r} is disabled")

        namespaces, dimensions = await self._with_adapter(store_config, self._read_namespaces)
        rows = [c for c in await self._store.list_collections() if c.vector_store_id == vector_store_id]
        known = {c.name for c in rows}
        present = set(namespaces)

        missing_in_db = [name for name in namespaces if name not in known]
        missing_in_store: list[Collection] = []
        for collection in rows:
            if collection.is_active and collection.name not in present:
                if await self._store.count_chunks(collection.id) > 0:  # type: ignore[arg-type]
                    missing_in_store.append(collection)

        added: list[Collection] = []
        deactivated: list[str] = []
        errors: list[str] = []
        if apply:
            for name in missing_in_db:
                try:
                    validate_namespace(name)
                    added.append(
                        await self._store.create_collection(
                            Collection(
                                name=name,
                                description=SYNCED_DESCRIPTION,
                                vector_store_id=vector_store_id,
                                embedding_dimensions=dimensions.get(name),
                            )
                        )
                    )
                except RagStackError as exc:
                    errors.append(f"Failed to add collection {name!r}: {exc.message}")
            for collection in missing_in_store:
                await self._store.set_collection_active(collection.id, False)  # type: ignore[arg-type]
                deactivated.append(collection.name)

        report = CollectionSyncReport(
            vector_store_id=vector_store_id,
            namespaces=namespaces,
            missing_in_db=missing_in_db,
            missing_in_store=[c.name for c in missing_in_store],
            added=added,
            deactivated=deactivated,
            errors=errors,
        )
        logger.info(
            "collections_synced" if apply else "collections_sync_checked",
            vector_store_id=vector_store_id,
            namespaces=len(namespaces),
            missing_in_db=len(missing_in_db),
            missing_in_store=len(missing_in_store),
            added=len(added),
            deactivated=len(deactivated),
            errors=len(errors),
        )
        return report

    async def _read_namespaces(self, adapter: IVectorStoreAdapter) -> tuple[list[str], dict[str, int]]:
        namespaces = await adapter.list_namespaces()
        dimensions: dict[str, int] = {}
        for name in namespaces:
            try:
                stats = await adapter.namespace_stats(name)
            except ConfigError:
                # Backend names outside the collection alphabet cannot be synced.
                continue
            if stats.dimension:
                dimensions[name] = stats.dimension
        return namespaces, dimensions

    async def _with_adapter(
        self,
        store_config: VectorStoreConfig,
        operation: Callable[[IVectorStoreAdapter], Any],
    ) -> Any:
        adapter = self._adapter_factory(store_config)
        provider_name = adapter.get_provider_name()
        try:
            await with_timeout(adapter.connect(), self._vector_store_timeout, "vector_store_connect", provider_name)
            return await with_timeout(
                operation(adapter), self._vector_store_timeout, "vector_store_read", provider_name
            )
        finally:
            await adapter.disconnect()
