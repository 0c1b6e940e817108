"""Document processing pipeline: claim -> cleanse -> chunk -> embed -> upsert -> persist.

:class:`DocumentProcessingPipeline` drives one document through its state
machine::

    pending -> processing -> completed
                          -> failed -> pending   (reprocess only)

The claim is a single conditional UPDATE, so when two callers race for the
same ``pending`` document exactly one runs the pipeline and the other gets a
:class:`StateError` without touching anything.

Chunk rows are written only after every vector was upserted, in the same
transaction that marks the document ``completed``.  On any failure the run
rolls itself back: chunk rows are deleted, vectors written by this run are
removed (best-effort), and the document is marked ``failed`` with its raw
content cleared.  Cancelling the task triggers the same rollback.

Embedding and vector-store calls run under caller-configured deadlines;
expiry raises :class:`OperationTimeoutError`.  A fresh vector-store adapter
is created for every run and disconnected when the run ends.

Collection copies and regenerated documents go through the same run; a
copy with vectors reuses the source chunk texts instead of re-chunking.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable

import structlog

from src.interfaces.rag_store import IRagStore
from src.interfaces.vector_store_adapter import IVectorStoreAdapter, validate_namespace
from src.models.rag import (
    ChunkingStrategy,
    CleansingConfig,
    Collection,
    CollectionCopyResult,
    Document,
    DocumentChunk,
    ProcessingOutcome,
    ProcessingStatus,
    TextChunk,
)
from src.models.vector_store import VectorItem, VectorStoreConfig
from src.providers.embedding.factory import EmbeddingProviderRegistry
from src.providers.vector_store.factory import create_adapter
from src.services.ingestion.chunker import TextChunker
from src.services.ingestion.cleanser import LLMCleanser
from src.services.ingestion.extractor import extract_text
from src.utils.concurrency import throttled_gather, with_timeout
from src.utils.errors import (
    CollectionInactiveError,
    ConfigError,
    NotFoundError,
    ProcessingError,
    RagStackError,
    StateError,
    VectorStoreDisabledError,
)
from src.utils.logging import get_logger

logger: structlog.BoundLogger = get_logger(__name__)

REPROCESS_MESSAGE = "Document queued for reprocessing. Please re-upload the file."


def vector_id_for(document_id: int, sequence: int) -> str:
    """Return the vector-store id of chunk *sequence* of *document_id*."""
    return f"{document_id}_{sequence}"


def _piece_from_chunk(chunk: DocumentChunk) -> TextChunk:
    start = int(chunk.metadata.get("start_offset", 0))
    end = int(chunk.metadata.get("end_offset", start + len(chunk.text)))
    return TextChunk(index=chunk.sequence, text=chunk.text, start=start, end=end)


class DocumentProcessingPipeline:
    """Ingests documents and turns them into searchable vectors.

    Parameters
    ----------
    store:
        Relational store for documents, chunks and settings rows.
    embeddings:
        Resolves the embedding provider for a collection's model.
    cleanser:
        Deterministic cleansing with the optional LLM stage.
    local_index_dir:
        Default data directory handed to ``local-index`` adapters.
    embedding_timeout, vector_store_timeout:
        Deadlines in seconds for each embedding call and each vector-store
        call.  ``None`` waits indefinitely.
    max_concurrency:
        Default parallelism for :meth:`process_many`.
    max_upload_bytes:
        Largest accepted upload.
    adapter_factory:
        Builds an unconnected adapter for a store config.  Defaults to
        :func:`create_adapter`.
    """

    def __init__(
        self,
        store: IRagStore,
        embeddings: EmbeddingProviderRegistry,
        cleanser: LLMCleanser | None = None,
        local_index_dir: str = "./data/local_index",
        embedding_timeout: float | None = 60.0,
        vector_store_timeout: float | None = 30.0,
        max_concurrency: int = 4,
        max_upload_bytes: int = 20 * 1024 * 1024,
        adapter_factory: Callable[[VectorStoreConfig], IVectorStoreAdapter] | None = None,
    ) -> None:
        self._store = store
        self._embeddings = embeddings
        self._cleanser = cleanser or LLMCleanser()
        self._embedding_timeout = embedding_timeout
        self._vector_store_timeout = vector_store_timeout
        self._max_concurrency = max_concurrency
        self._max_upload_bytes = max_upload_bytes
        self._adapter_factory = adapter_factory or (
            lambda config: create_adapter(config, local_index_dir)
        )

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def ingest(
        self,
        collection_id: int,
        filename: str,
        data: bytes,
        content_type: str | None = None,
        title: str | None = None,
        metadata: dict[str, Any] | None = None,
        process: bool = False,
        strategy_id: int | None = None,
        cleansing_config_id: int | None = None,
    ) -> tuple[Document, ProcessingOutcome | None]:
        """Store an uploaded file as a ``pending`` document, optionally processing it.

        A processing failure does not raise here: the document is returned
        together with a ``failed`` outcome describing the error.

        Raises
        ------
        NotFoundError
            If the collection does not exist.
        CollectionInactiveError
            If the collection is inactive.
        ConfigError
            If the upload is empty, too large or in an unsupported format.
        """
        collection = await self._require_collection(collection_id)
        if not collection.is_active:
            raise CollectionInactiveError(f"Collection {collection.name!r} is not active")
        text, mime = await self._extract(filename, data, content_type)

        document = await self._store.create_document(
            Document(
                collection_id=collection_id,
                filename=filename,
                title=(title or "").strip() or filename,
                content_type=mime,
                file_size=len(data),
                raw_content=text,
                metadata=metadata,
            )
        )
        logger.info(
            "document_ingested",
            document_id=document.id,
            collection_id=collection_id,
            filename=filename,
            content_type=mime,
            bytes=len(data),
        )
        if not process:
            return document, None

        outcome = await self._outcome_for(
            document.id, self.process(document.id, strategy_id, cleansing_config_id)
        )
        refreshed = await self._store.get_document(document.id)
        return refreshed or document, outcome

    async def resupply(
        self,
        document_id: int,
        data: bytes,
        filename: str | None = None,
        content_type: str | None = None,
    ) -> Document:
        """Replace the raw content of a ``pending`` document, e.g. after reprocess."""
        document = await self._require_document(document_id)
        if document.processing_status != ProcessingStatus.PENDING:
            raise StateError(
                f"Document {document_id} is {document.processing_status.value}; "
                "content can only be supplied to pending documents"
            )
        text, mime = await self._extract(filename or document.filename, data, content_type)
        updated = await self._store.update_document_content(document_id, text, len(data), mime)
        logger.info("document_content_resupplied", document_id=document_id, bytes=len(data))
        return updated

    async def _extract(self, filename: str, data: bytes, content_type: str | None) -> tuple[str, str]:
        if not data:
            raise ConfigError(f"Uploaded file {filename!r} is empty")
        if len(data) > self._max_upload_bytes:
            raise ConfigError(
                f"Uploaded file {filename!r} is {len(data)} bytes; the limit is {self._max_upload_bytes}"
            )
        # PDF parsing is CPU-bound.
        return await asyncio.to_thread(extract_text, data, filename, content_type)

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def process(
        self,
        document_id: int,
        strategy_id: int | None = None,
        cleansing_config_id: int | None = None,
    ) -> ProcessingOutcome:
        """Run the full pipeline for one ``pending`` document.

        Parameters
        ----------
        document_id:
            Document to process.
        strategy_id:
            Chunking strategy override; defaults to the collection's, then
            the global default, then fixed_size 1000/200.
        cleansing_config_id:
            Cleansing config override, resolved the same way.

        Returns
        -------
        ProcessingOutcome
            ``completed`` with the number of chunks written.

        Raises
        ------
        NotFoundError
            If the document does not exist.
        StateError
            If the document is not ``pending`` (nothing is modified).
        CollectionInactiveError, VectorStoreDisabledError
            If the collection or its store cannot take writes.  The document
            is marked ``failed``.
        OperationTimeoutError
            If an embedding or vector-store call exceeded its deadline.
        ProcessingError
            For any other failure.  The document is marked ``failed``.
        asyncio.CancelledError
            Re-raised after the same rollback when the run is cancelled.
        """
        return await self._process(document_id, strategy_id, cleansing_config_id)

    async def _process(
        self,
        document_id: int,
        strategy_id: int | None = None,
        cleansing_config_id: int | None = None,
        pieces: list[TextChunk] | None = None,
    ) -> ProcessingOutcome:
        # Precomputed pieces skip cleansing and chunking.
        if not await self._store.claim_document(document_id):
            document = await self._store.get_document(document_id)
            if document is None:
                raise NotFoundError(f"Document {document_id} not found")
            raise StateError(
                f"Document {document_id} is {document.processing_status.value}; "
                "only pending documents can be processed"
            )

        started = time.monotonic()
        logger.info("document_processing_started", document_id=document_id)

        stage = "load"
        adapter: IVectorStoreAdapter | None = None
        namespace: str | None = None
        written_ids: list[str] = []
        try:
            document = await self._require_document(document_id)
            collection = await self._require_collection(document.collection_id)
            store_config = await self._writable_store(collection)
            namespace = collection.name
            if pieces is None:
                if document.raw_content is None:
                    raise ProcessingError("Document content is missing; re-upload the file")

                stage = "cleansing"
                cleansing = await self._resolve_cleansing(cleansing_config_id, collection)
                text = await self._cleanser.cleanse(document.raw_content, cleansing)

                stage = "chunking"
                strategy = await self._resolve_strategy(strategy_id, collection)
                pieces = TextChunker.for_strategy(strategy).chunk(text)
            if not pieces:
                raise ProcessingError("No text left to index after cleansing")

            stage = "embedding"
            provider = self._embeddings.for_model(collection.embedding_model, collection.embedding_dimensions)
            vectors = await with_timeout(
                provider.embed([piece.text for piece in pieces]),
                self._embedding_timeout,
                operation="embedding",
                provider_name=provider.get_provider_name(),
            )
            if len(vectors) != len(pieces):
                raise ProcessingError(
                    f"Embedding provider returned {len(vectors)} vectors for {len(pieces)} chunks"
                )

            chunks = [
                DocumentChunk(
                    document_id=document_id,
                    sequence=piece.index,
                    text=piece.text,
                    vector_id=vector_id_for(document_id, piece.index),
                    metadata={
                        **(document.metadata or {}),
                        "document_id": document_id,
                        "chunk_index": piece.index,
                        "document_title": document.title,
                        "document_type": document.content_type,
                        "start_offset": piece.start,
                        "end_offset": piece.end,
                    },
                )
                for piece in pieces
            ]
            items = [
                VectorItem(id=chunk.vector_id, vector=vector, metadata=chunk.metadata)
                for chunk, vector in zip(chunks, vectors, strict=True)
            ]

            stage = "vector_store"
            adapter = self._adapter_factory(store_config)
            await self._bounded(adapter.connect(), "vector_store_connect", adapter)
            written_ids = [item.id for item in items]
            await self._bounded(adapter.upsert(namespace, items), "vector_store_upsert", adapter)

            stage = "persist"
            stored = await self._store.complete_document(document_id, chunks)
        except asyncio.CancelledError as exc:
            await asyncio.shield(
                self._roll_back(
                    document_id, exc, adapter, namespace, written_ids, reason="Processing was cancelled"
                )
            )
            raise
        except Exception as exc:
            await self._roll_back(document_id, exc, adapter, namespace, written_ids)
            translated = self._as_processing_error(exc, stage)
            if translated is exc:
                raise
            raise translated from exc
        finally:
            if adapter is not None:
                await adapter.disconnect()

        duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "document_processing_completed",
            document_id=document_id,
            chunk_count=len(stored),
            duration_ms=duration_ms,
        )
        return ProcessingOutcome(
            document_id=document_id,
            status=ProcessingStatus.COMPLETED,
            chunk_count=len(stored),
        )

    async def process_many(
        self,
        document_ids: list[int],
        max_concurrency: int | None = None,
        strategy_id: int | None = None,
        cleansing_config_id: int | None = None,
    ) -> list[ProcessingOutcome]:
        """Process several documents concurrently; one outcome per id, in order."""
        limit = max_concurrency or self._max_concurrency
        outcomes = await throttled_gather(
            [
                self._outcome_for(doc_id, self.process(doc_id, strategy_id, cleansing_config_id))
                for doc_id in document_ids
            ],
            limit=limit,
            return_exceptions=False,
        )
        logger.info(
            "batch_processing_completed",
            documents=len(document_ids),
            completed=sum(1 for o in outcomes if o.status == ProcessingStatus.COMPLETED),
            max_concurrency=limit,
        )
        return outcomes

    async def _outcome_for(self, document_id: int, run: Any) -> ProcessingOutcome:
        try:
            return await run
        except RagStackError as exc:
            document = await self._store.get_document(document_id)
            return ProcessingOutcome(
                document_id=document_id,
                status=document.processing_status if document else ProcessingStatus.FAILED,
                error_kind=exc.kind,
                error_message=exc.message,
            )

    async def _bounded(self, awaitable: Any, operation: str, adapter: IVectorStoreAdapter) -> Any:
        return await with_timeout(
            awaitable,
            self._vector_store_timeout,
            operation=operation,
            provider_name=adapter.get_provider_name(),
        )

    async def _roll_back(
        self,
        document_id: int,
        exc: BaseException,
        adapter: IVectorStoreAdapter | None,
        namespace: str | None,
        written_ids: list[str],
        reason: str | None = None,
    ) -> None:
        if adapter is not None and adapter.is_connected and namespace and written_ids:
            try:
                await self._bounded(adapter.delete(namespace, written_ids), "vector_store_delete", adapter)
            except Exception as cleanup_exc:  # noqa: BLE001
                logger.warning(
                    "vector_cleanup_failed",
                    document_id=document_id,
                    namespace=namespace,
                    error=str(cleanup_exc),
                )
        await self._store.fail_document(document_id, reason or str(exc))
        logger.error(
            "document_processing_failed",
            document_id=document_id,
            error_type=type(exc).__name__,
            error=reason or str(exc),
        )

    @staticmethod
    def _as_processing_error(exc: Exception, stage: str) -> RagStackError:
        if isinstance(exc, (ProcessingError, CollectionInactiveError, VectorStoreDisabledError)):
            return exc
        return ProcessingError(
            message=f"Processing failed during {stage}: {exc}",
            provider_name=getattr(exc, "provider_name", None),
        )

    # ------------------------------------------------------------------
    # Reprocess / delete
    # ------------------------------------------------------------------

    async def reprocess(self, document_id: int) -> str:
        """Reset a ``failed`` document to ``pending`` so its content can be re-uploaded."""
        document = await self._require_document(document_id)
        if document.processing_status != ProcessingStatus.FAILED:
            raise StateError(
                f"Document {document_id} is {document.processing_status.value}; "
                "only failed documents can be reprocessed"
            )
        collection = await self._require_collection(document.collection_id)
        if not collection.is_active:
            raise CollectionInactiveError(f"Collection {collection.name!r} is not active")

        await self._store.reset_document(document_id)
        logger.info("document_reprocess_queued", document_id=document_id)
        return REPROCESS_MESSAGE

    async def delete_document(self, document_id: int) -> None:
        """Delete a document, its chunk rows and (best-effort) its vectors."""
        document = await self._require_document(document_id)
        if document.processing_status == ProcessingStatus.PROCESSING:
            raise StateError(f"Document {document_id} is being processed")

        chunks = await self._store.list_chunks(document_id)
        collection = await self._store.get_collection(document.collection_id)
        if chunks and collection is not None:
            vector_ids = [chunk.vector_id for chunk in chunks]
            await self._best_effort(
                collection,
                lambda adapter: adapter.delete(collection.name, vector_ids),
                "vector_store_delete",
            )
        await self._store.delete_document(document_id)
        logger.info("document_deleted", document_id=document_id, chunks=len(chunks))

    async def delete_collection(self, collection_id: int) -> None:
        """Delete an empty collection and (best-effort) its vector namespace."""
        collection = await self._require_collection(collection_id)
        remaining = await self._store.count_documents(collection_id)
        if remaining:
            raise StateError(
                f"Collection {collection.name!r} still has {remaining} document(s); delete them first"
            )
        await self._best_effort(
            collection,
            lambda adapter: adapter.delete_namespace(collection.name),
            "vector_store_delete_namespace",
        )
        await self._store.delete_collection(collection_id)
        logger.info("collection_deleted", collection_id=collection_id, name=collection.name)

    # ------------------------------------------------------------------
    # Copy / regenerate
    # ------------------------------------------------------------------

    async def copy_collection(
        self,
        source_collection_id: int,
        new_name: str,
        copy_documents: bool = True,
        copy_vectors: bool = False,
    ) -> CollectionCopyResult:
        """Create *new_name* with the source collection's settings, optionally copying its contents.

        With *copy_documents* every source document is copied as ``pending``
        with its content and metadata.  With *copy_vectors* as well, each
        ``completed`` source document keeps its chunk texts: they are embedded
        into the new namespace and the copy ends ``completed``.  A copy whose
        indexing fails is left ``failed`` and reported in ``errors``.

        Raises
        ------
        NotFoundError
            If the source collection does not exist.
        ConfigError
            Invalid or duplicate name, or *copy_vectors* without
            *copy_documents*.
        """
        source = await self._require_collection(source_collection_id)
        new_name = (new_name or "").strip()
        validate_namespace(new_name)
        if copy_vectors and not copy_documents:
            raise ConfigError("Copying vectors requires copying documents")

        target = await self._store.create_collection(
            source.model_copy(
                update={
                    "id": None,
                    "name": new_name,
                    "description": f"Copied from {source.name}",
                    "is_active": True,
                }
            )
        )
        documents_copied = 0
        vectors_copied = 0
        errors: list[str] = []
        if copy_documents:
            for document in await self._store.list_documents(source.id):
                copy = await self._store.create_document(
                    document.model_copy(
                        update={
                            "id": None,
                            "collection_id": target.id,
                            "processing_status": ProcessingStatus.PENDING,
                            "error_message": None,
                        }
                    )
                )
                documents_copied += 1
                if not copy_vectors or document.processing_status != ProcessingStatus.COMPLETED:
                    continue
                pieces = [_piece_from_chunk(chunk) for chunk in await self._store.list_chunks(document.id)]
                outcome = await self._outcome_for(copy.id, self._process(copy.id, pieces=pieces))
                if outcome.status == ProcessingStatus.COMPLETED:
                    vectors_copied += outcome.chunk_count
                else:
                    errors.append(f"Document {document.id} ({document.filename}): {outcome.error_message}")

        logger.info(
            "collection_copied",
            source_collection_id=source.id,
            collection_id=target.id,
            name=target.name,
            documents=documents_copied,
            vectors=vectors_copied,
            errors=len(errors),
        )
        return CollectionCopyResult(
            collection=target,
            documents_copied=documents_copied,
            vectors_copied=vectors_copied,
            errors=errors,
        )

    async def regenerate(
        self,
        document_id: int,
        collection_id: int,
        strategy_id: int | None = None,
        cleansing_config_id: int | None = None,
        delete_original: bool = False,
        process: bool = True,
    ) -> tuple[Document, ProcessingOutcome | None]:
        """Rebuild a document into *collection_id* with a chosen strategy and cleansing config.

        The content comes from the document's raw content or, when that was
        cleared, from its chunk texts joined by blank lines.  A new document
        named ``regenerated_<filename>`` is created, the original is deleted
        when *delete_original* is set, and the new one is processed unless
        *process* is false.  Like :meth:`ingest`, a processing failure is
        reported in the outcome rather than raised.

        Raises
        ------
        NotFoundError
            Unknown document, collection, strategy or cleansing config.
        CollectionInactiveError
            If the target collection is inactive.
        StateError
            If the document is being processed or has no content left.
        """
        document = await self._require_document(document_id)
        if document.processing_status == ProcessingStatus.PROCESSING:
            raise StateError(f"Document {document_id} is being processed")
        target = await self._require_collection(collection_id)
        if not target.is_active:
            raise CollectionInactiveError(f"Collection {target.name!r} is not active")
        if strategy_id is not None and await self._store.get_strategy(strategy_id) is None:
            raise NotFoundError(f"Chunking strategy {strategy_id} not found")
        if cleansing_config_id is not None and await self._store.get_cleansing_config(cleansing_config_id) is None:
            raise NotFoundError(f"Cleansing config {cleansing_config_id} not found")

        content = document.raw_content
        if not content:
            chunks = await self._store.list_chunks(document_id)
            content = "\n\n".join(chunk.text for chunk in chunks)
        if not content:
            raise StateError(f"Document {document_id} has no content left to regenerate; re-upload the file")

        regenerated = await self._store.create_document(
            Document(
                collection_id=target.id,  # type: ignore[arg-type]
                filename=f"regenerated_{document.filename}",
                title=document.title,
                content_type=document.content_type,
                file_size=len(content.encode("utf-8")),
                raw_content=content,
                metadata={**(document.metadata or {}), "regenerated_from": document_id},
            )
        )
        logger.info(
            "document_regenerated",
            document_id=document_id,
            new_document_id=regenerated.id,
            collection_id=target.id,
            strategy_id=strategy_id,
            cleansing_config_id=cleansing_config_id,
        )
        if delete_original:
            await self.delete_document(document_id)
        if not process:
            return regenerated, None

        outcome = await self._outcome_for(
            regenerated.id, self.process(regenerated.id, strategy_id, cleansing_config_id)
        )
        refreshed = await self._store.get_document(regenerated.id)
        return refreshed or regenerated, outcome

    async def _best_effort(
        self,
        collection: Collection,
        operation: Callable[[IVectorStoreAdapter], Any],
        label: str,
    ) -> None:
        store_config = await self._store.get_vector_store(collection.vector_store_id)
        if store_config is None or not store_config.enabled:
            logger.warning("vector_cleanup_skipped", collection=collection.name, reason="store unavailable")
            return
        adapter = self._adapter_factory(store_config)
        try:
            await self._bounded(adapter.connect(), "vector_store_connect", adapter)
            await self._bounded(operation(adapter), label, adapter)
        except RagStackError as exc:
            logger.warning("vector_cleanup_failed", collection=collection.name, operation=label, error=str(exc))
        finally:
            await adapter.disconnect()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def _require_document(self, document_id: int) -> Document:
        document = await self._store.get_document(document_id)
        if document is None:
            raise NotFoundError(f"Document {document_id} not found")
        return document

    async def _require_collection(self, collection_id: int) -> Collection:
        collection = await self._store.get_collection(collection_id)
        if collection is None:
            raise NotFoundError(f"Collection {collection_id} not found")
        return collection

    async def _writable_store(self, collection: Collection) -> VectorStoreConfig:
        if not collection.is_active:
            raise CollectionInactiveError(f"Collection {collection.name!r} is not active")
        store_config = await self._store.get_vector_store(collection.vector_store_id)
        if store_config is None:
            raise NotFoundError(f"Vector store {collection.vector_store_id} not found")
        if not store_config.enabled:
            raise VectorStoreDisabledError(f"Vector store {store_config.name!r} is disabled")
        return store_config

    async def _resolve_strategy(self, strategy_id: int | None, collection: Collection) -> ChunkingStrategy | None:
        for candidate in (strategy_id, collection.chunking_strategy_id):
            if candidate is not None:
                strategy = await self._store.get_strategy(candidate)
                if strategy is None:
                    raise NotFoundError(f"Chunking strategy {candidate} not found")
                return strategy
        return await self._store.get_default_strategy()

    async def _resolve_cleansing(self, config_id: int | None, collection: Collection) -> CleansingConfig | None:
        for candidate in (config_id, collection.cleansing_config_id):
            if candidate is not None:
                config = await self._store.get_cleansing_config(candidate)
                if config is None:
                    raise NotFoundError(f"Cleansing config {candidate} not found")
                return config
        return await self._store.get_default_cleansing_config()

