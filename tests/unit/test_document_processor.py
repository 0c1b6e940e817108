"""Unit tests for the document processing pipeline and its state machine.

Runs against a real SQLite store and a real local-index directory; only
the embedding provider is replaced by the deterministic hashing embedder
from conftest, or by a mocked slow or failing provider.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.interfaces.embedding_provider import IEmbeddingProvider
from src.interfaces.vector_store_adapter import IVectorStoreAdapter
from src.models.rag import ChunkingStrategy, Collection, Document, DocumentChunk, ProcessingStatus
from src.models.vector_store import VectorStoreConfig, VectorStoreType
from src.providers.storage.sqlite_rag_store import SQLiteRagStore
from src.providers.vector_store.local_index_provider import LocalIndexProvider
from src.services.ingestion.document_processor import (
    REPROCESS_MESSAGE,
    DocumentProcessingPipeline,
    vector_id_for,
)
from src.utils.errors import (
    CollectionInactiveError,
    ConfigError,
    EmbeddingError,
    NotFoundError,
    OperationTimeoutError,
    ProcessingError,
    StateError,
    VectorStoreConnectionError,
    VectorStoreDisabledError,
)

_TEXT = (
    "Employees accrue vacation days monthly. Unused days roll over once.\n\n"
    "Expense reports are due within thirty days of travel. Receipts are required.\n\n"
    "Security badges must be worn at all times inside the office building."
)


def _mock_provider(embed: AsyncMock) -> MagicMock:
    provider = MagicMock(spec=IEmbeddingProvider)
    provider.embed = embed
    provider.get_provider_name.return_value = "openai_embedding"
    return provider


def _failing_provider() -> MagicMock:
    return _mock_provider(AsyncMock(side_effect=EmbeddingError("quota exceeded", provider_name="openai_embedding")))


def _slow_provider() -> MagicMock:
    async def _hang(texts: list[str]) -> list[list[float]]:
        await asyncio.sleep(5)
        return []

    return _mock_provider(AsyncMock(side_effect=_hang))


@pytest.fixture
def pipeline(rag_store: SQLiteRagStore, embedding_registry: MagicMock, local_index_dir: str) -> DocumentProcessingPipeline:
    return DocumentProcessingPipeline(rag_store, embedding_registry, local_index_dir=local_index_dir)


async def _namespace_hits(local_index_dir: str, namespace: str, query: list[float]) -> list:
    adapter = LocalIndexProvider(
        VectorStoreConfig(name="reader", type=VectorStoreType.LOCAL_INDEX, connection_string=local_index_dir)
    )
    await adapter.connect()
    try:
        return await adapter.search(namespace, query, 100)
    finally:
        await adapter.disconnect()


async def _pending(store: SQLiteRagStore, collection: Collection, text: str = _TEXT) -> Document:
    return await store.create_document(
        Document(collection_id=collection.id, filename="policy.txt", title="Policy", raw_content=text)
    )


class TestIngest:
    async def test_ingest_without_processing(
        self, pipeline: DocumentProcessingPipeline, collection: Collection
    ) -> None:
        document, outcome = await pipeline.ingest(
            collection.id, "policy.md", _TEXT.encode(), metadata={"team": "hr"}
        )
        assert outcome is None
        assert document.processing_status == ProcessingStatus.PENDING
        assert document.title == "policy.md"
        assert document.content_type == "text/markdown"
        assert document.raw_content == _TEXT
        assert document.metadata == {"team": "hr"}

    async def test_ingest_and_process(
        self,
        pipeline: DocumentProcessingPipeline,
        collection: Collection,
        rag_store: SQLiteRagStore,
        embedding_provider,
        local_index_dir: str,
    ) -> None:
        document, outcome = await pipeline.ingest(
            collection.id, "policy.txt", _TEXT.encode(), title="  HR Policy ", process=True
        )

        assert outcome.status == ProcessingStatus.COMPLETED
        assert document.processing_status == ProcessingStatus.COMPLETED
        assert document.title == "HR Policy"
        chunks = await rag_store.list_chunks(document.id)
        assert len(chunks) == outcome.chunk_count >= 1
        assert chunks[0].vector_id == vector_id_for(document.id, 0)
        assert chunks[0].metadata["document_title"] == "HR Policy"

        hits = await _namespace_hits(local_index_dir, "handbook", embedding_provider._vector("vacation"))
        assert {hit.id for hit in hits} == {c.vector_id for c in chunks}

    async def test_processing_failure_is_returned_not_raised(
        self, rag_store: SQLiteRagStore, embedding_registry: MagicMock, collection: Collection, local_index_dir: str
    ) -> None:
        embedding_registry.for_model.return_value = _failing_provider()
        pipeline = DocumentProcessingPipeline(rag_store, embedding_registry, local_index_dir=local_index_dir)

        document, outcome = await pipeline.ingest(collection.id, "a.txt", b"some words here", process=True)

        assert outcome.status == ProcessingStatus.FAILED
        assert outcome.error_kind == "processing"
        assert "quota exceeded" in outcome.error_message
        assert document.processing_status == ProcessingStatus.FAILED

    async def test_empty_upload(self, pipeline: DocumentProcessingPipeline, collection: Collection) -> None:
        with pytest.raises(ConfigError, match="empty"):
            await pipeline.ingest(collection.id, "a.txt", b"")

    async def test_upload_too_large(
        self, rag_store: SQLiteRagStore, embedding_registry: MagicMock, collection: Collection
    ) -> None:
        pipeline = DocumentProcessingPipeline(rag_store, embedding_registry, max_upload_bytes=10)
        with pytest.raises(ConfigError, match="limit"):
            await pipeline.ingest(collection.id, "a.txt", b"x" * 11)

    async def test_missing_collection(self, pipeline: DocumentProcessingPipeline) -> None:
        with pytest.raises(NotFoundError):
            await pipeline.ingest(404, "a.txt", b"text")

    async def test_inactive_collection(
        self, pipeline: DocumentProcessingPipeline, rag_store: SQLiteRagStore, local_store: VectorStoreConfig
    ) -> None:
        inactive = await rag_store.create_collection(
            Collection(name="archive", vector_store_id=local_store.id, is_active=False)
        )
        with pytest.raises(CollectionInactiveError):
            await pipeline.ingest(inactive.id, "a.txt", b"text")


class TestProcessStateMachine:
    async def test_completed_cannot_be_processed_again(
        self, pipeline: DocumentProcessingPipeline, rag_store: SQLiteRagStore, collection: Collection
    ) -> None:
        document = await _pending(rag_store, collection)
        await pipeline.process(document.id)
        with pytest.raises(StateError, match="only pending"):
            await pipeline.process(document.id)

    async def test_missing_document(self, pipeline: DocumentProcessingPipeline) -> None:
        with pytest.raises(NotFoundError):
            await pipeline.process(999)

    async def test_concurrent_claims(
        self, pipeline: DocumentProcessingPipeline, rag_store: SQLiteRagStore, collection: Collection
    ) -> None:
        document = await _pending(rag_store, collection)

        results = await asyncio.gather(
            pipeline.process(document.id),
            pipeline.process(document.id),
            return_exceptions=True,
        )

        completed = [r for r in results if not isinstance(r, BaseException)]
        rejected = [r for r in results if isinstance(r, BaseException)]
        assert len(completed) == 1
        assert len(rejected) == 1
        assert isinstance(rejected[0], StateError)
        assert completed[0].status == ProcessingStatus.COMPLETED
        chunks = await rag_store.list_chunks(document.id)
        assert len(chunks) == completed[0].chunk_count

    async def test_embedding_timeout_rolls_back(
        self, rag_store: SQLiteRagStore, embedding_registry: MagicMock, collection: Collection, local_index_dir: str
    ) -> None:
        embedding_registry.for_model.return_value = _slow_provider()
        pipeline = DocumentProcessingPipeline(
            rag_store, embedding_registry, local_index_dir=local_index_dir, embedding_timeout=0.05
        )
        document = await _pending(rag_store, collection)

        with pytest.raises(OperationTimeoutError):
            await pipeline.process(document.id)

        failed = await rag_store.get_document(document.id)
        assert failed.processing_status == ProcessingStatus.FAILED
        assert "timed out" in failed.error_message
        assert failed.raw_content is None
        assert await rag_store.list_chunks(document.id) == []

    async def test_cancelled_run_marks_document_failed(
        self, rag_store: SQLiteRagStore, embedding_registry: MagicMock, collection: Collection, local_index_dir: str
    ) -> None:
        embedding_started = asyncio.Event()

        async def _hang(texts: list[str]) -> list[list[float]]:
            embedding_started.set()
            await asyncio.sleep(5)
            return []

        embedding_registry.for_model.return_value = _mock_provider(AsyncMock(side_effect=_hang))
        pipeline = DocumentProcessingPipeline(rag_store, embedding_registry, local_index_dir=local_index_dir)
        document = await _pending(rag_store, collection)

        task = asyncio.create_task(pipeline.process(document.id))
        await asyncio.wait_for(embedding_started.wait(), timeout=2)
        assert (await rag_store.get_document(document.id)).processing_status == ProcessingStatus.PROCESSING
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        failed = await rag_store.get_document(document.id)
        assert failed.processing_status == ProcessingStatus.FAILED
        assert failed.error_message == "Processing was cancelled"
        assert await rag_store.list_chunks(document.id) == []
        assert await pipeline.reprocess(document.id) == REPROCESS_MESSAGE

    async def test_upsert_failure_removes_written_vectors(
        self, rag_store: SQLiteRagStore, embedding_registry: MagicMock, collection: Collection
    ) -> None:
        adapter = MagicMock(spec=IVectorStoreAdapter)
        adapter.connect = AsyncMock()
        adapter.upsert = AsyncMock(side_effect=VectorStoreConnectionError("server went away", provider_name="chromadb"))
        adapter.delete = AsyncMock()
        adapter.disconnect = AsyncMock()
        adapter.is_connected = True
        adapter.get_provider_name.return_value = "chromadb"
        pipeline = DocumentProcessingPipeline(rag_store, embedding_registry, adapter_factory=lambda _config: adapter)
        document = await _pending(rag_store, collection)

        with pytest.raises(ProcessingError, match="vector_store") as exc_info:
            await pipeline.process(document.id)

        assert exc_info.value.provider_name == "chromadb"
        namespace, ids = adapter.delete.call_args.args
        assert namespace == "handbook"
        assert ids[0] == vector_id_for(document.id, 0)
        adapter.disconnect.assert_awaited_once()
        assert (await rag_store.get_document(document.id)).processing_status == ProcessingStatus.FAILED

    async def test_missing_strategy_override(
        self, pipeline: DocumentProcessingPipeline, rag_store: SQLiteRagStore, collection: Collection
    ) -> None:
        document = await _pending(rag_store, collection)
        with pytest.raises(ProcessingError, match="Chunking strategy 77 not found"):
            await pipeline.process(document.id, strategy_id=77)
        assert (await rag_store.get_document(document.id)).processing_status == ProcessingStatus.FAILED

    async def test_strategy_override_is_used(
        self, pipeline: DocumentProcessingPipeline, rag_store: SQLiteRagStore, collection: Collection
    ) -> None:
        strategy = await rag_store.save_strategy(ChunkingStrategy(name="tiny", chunk_size=40, chunk_overlap=5))
        document = await _pending(rag_store, collection)

        outcome = await pipeline.process(document.id, strategy_id=strategy.id)

        chunks = await rag_store.list_chunks(document.id)
        assert outcome.chunk_count == len(chunks) > 3
        assert all(len(chunk.text) <= 40 for chunk in chunks)

    async def test_inactive_collection_fails_document(
        self, pipeline: DocumentProcessingPipeline, rag_store: SQLiteRagStore, local_store: VectorStoreConfig
    ) -> None:
        inactive = await rag_store.create_collection(
            Collection(name="archive", vector_store_id=local_store.id, is_active=False)
        )
        document = await _pending(rag_store, inactive)

        with pytest.raises(CollectionInactiveError):
            await pipeline.process(document.id)
        assert (await rag_store.get_document(document.id)).processing_status == ProcessingStatus.FAILED

    async def test_disabled_store(
        self,
        pipeline: DocumentProcessingPipeline,
        rag_store: SQLiteRagStore,
        collection: Collection,
        local_store: VectorStoreConfig,
    ) -> None:
        await rag_store.save_vector_store(local_store.model_copy(update={"enabled": False, "is_default": False}))
        document = await _pending(rag_store, collection)

        with pytest.raises(VectorStoreDisabledError):
            await pipeline.process(document.id)

    async def test_blank_content_fails(
        self, pipeline: DocumentProcessingPipeline, rag_store: SQLiteRagStore, collection: Collection
    ) -> None:
        document = await _pending(rag_store, collection, text="   \n\n  ")
        with pytest.raises(ProcessingError, match="No text left"):
            await pipeline.process(document.id)

    async def test_process_many_keeps_order(
        self, pipeline: DocumentProcessingPipeline, rag_store: SQLiteRagStore, collection: Collection
    ) -> None:
        first = await _pending(rag_store, collection)
        second = await _pending(rag_store, collection, text="Short second document.")
        await pipeline.process(second.id)

        outcomes = await pipeline.process_many([first.id, second.id, 999], max_concurrency=2)

        assert [o.document_id for o in outcomes] == [first.id, second.id, 999]
        assert outcomes[0].status == ProcessingStatus.COMPLETED
        assert outcomes[1].status == ProcessingStatus.COMPLETED
        assert outcomes[1].error_kind == "state"
        assert outcomes[2].status == ProcessingStatus.FAILED
        assert outcomes[2].error_kind == "not_found"


class TestReprocess:
    async def test_failed_document_goes_back_to_pending(
        self, rag_store: SQLiteRagStore, embedding_registry: MagicMock, collection: Collection, local_index_dir: str,
        embedding_provider,
    ) -> None:
        embedding_registry.for_model.return_value = _failing_provider()
        failing = DocumentProcessingPipeline(rag_store, embedding_registry, local_index_dir=local_index_dir)
        document = await _pending(rag_store, collection)
        with pytest.raises(ProcessingError):
            await failing.process(document.id)

        assert await failing.reprocess(document.id) == REPROCESS_MESSAGE
        reset = await rag_store.get_document(document.id)
        assert reset.processing_status == ProcessingStatus.PENDING
        assert reset.raw_content is None

        embedding_registry.for_model.return_value = embedding_provider
        with pytest.raises(ProcessingError, match="content is missing"):
            await failing.process(document.id)

    async def test_resupply_then_process(
        self, rag_store: SQLiteRagStore, embedding_registry: MagicMock, collection: Collection, local_index_dir: str,
        embedding_provider,
    ) -> None:
        embedding_registry.for_model.return_value = _failing_provider()
        pipeline = DocumentProcessingPipeline(rag_store, embedding_registry, local_index_dir=local_index_dir)
        document = await _pending(rag_store, collection)
        with pytest.raises(ProcessingError):
            await pipeline.process(document.id)
        await pipeline.reprocess(document.id)

        embedding_registry.for_model.return_value = embedding_provider
        updated = await pipeline.resupply(document.id, _TEXT.encode(), content_type="text/plain")
        assert updated.raw_content == _TEXT
        outcome = await pipeline.process(document.id)
        assert outcome.status == ProcessingStatus.COMPLETED

    async def test_completed_document_cannot_be_reprocessed(
        self, pipeline: DocumentProcessingPipeline, rag_store: SQLiteRagStore, collection: Collection
    ) -> None:
        document = await _pending(rag_store, collection)
        await pipeline.process(document.id)
        with pytest.raises(StateError, match="only failed"):
            await pipeline.reprocess(document.id)

    async def test_resupply_requires_pending(
        self, pipeline: DocumentProcessingPipeline, rag_store: SQLiteRagStore, collection: Collection
    ) -> None:
        document = await _pending(rag_store, collection)
        await pipeline.process(document.id)
        with pytest.raises(StateError):
            await pipeline.resupply(document.id, b"new content")


class TestDeletion:
    async def test_delete_document_removes_vectors(
        self,
        pipeline: DocumentProcessingPipeline,
        rag_store: SQLiteRagStore,
        collection: Collection,
        embedding_provider,
        local_index_dir: str,
    ) -> None:
        document = await _pending(rag_store, collection)
        await pipeline.process(document.id)

        await pipeline.delete_document(document.id)

        assert await rag_store.get_document(document.id) is None
        assert await _namespace_hits(local_index_dir, "handbook", embedding_provider._vector("badge")) == []

    async def test_collection_with_documents_cannot_be_deleted(
        self, pipeline: DocumentProcessingPipeline, rag_store: SQLiteRagStore, collection: Collection
    ) -> None:
        await _pending(rag_store, collection)
        with pytest.raises(StateError, match="delete them first"):
            await pipeline.delete_collection(collection.id)
        assert await rag_store.get_collection(collection.id) is not None

    async def test_delete_empty_collection(
        self, pipeline: DocumentProcessingPipeline, rag_store: SQLiteRagStore, collection: Collection
    ) -> None:
        await pipeline.delete_collection(collection.id)
        assert await rag_store.get_collection(collection.id) is None

    async def test_delete_missing_collection(self, pipeline: DocumentProcessingPipeline) -> None:
        with pytest.raises(NotFoundError):
            await pipeline.delete_collection(31337)


async def _archive(store: SQLiteRagStore, local_store: VectorStoreConfig, **overrides) -> Collection:
    values = {"name": "archive", "vector_store_id": local_store.id, "embedding_model": "test-embed"}
    values.update(overrides)
    return await store.create_collection(Collection(**values))


class TestCopyCollection:
    async def test_settings_only(
        self, pipeline: DocumentProcessingPipeline, rag_store: SQLiteRagStore, collection: Collection
    ) -> None:
        await _pending(rag_store, collection)

        result = await pipeline.copy_collection(collection.id, " handbook-v2 ", copy_documents=False)

        copied = result.collection
        assert copied.name == "handbook-v2"
        assert copied.description == "Copied from handbook"
        assert copied.vector_store_id == collection.vector_store_id
        assert copied.embedding_model == "test-embed"
        assert result.documents_copied == 0
        assert await rag_store.list_documents(copied.id) == []

    async def test_documents_are_copied_pending(
        self, pipeline: DocumentProcessingPipeline, rag_store: SQLiteRagStore, collection: Collection
    ) -> None:
        done = await _pending(rag_store, collection)
        await pipeline.process(done.id)
        await _pending(rag_store, collection, text="Second document.")

        result = await pipeline.copy_collection(collection.id, "mirror")

        documents = await rag_store.list_documents(result.collection.id)
        assert result.documents_copied == 2
        assert result.vectors_copied == 0
        assert [d.processing_status for d in documents] == [ProcessingStatus.PENDING] * 2
        assert documents[0].raw_content == _TEXT
        assert await rag_store.list_chunks(documents[0].id) == []

    async def test_vectors_reuse_source_chunks(
        self,
        pipeline: DocumentProcessingPipeline,
        rag_store: SQLiteRagStore,
        collection: Collection,
        embedding_provider,
        local_index_dir: str,
    ) -> None:
        strategy = await rag_store.save_strategy(ChunkingStrategy(name="tiny", chunk_size=60, chunk_overlap=0))
        source = await _pending(rag_store, collection)
        await pipeline.process(source.id, strategy_id=strategy.id)
        source_chunks = await rag_store.list_chunks(source.id)
        await _pending(rag_store, collection, text="Still waiting.")

        result = await pipeline.copy_collection(collection.id, "mirror", copy_vectors=True)

        assert result.vectors_copied == len(source_chunks)
        assert result.errors == []
        copies = await rag_store.list_documents(result.collection.id)
        assert [d.processing_status for d in copies] == [ProcessingStatus.COMPLETED, ProcessingStatus.PENDING]
        copied_chunks = await rag_store.list_chunks(copies[0].id)
        assert [c.text for c in copied_chunks] == [c.text for c in source_chunks]
        assert copied_chunks[0].vector_id == vector_id_for(copies[0].id, 0)
        assert copied_chunks[0].metadata["document_id"] == copies[0].id
        assert embedding_provider.calls[-1] == [c.text for c in source_chunks]

        hits = await _namespace_hits(local_index_dir, "mirror", embedding_provider._vector("badges"))
        assert {h.metadata["document_id"] for h in hits} == {copies[0].id}

    async def test_failed_copy_is_reported(
        self,
        pipeline: DocumentProcessingPipeline,
        rag_store: SQLiteRagStore,
        embedding_registry: MagicMock,
        collection: Collection,
    ) -> None:
        source = await _pending(rag_store, collection)
        await pipeline.process(source.id)
        embedding_registry.for_model.return_value = _failing_provider()

        result = await pipeline.copy_collection(collection.id, "mirror", copy_vectors=True)

        assert result.documents_copied == 1
        assert result.vectors_copied == 0
        assert len(result.errors) == 1
        assert "quota exceeded" in result.errors[0]
        (copy,) = await rag_store.list_documents(result.collection.id)
        assert copy.processing_status == ProcessingStatus.FAILED

    async def test_vectors_require_documents(
        self, pipeline: DocumentProcessingPipeline, rag_store: SQLiteRagStore, collection: Collection
    ) -> None:
        with pytest.raises(ConfigError, match="requires copying documents"):
            await pipeline.copy_collection(collection.id, "mirror", copy_documents=False, copy_vectors=True)
        assert [c.name for c in await rag_store.list_collections()] == ["handbook"]

    @pytest.mark.parametrize("name", ["handbook", "bad name", ""])
    async def test_invalid_target_name(
        self, pipeline: DocumentProcessingPipeline, collection: Collection, name: str
    ) -> None:
        with pytest.raises(ConfigError):
            await pipeline.copy_collection(collection.id, name)

    async def test_missing_source(self, pipeline: DocumentProcessingPipeline) -> None:
        with pytest.raises(NotFoundError):
            await pipeline.copy_collection(404, "mirror")


class TestRegenerate:
    async def test_into_another_collection_with_strategy(
        self,
        pipeline: DocumentProcessingPipeline,
        rag_store: SQLiteRagStore,
        collection: Collection,
        local_store: VectorStoreConfig,
    ) -> None:
        archive = await _archive(rag_store, local_store)
        strategy = await rag_store.save_strategy(ChunkingStrategy(name="tiny", chunk_size=40, chunk_overlap=5))
        source = await _pending(rag_store, collection)
        await pipeline.process(source.id)

        regenerated, outcome = await pipeline.regenerate(source.id, archive.id, strategy_id=strategy.id)

        assert outcome.status == ProcessingStatus.COMPLETED
        assert regenerated.collection_id == archive.id
        assert regenerated.filename == "regenerated_policy.txt"
        assert regenerated.title == "Policy"
        assert regenerated.metadata == {"regenerated_from": source.id}
        chunks = await rag_store.list_chunks(regenerated.id)
        assert len(chunks) == outcome.chunk_count > 3
        assert all(len(chunk.text) <= 40 for chunk in chunks)
        assert (await rag_store.get_document(source.id)).processing_status == ProcessingStatus.COMPLETED

    async def test_delete_original(
        self,
        pipeline: DocumentProcessingPipeline,
        rag_store: SQLiteRagStore,
        collection: Collection,
        embedding_provider,
        local_index_dir: str,
    ) -> None:
        source = await _pending(rag_store, collection)
        await pipeline.process(source.id)

        regenerated, outcome = await pipeline.regenerate(source.id, collection.id, delete_original=True)

        assert outcome.status == ProcessingStatus.COMPLETED
        assert await rag_store.get_document(source.id) is None
        hits = await _namespace_hits(local_index_dir, "handbook", embedding_provider._vector("badges"))
        assert {h.metadata["document_id"] for h in hits} == {regenerated.id}

    async def test_content_rebuilt_from_chunks(
        self, pipeline: DocumentProcessingPipeline, rag_store: SQLiteRagStore, collection: Collection
    ) -> None:
        source = await rag_store.create_document(Document(collection_id=collection.id, filename="old.txt", title="Old"))
        await rag_store.claim_document(source.id)
        await rag_store.complete_document(
            source.id,
            [
                DocumentChunk(document_id=source.id, sequence=i, text=text, vector_id=vector_id_for(source.id, i))
                for i, text in enumerate(["First part.", "Second part."])
            ],
        )

        regenerated, outcome = await pipeline.regenerate(source.id, collection.id, process=False)

        assert outcome is None
        assert regenerated.processing_status == ProcessingStatus.PENDING
        assert regenerated.raw_content == "First part.\n\nSecond part."
        assert regenerated.file_size == len(regenerated.raw_content)

    async def test_processing_failure_in_outcome(
        self,
        pipeline: DocumentProcessingPipeline,
        rag_store: SQLiteRagStore,
        embedding_registry: MagicMock,
        collection: Collection,
    ) -> None:
        source = await _pending(rag_store, collection)
        embedding_registry.for_model.return_value = _failing_provider()

        regenerated, outcome = await pipeline.regenerate(source.id, collection.id)

        assert outcome.status == ProcessingStatus.FAILED
        assert regenerated.processing_status == ProcessingStatus.FAILED
        assert (await rag_store.get_document(source.id)).processing_status == ProcessingStatus.PENDING

    async def test_failed_document_has_no_content(
        self,
        pipeline: DocumentProcessingPipeline,
        rag_store: SQLiteRagStore,
        embedding_registry: MagicMock,
        collection: Collection,
    ) -> None:
        embedding_registry.for_model.return_value = _failing_provider()
        source = await _pending(rag_store, collection)
        with pytest.raises(ProcessingError):
            await pipeline.process(source.id)

        with pytest.raises(StateError, match="no content"):
            await pipeline.regenerate(source.id, collection.id)
        assert len(await rag_store.list_documents(collection.id)) == 1

    async def test_target_checks(
        self,
        pipeline: DocumentProcessingPipeline,
        rag_store: SQLiteRagStore,
        collection: Collection,
        local_store: VectorStoreConfig,
    ) -> None:
        source = await _pending(rag_store, collection)
        inactive = await _archive(rag_store, local_store, is_active=False)

        with pytest.raises(CollectionInactiveError):
            await pipeline.regenerate(source.id, inactive.id)
        with pytest.raises(NotFoundError, match="Collection"):
            await pipeline.regenerate(source.id, 404)
        with pytest.raises(NotFoundError, match="Chunking strategy"):
            await pipeline.regenerate(source.id, collection.id, strategy_id=404)
        with pytest.raises(NotFoundError, match="Cleansing config"):
            await pipeline.regenerate(source.id, collection.id, cleansing_config_id=404)
        with pytest.raises(NotFoundError, match="Document"):
            await pipeline.regenerate(404, collection.id)

    async def test_document_being_processed(
        self, pipeline: DocumentProcessingPipeline, rag_store: SQLiteRagStore, collection: Collection
    ) -> None:
        source = await _pending(rag_store, collection)
        await rag_store.claim_document(source.id)
        with pytest.raises(StateError, match="being processed"):
            await pipeline.regenerate(source.id, collection.id)
