"""Unit tests for the SQLite-backed RAG store."""

from __future__ import annotations

import pytest

from src.models.rag import (
    ChunkingStrategy,
    ChunkingStrategyType,
    CleansingConfig,
    Collection,
    CustomCleansingRule,
    Document,
    DocumentChunk,
    ProcessingStatus,
)
from src.models.vector_store import VectorStoreConfig, VectorStoreType
from src.providers.storage.sqlite_rag_store import SQLiteRagStore
from src.utils.errors import ConfigError, NotFoundError, StateError


def _chunks(document_id: int, count: int) -> list[DocumentChunk]:
    return [
        DocumentChunk(
            document_id=document_id,
            sequence=i,
            text=f"chunk {i}",
            vector_id=f"{document_id}_{i}",
            metadata={"document_id": document_id},
        )
        for i in range(count)
    ]


async def _document(store: SQLiteRagStore, collection: Collection, **overrides) -> Document:
    values = {
        "collection_id": collection.id,
        "filename": "guide.txt",
        "title": "Guide",
        "raw_content": "some text",
        "file_size": 9,
    }
    values.update(overrides)
    return await store.create_document(Document(**values))


class TestVectorStores:
    async def test_round_trip(self, rag_store: SQLiteRagStore) -> None:
        saved = await rag_store.save_vector_store(
            VectorStoreConfig(
                name="chroma",
                type=VectorStoreType.CLIENT_SERVER_INDEX,
                connection_string="http://localhost:8000",
                credential="token",
                settings={"tenant": "t"},
            )
        )
        assert saved.id is not None
        fetched = await rag_store.get_vector_store(saved.id)
        assert fetched.type == VectorStoreType.CLIENT_SERVER_INDEX
        assert fetched.settings == {"tenant": "t"}
        assert fetched.credential == "token"

    async def test_at_most_one_default(self, rag_store: SQLiteRagStore) -> None:
        first = await rag_store.save_vector_store(
            VectorStoreConfig(name="a", type=VectorStoreType.LOCAL_INDEX, is_default=True)
        )
        second = await rag_store.save_vector_store(
            VectorStoreConfig(name="b", type=VectorStoreType.LOCAL_INDEX, is_default=True)
        )

        stores = await rag_store.list_vector_stores()
        assert [s.is_default for s in stores] == [False, True]
        assert (await rag_store.get_default_vector_store()).id == second.id
        assert (await rag_store.get_vector_store(first.id)).is_default is False

    async def test_disabled_default_is_not_returned(self, rag_store: SQLiteRagStore) -> None:
        await rag_store.save_vector_store(
            VectorStoreConfig(name="a", type=VectorStoreType.LOCAL_INDEX, is_default=True, enabled=False)
        )
        assert await rag_store.get_default_vector_store() is None

    async def test_duplicate_name(self, rag_store: SQLiteRagStore) -> None:
        await rag_store.save_vector_store(VectorStoreConfig(name="a", type=VectorStoreType.LOCAL_INDEX))
        with pytest.raises(ConfigError, match="already exists"):
            await rag_store.save_vector_store(VectorStoreConfig(name="a", type=VectorStoreType.LOCAL_INDEX))

    async def test_failed_save_keeps_previous_default(self, rag_store: SQLiteRagStore) -> None:
        original = await rag_store.save_vector_store(
            VectorStoreConfig(name="a", type=VectorStoreType.LOCAL_INDEX, is_default=True)
        )
        with pytest.raises(ConfigError):
            await rag_store.save_vector_store(
                VectorStoreConfig(name="a", type=VectorStoreType.LOCAL_INDEX, is_default=True)
            )
        assert (await rag_store.get_default_vector_store()).id == original.id

    async def test_update_missing_row(self, rag_store: SQLiteRagStore) -> None:
        with pytest.raises(NotFoundError):
            await rag_store.save_vector_store(
                VectorStoreConfig(id=99, name="ghost", type=VectorStoreType.LOCAL_INDEX)
            )

    async def test_count_collections(self, rag_store: SQLiteRagStore, collection: Collection) -> None:
        assert await rag_store.count_collections_for_store(collection.vector_store_id) == 1
        assert await rag_store.delete_vector_store(12345) is False


class TestCollections:
    async def test_create_and_get(self, rag_store: SQLiteRagStore, collection: Collection) -> None:
        fetched = await rag_store.get_collection(collection.id)
        assert fetched.name == "handbook"
        assert fetched.embedding_model == "test-embed"
        assert fetched.is_active is True

    async def test_duplicate_name(self, rag_store: SQLiteRagStore, collection: Collection) -> None:
        with pytest.raises(ConfigError):
            await rag_store.create_collection(
                Collection(name="handbook", vector_store_id=collection.vector_store_id)
            )

    async def test_missing_store_reference(self, rag_store: SQLiteRagStore) -> None:
        with pytest.raises(ConfigError):
            await rag_store.create_collection(Collection(name="orphan", vector_store_id=404))

    async def test_delete_cascades(self, rag_store: SQLiteRagStore, collection: Collection) -> None:
        document = await _document(rag_store, collection)
        await rag_store.claim_document(document.id)
        await rag_store.complete_document(document.id, _chunks(document.id, 2))

        assert await rag_store.delete_collection(collection.id) is True
        assert await rag_store.get_document(document.id) is None
        assert await rag_store.list_chunks(document.id) == []

    async def test_set_active(self, rag_store: SQLiteRagStore, collection: Collection) -> None:
        updated = await rag_store.set_collection_active(collection.id, False)
        assert updated.is_active is False
        assert (await rag_store.get_collection(collection.id)).is_active is False

    async def test_set_active_missing(self, rag_store: SQLiteRagStore) -> None:
        with pytest.raises(NotFoundError):
            await rag_store.set_collection_active(404, False)

    async def test_counts(self, rag_store: SQLiteRagStore, collection: Collection) -> None:
        done = await _document(rag_store, collection)
        await rag_store.claim_document(done.id)
        await rag_store.complete_document(done.id, _chunks(done.id, 3))
        await _document(rag_store, collection)
        await _document(rag_store, collection)

        assert await rag_store.count_documents_by_status(collection.id) == {"completed": 1, "pending": 2}
        assert await rag_store.count_chunks(collection.id) == 3
        assert await rag_store.count_documents_by_status(404) == {}
        assert await rag_store.count_chunks(404) == 0


class TestDocumentLifecycle:
    async def test_create_in_missing_collection(self, rag_store: SQLiteRagStore) -> None:
        with pytest.raises(NotFoundError):
            await rag_store.create_document(Document(collection_id=999, filename="a", title="a"))

    async def test_claim_only_once(self, rag_store: SQLiteRagStore, collection: Collection) -> None:
        document = await _document(rag_store, collection)
        assert await rag_store.claim_document(document.id) is True
        assert await rag_store.claim_document(document.id) is False
        assert (await rag_store.get_document(document.id)).processing_status == ProcessingStatus.PROCESSING

    async def test_complete_writes_chunks(self, rag_store: SQLiteRagStore, collection: Collection) -> None:
        document = await _document(rag_store, collection)
        await rag_store.claim_document(document.id)
        stored = await rag_store.complete_document(document.id, _chunks(document.id, 3))

        assert all(chunk.id is not None for chunk in stored)
        chunks = await rag_store.list_chunks(document.id)
        assert [c.sequence for c in chunks] == [0, 1, 2]
        assert chunks[1].metadata == {"document_id": document.id}
        fetched = await rag_store.get_document(document.id)
        assert fetched.processing_status == ProcessingStatus.COMPLETED
        assert fetched.error_message is None

    async def test_complete_requires_processing(self, rag_store: SQLiteRagStore, collection: Collection) -> None:
        document = await _document(rag_store, collection)
        with pytest.raises(StateError):
            await rag_store.complete_document(document.id, _chunks(document.id, 2))
        assert await rag_store.list_chunks(document.id) == []
        assert (await rag_store.get_document(document.id)).processing_status == ProcessingStatus.PENDING

    async def test_fail_clears_content_and_chunks(self, rag_store: SQLiteRagStore, collection: Collection) -> None:
        document = await _document(rag_store, collection, metadata={"source": "upload"})
        await rag_store.claim_document(document.id)
        await rag_store.fail_document(document.id, "embedding timed out")

        fetched = await rag_store.get_document(document.id)
        assert fetched.processing_status == ProcessingStatus.FAILED
        assert fetched.error_message == "embedding timed out"
        assert fetched.raw_content is None
        assert fetched.metadata is None
        assert await rag_store.list_chunks(document.id) == []

    async def test_reset_and_update_content(self, rag_store: SQLiteRagStore, collection: Collection) -> None:
        document = await _document(rag_store, collection)
        await rag_store.claim_document(document.id)
        await rag_store.fail_document(document.id, "boom")
        await rag_store.reset_document(document.id)

        reset = await rag_store.get_document(document.id)
        assert reset.processing_status == ProcessingStatus.PENDING
        assert reset.error_message is None

        updated = await rag_store.update_document_content(document.id, "new text", 8, "text/markdown")
        assert updated.raw_content == "new text"
        assert updated.content_type == "text/markdown"
        assert updated.file_size == 8

    async def test_update_content_missing(self, rag_store: SQLiteRagStore) -> None:
        with pytest.raises(NotFoundError):
            await rag_store.update_document_content(7, "x", 1)

    async def test_projections_skip_deleted(self, rag_store: SQLiteRagStore, collection: Collection) -> None:
        kept = await _document(rag_store, collection, title="Kept")
        gone = await _document(rag_store, collection, title="Gone")
        await rag_store.delete_document(gone.id)

        projections = await rag_store.get_document_projections([kept.id, gone.id, kept.id])
        assert set(projections) == {kept.id}
        assert projections[kept.id].title == "Kept"
        assert await rag_store.get_document_projections([]) == {}


class TestSettingsRows:
    async def test_strategy_default_switch(self, rag_store: SQLiteRagStore) -> None:
        first = await rag_store.save_strategy(ChunkingStrategy(name="small", chunk_size=200, chunk_overlap=20, is_default=True))
        second = await rag_store.save_strategy(
            ChunkingStrategy(
                name="words", type=ChunkingStrategyType.SLIDING_WINDOW, chunk_size=50, chunk_overlap=10, is_default=True
            )
        )
        assert (await rag_store.get_default_strategy()).id == second.id
        assert (await rag_store.get_strategy(first.id)).is_default is False

    async def test_cleansing_config_round_trip(self, rag_store: SQLiteRagStore) -> None:
        saved = await rag_store.save_cleansing_config(
            CleansingConfig(
                name="strict",
                remove_urls=True,
                custom_rules=[CustomCleansingRule(pattern=r"\s+DRAFT", flags="i")],
                is_default=True,
            )
        )
        fetched = await rag_store.get_cleansing_config(saved.id)
        assert fetched.remove_urls is True
        assert fetched.custom_rules == [CustomCleansingRule(pattern=r"\s+DRAFT", flags="i")]
        assert (await rag_store.get_default_cleansing_config()).id == saved.id

    async def test_deleting_strategy_nulls_collection_reference(
        self, rag_store: SQLiteRagStore, local_store: VectorStoreConfig
    ) -> None:
        strategy = await rag_store.save_strategy(ChunkingStrategy(name="s"))
        created = await rag_store.create_collection(
            Collection(name="c", vector_store_id=local_store.id, chunking_strategy_id=strategy.id)
        )
        await rag_store.delete_strategy(strategy.id)
        assert (await rag_store.get_collection(created.id)).chunking_strategy_id is None
