"""SQLite-backed RAG store.

Persists vector-store configs, collections, documents, chunk rows, chunking
strategies and cleansing configs in one database file (default
``data/ragstack.db``).  Uses ``aiosqlite`` for async I/O; every operation
opens its own connection, so concurrent tasks never share a cursor.

Opaque blobs (``settings``, ``metadata``, ``custom_rules``) are stored as
JSON text and parsed back into dicts when rows are read.
"""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator

import aiosqlite
import structlog

from src.interfaces.rag_store import IRagStore
from src.models.rag import (
    ChunkingStrategy,
    CleansingConfig,
    Collection,
    Document,
    DocumentChunk,
    DocumentProjection,
)
from src.models.vector_store import VectorStoreConfig
from src.utils.errors import ConfigError, NotFoundError, StateError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/ragstack.db")

_CREATE_TABLES_SQL = [
    """\
CREATE TABLE IF NOT EXISTS vector_stores (
    id                 INTEGER PRIMARY KEY AUTOINCREMENT,
    name               TEXT    NOT NULL UNIQUE,
    type               TEXT    NOT NULL,
    connection_string  TEXT,
    credential         TEXT,
    settings           TEXT    NOT NULL DEFAULT '{}',
    enabled            INTEGER NOT NULL DEFAULT 1,
    is_default         INTEGER NOT NULL DEFAULT 0,
    created_at         TEXT    NOT NULL,
    updated_at         TEXT    NOT NULL
);
""",
    """\
CREATE TABLE IF NOT EXISTS chunking_strategies (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    name           TEXT    NOT NULL UNIQUE,
    type           TEXT    NOT NULL,
    chunk_size     INTEGER NOT NULL,
    chunk_overlap  INTEGER NOT NULL,
    is_default     INTEGER NOT NULL DEFAULT 0,
    created_at     TEXT    NOT NULL,
    updated_at     TEXT    NOT NULL
);
""",
    """\
CREATE TABLE IF NOT EXISTS cleansing_configs (
    id                    INTEGER PRIMARY KEY AUTOINCREMENT,
    name                  TEXT    NOT NULL UNIQUE,
    llm_model_id          TEXT,
    llm_prompt            TEXT,
    remove_headers        INTEGER NOT NULL DEFAULT 1,
    remove_footers        INTEGER NOT NULL DEFAULT 1,
    remove_page_numbers   INTEGER NOT NULL DEFAULT 1,
    normalize_whitespace  INTEGER NOT NULL DEFAULT 1,
    fix_encoding          INTEGER NOT NULL DEFAULT 1,
    remove_urls           INTEGER NOT NULL DEFAULT 0,
    remove_emails         INTEGER NOT NULL DEFAULT 0,
    custom_rules          TEXT    NOT NULL DEFAULT '[]',
    is_default            INTEGER NOT NULL DEFAULT 0,
    created_at            TEXT    NOT NULL,
    updated_at            TEXT    NOT NULL
);
""",
    """\
CREATE TABLE IF NOT EXISTS collections (
    id                    INTEGER PRIMARY KEY AUTOINCREMENT,
    name                  TEXT    NOT NULL UNIQUE,
    description           TEXT,
    vector_store_id       INTEGER NOT NULL REFERENCES vector_stores(id),
    embedding_model       TEXT    NOT NULL,
    embedding_dimensions  INTEGER,
    chunking_strategy_id  INTEGER REFERENCES chunking_strategies(id) ON DELETE SET NULL,
    cleansing_config_id   INTEGER REFERENCES cleansing_configs(id) ON DELETE SET NULL,
    metadata              TEXT,
    is_active             INTEGER NOT NULL DEFAULT 1,
    created_at            TEXT    NOT NULL,
    updated_at            TEXT    NOT NULL
);
""",
    """\
CREATE TABLE IF NOT EXISTS documents (
    id                 INTEGER PRIMARY KEY AUTOINCREMENT,
    collection_id      INTEGER NOT NULL REFERENCES collections(id) ON DELETE CASCADE,
    filename           TEXT    NOT NULL,
    title              TEXT    NOT NULL,
    content_type       TEXT    NOT NULL,
    file_size          INTEGER NOT NULL DEFAULT 0,
    raw_content        TEXT,
    metadata           TEXT,
    processing_status  TEXT    NOT NULL DEFAULT 'pending',
    error_message      TEXT,
    created_at         TEXT    NOT NULL,
    updated_at         TEXT    NOT NULL
);
""",
    """\
CREATE TABLE IF NOT EXISTS document_chunks (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    document_id  INTEGER NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
    sequence     INTEGER NOT NULL,
    text         TEXT    NOT NULL,
    vector_id    TEXT    NOT NULL,
    metadata     TEXT    NOT NULL DEFAULT '{}',
    UNIQUE(document_id, sequence)
);
""",
]

_CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_collections_store ON collections(vector_store_id);",
    "CREATE INDEX IF NOT EXISTS idx_documents_collection ON documents(collection_id);",
    "CREATE INDEX IF NOT EXISTS idx_documents_status ON documents(processing_status);",
    "CREATE INDEX IF NOT EXISTS idx_chunks_document ON document_chunks(document_id);",
]

_CLAIM_SQL = """\
UPDATE documents
SET processing_status = 'processing', updated_at = ?
WHERE id = ? AND processing_status = 'pending';
"""

_INSERT_CHUNK_SQL = """\
INSERT INTO document_chunks (document_id, sequence, text, vector_id, metadata)
VALUES (?, ?, ?, ?, ?);
"""

_COMPLETE_SQL = """\
UPDATE documents
SET processing_status = 'completed', error_message = NULL, updated_at = ?
WHERE id = ? AND processing_status = 'processing';
"""

_FAIL_SQL = """\
UPDATE documents
SET processing_status = 'failed', error_message = ?, raw_content = NULL,
    metadata = NULL, updated_at = ?
WHERE id = ?;
"""

_RESET_SQL = """\
UPDATE documents
SET processing_status = 'pending', error_message = NULL, raw_content = NULL,
    metadata = NULL, updated_at = ?
WHERE id = ?;
"""

_INSERT_COLLECTION_SQL = """\
INSERT INTO collections (
    name, description, vector_store_id, embedding_model, embedding_dimensions,
    chunking_strategy_id, cleansing_config_id, metadata, is_active,
    created_at, updated_at
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
"""

_INSERT_DOCUMENT_SQL = """\
INSERT INTO documents (
    collection_id, filename, title, content_type, file_size, raw_content,
    metadata, processing_status, error_message, created_at, updated_at
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
"""


def _now() -> str:
    return datetime.now(tz=timezone.utc).isoformat()  # noqa: UP017


def _dumps(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False, default=str)


def _loads(raw: str | None, default: Any = None) -> Any:
    if raw is None or raw == "":
        return default
    return json.loads(raw)


def _row_to_vector_store(row: aiosqlite.Row) -> VectorStoreConfig:
    data = dict(row)
    data["settings"] = _loads(data["settings"], {})
    return VectorStoreConfig.model_validate(data)


def _row_to_strategy(row: aiosqlite.Row) -> ChunkingStrategy:
    return ChunkingStrategy.model_validate(dict(row))


def _row_to_cleansing_config(row: aiosqlite.Row) -> CleansingConfig:
    data = dict(row)
    data["custom_rules"] = _loads(data["custom_rules"], [])
    return CleansingConfig.model_validate(data)


def _row_to_collection(row: aiosqlite.Row) -> Collection:
    data = dict(row)
    data["metadata"] = _loads(data["metadata"])
    return Collection.model_validate(data)


def _row_to_document(row: aiosqlite.Row) -> Document:
    data = dict(row)
    data["metadata"] = _loads(data["metadata"])
    return Document.model_validate(data)


def _row_to_chunk(row: aiosqlite.Row) -> DocumentChunk:
    data = dict(row)
    data["metadata"] = _loads(data["metadata"], {})
    return DocumentChunk.model_validate(data)


class SQLiteRagStore(IRagStore):
    """SQLite-backed persistence for the RAG subsystem."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            await db.execute("PRAGMA foreign_keys = ON")
            yield db

    async def initialize(self) -> None:
        """Create all tables and indices if they don't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with self._connect() as db:
            await db.execute("PRAGMA journal_mode = WAL")
            for table_sql in _CREATE_TABLES_SQL:
                await db.execute(table_sql)
            for idx_sql in _CREATE_INDICES_SQL:
                await db.execute(idx_sql)
            await db.commit()
        logger.info("rag_db_initialized", path=str(self._db_path))

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    async def _fetch_one(self, sql: str, params: tuple = ()) -> aiosqlite.Row | None:
        async with self._connect() as db:
            cursor = await db.execute(sql, params)
            return await cursor.fetchone()

    async def _fetch_all(self, sql: str, params: tuple = ()) -> list[aiosqlite.Row]:
        async with self._connect() as db:
            cursor = await db.execute(sql, params)
            return list(await cursor.fetchall())

    async def _delete_by_id(self, table: str, row_id: int) -> bool:
        async with self._connect() as db:
            cursor = await db.execute(f"DELETE FROM {table} WHERE id = ?", (row_id,))  # noqa: S608
            await db.commit()
            return cursor.rowcount > 0

    async def _save_row(
        self,
        table: str,
        label: str,
        values: dict[str, Any],
        row_id: int | None,
    ) -> int:
        """Insert or update one settings row, switching the default atomically."""
        now = _now()
        async with self._connect() as db:
            try:
                if values.get("is_default"):
                    await db.execute(f"UPDATE {table} SET is_default = 0 WHERE is_default = 1")  # noqa: S608
                if row_id is None:
                    columns = [*values, "created_at", "updated_at"]
                    placeholders = ", ".join("?" * len(columns))
                    cursor = await db.execute(
                        f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",  # noqa: S608
                        (*values.values(), now, now),
                    )
                    row_id = cursor.lastrowid
                else:
                    assignments = ", ".join(f"{column} = ?" for column in values)
                    cursor = await db.execute(
                        f"UPDATE {table} SET {assignments}, updated_at = ? WHERE id = ?",  # noqa: S608
                        (*values.values(), now, row_id),
                    )
                    if cursor.rowcount == 0:
                        raise NotFoundError(f"{label} {row_id} not found")
                await db.commit()
            except aiosqlite.IntegrityError as exc:
                raise ConfigError(f"{label} named {values.get('name')!r} already exists") from exc
        logger.info("rag_row_saved", table=table, row_id=row_id, is_default=bool(values.get("is_default")))
        return int(row_id)

    # ------------------------------------------------------------------
    # Vector stores
    # ------------------------------------------------------------------

    async def list_vector_stores(self) -> list[VectorStoreConfig]:
        rows = await self._fetch_all("SELECT * FROM vector_stores ORDER BY id")
        return [_row_to_vector_store(r) for r in rows]

    async def get_vector_store(self, store_id: int) -> VectorStoreConfig | None:
        row = await self._fetch_one("SELECT * FROM vector_stores WHERE id = ?", (store_id,))
        return _row_to_vector_store(row) if row else None

    async def get_default_vector_store(self) -> VectorStoreConfig | None:
        row = await self._fetch_one(
            "SELECT * FROM vector_stores WHERE is_default = 1 AND enabled = 1 LIMIT 1"
        )
        return _row_to_vector_store(row) if row else None

    async def save_vector_store(self, config: VectorStoreConfig) -> VectorStoreConfig:
        values = {
            "name": config.name,
            "type": config.type.value,
            "connection_string": config.connection_string,
            "credential": config.credential,
            "settings": _dumps(config.settings or {}),
            "enabled": int(config.enabled),
            "is_default": int(config.is_default),
        }
        store_id = await self._save_row("vector_stores", "Vector store", values, config.id)
        stored = await self.get_vector_store(store_id)
        if stored is None:
            raise NotFoundError("Row vanished after write")
        return stored

    async def delete_vector_store(self, store_id: int) -> bool:
        return await self._delete_by_id("vector_stores", store_id)

    async def count_collections_for_store(self, store_id: int) -> int:
        row = await self._fetch_one(
            "SELECT COUNT(*) AS n FROM collections WHERE vector_store_id = ?", (store_id,)
        )
        return int(row["n"]) if row else 0

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    async def list_collections(self) -> list[Collection]:
        rows = await self._fetch_all("SELECT * FROM collections ORDER BY id")
        return [_row_to_collection(r) for r in rows]

    async def get_collection(self, collection_id: int) -> Collection | None:
        row = await self._fetch_one("SELECT * FROM collections WHERE id = ?", (collection_id,))
        return _row_to_collection(row) if row else None

    async def create_collection(self, collection: Collection) -> Collection:
        now = _now()
        async with self._connect() as db:
            try:
                cursor = await db.execute(
                    _INSERT_COLLECTION_SQL,
                    (
                        collection.name,
                        collection.description,
                        collection.vector_store_id,
                        collection.embedding_model,
                        collection.embedding_dimensions,
                        collection.chunking_strategy_id,
                        collection.cleansing_config_id,
                        _dumps(collection.metadata),
                        int(collection.is_active),
                        now,
                        now,
                    ),
                )
                await db.commit()
            except aiosqlite.IntegrityError as exc:
                raise ConfigError(
                    f"Collection {collection.name!r} already exists or references a missing row"
                ) from exc
            collection_id = cursor.lastrowid
        logger.info("collection_created", collection_id=collection_id, name=collection.name)
        stored = await self.get_collection(collection_id)
        if stored is None:
            raise NotFoundError("Row vanished after write")
        return stored

    async def delete_collection(self, collection_id: int) -> bool:
        return await self._delete_by_id("collections", collection_id)

    async def count_documents(self, collection_id: int) -> int:
        row = await self._fetch_one(
            "SELECT COUNT(*) AS n FROM documents WHERE collection_id = ?", (collection_id,)
        )
        return int(row["n"]) if row else 0

    async def set_collection_active(self, collection_id: int, is_active: bool) -> Collection:
        async with self._connect() as db:
            cursor = await db.execute(
                "UPDATE collections SET is_active = ?, updated_at = ? WHERE id = ?",
                (int(is_active), _now(), collection_id),
            )
            await db.commit()
            if cursor.rowcount == 0:
                raise NotFoundError(f"Collection {collection_id} not found")
        stored = await self.get_collection(collection_id)
        if stored is None:
            raise NotFoundError("Row vanished after write")
        return stored

    async def count_documents_by_status(self, collection_id: int) -> dict[str, int]:
        rows = await self._fetch_all(
            "SELECT processing_status, COUNT(*) AS n FROM documents "
            "WHERE collection_id = ? GROUP BY processing_status",
            (collection_id,),
        )
        return {row["processing_status"]: int(row["n"]) for row in rows}

    async def count_chunks(self, collection_id: int) -> int:
        row = await self._fetch_one(
            "SELECT COUNT(*) AS n FROM document_chunks c JOIN documents d ON d.id = c.document_id "
            "WHERE d.collection_id = ?",
            (collection_id,),
        )
        return int(row["n"]) if row else 0

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def create_document(self, document: Document) -> Document:
        now = _now()
        async with self._connect() as db:
            try:
                cursor = await db.execute(
                    _INSERT_DOCUMENT_SQL,
                    (
                        document.collection_id,
                        document.filename,
                        document.title,
                        document.content_type,
                        document.file_size,
                        document.raw_content,
                        _dumps(document.metadata),
                        document.processing_status.value,
                        document.error_message,
                        now,
                        now,
                    ),
                )
                await db.commit()
            except aiosqlite.IntegrityError as exc:
                raise NotFoundError(f"Collection {document.collection_id} not found") from exc
            document_id = cursor.lastrowid
        stored = await self.get_document(document_id)
        if stored is None:
            raise NotFoundError("Row vanished after write")
        return stored

    async def get_document(self, document_id: int) -> Document | None:
        row = await self._fetch_one("SELECT * FROM documents WHERE id = ?", (document_id,))
        return _row_to_document(row) if row else None

    async def list_documents(self, collection_id: int) -> list[Document]:
        rows = await self._fetch_all(
            "SELECT * FROM documents WHERE collection_id = ? ORDER BY id", (collection_id,)
        )
        return [_row_to_document(r) for r in rows]

    async def claim_document(self, document_id: int) -> bool:
        async with self._connect() as db:
            cursor = await db.execute(_CLAIM_SQL, (_now(), document_id))
            await db.commit()
            return cursor.rowcount == 1

    async def complete_document(
        self, document_id: int, chunks: list[DocumentChunk]
    ) -> list[DocumentChunk]:
        stored: list[DocumentChunk] = []
        async with self._connect() as db:
            for chunk in chunks:
                cursor = await db.execute(
                    _INSERT_CHUNK_SQL,
                    (document_id, chunk.sequence, chunk.text, chunk.vector_id, _dumps(chunk.metadata)),
                )
                stored.append(chunk.model_copy(update={"id": cursor.lastrowid}))
            cursor = await db.execute(_COMPLETE_SQL, (_now(), document_id))
            if cursor.rowcount == 0:
                # Leaving the block without commit rolls the chunk inserts back.
                raise StateError(f"Document {document_id} is not processing")
            await db.commit()
        return stored

    async def fail_document(self, document_id: int, error_message: str) -> None:
        async with self._connect() as db:
            await db.execute("DELETE FROM document_chunks WHERE document_id = ?", (document_id,))
            await db.execute(_FAIL_SQL, (error_message, _now(), document_id))
            await db.commit()

    async def reset_document(self, document_id: int) -> None:
        async with self._connect() as db:
            await db.execute("DELETE FROM document_chunks WHERE document_id = ?", (document_id,))
            await db.execute(_RESET_SQL, (_now(), document_id))
            await db.commit()

    async def update_document_content(
        self,
        document_id: int,
        raw_content: str,
        file_size: int,
        content_type: str | None = None,
    ) -> Document:
        async with self._connect() as db:
            cursor = await db.execute(
                "UPDATE documents SET raw_content = ?, file_size = ?, "
                "content_type = COALESCE(?, content_type), updated_at = ? WHERE id = ?",
                (raw_content, file_size, content_type, _now(), document_id),
            )
            await db.commit()
            if cursor.rowcount == 0:
                raise NotFoundError(f"Document {document_id} not found")
        stored = await self.get_document(document_id)
        if stored is None:
            raise NotFoundError("Row vanished after write")
        return stored

    async def delete_document(self, document_id: int) -> bool:
        return await self._delete_by_id("documents", document_id)

    async def list_chunks(self, document_id: int) -> list[DocumentChunk]:
        rows = await self._fetch_all(
            "SELECT * FROM document_chunks WHERE document_id = ? ORDER BY sequence",
            (document_id,),
        )
        return [_row_to_chunk(r) for r in rows]

    async def get_document_projections(
        self, document_ids: list[int]
    ) -> dict[int, DocumentProjection]:
        unique_ids = sorted(set(document_ids))
        if not unique_ids:
            return {}
        placeholders = ", ".join("?" * len(unique_ids))
        rows = await self._fetch_all(
            f"SELECT id, title, filename, content_type FROM documents WHERE id IN ({placeholders})",  # noqa: S608
            tuple(unique_ids),
        )
        return {int(r["id"]): DocumentProjection.model_validate(dict(r)) for r in rows}

    # ------------------------------------------------------------------
    # Chunking strategies
    # ------------------------------------------------------------------

    async def list_strategies(self) -> list[ChunkingStrategy]:
        rows = await self._fetch_all("SELECT * FROM chunking_strategies ORDER BY id")
        return [_row_to_strategy(r) for r in rows]

    async def get_strategy(self, strategy_id: int) -> ChunkingStrategy | None:
        row = await self._fetch_one("SELECT * FROM chunking_strategies WHERE id = ?", (strategy_id,))
        return _row_to_strategy(row) if row else None

    async def get_default_strategy(self) -> ChunkingStrategy | None:
        row = await self._fetch_one("SELECT * FROM chunking_strategies WHERE is_default = 1 LIMIT 1")
        return _row_to_strategy(row) if row else None

    async def save_strategy(self, strategy: ChunkingStrategy) -> ChunkingStrategy:
        values = {
            "name": strategy.name,
            "type": strategy.type.value,
            "chunk_size": strategy.chunk_size,
            "chunk_overlap": strategy.chunk_overlap,
            "is_default": int(strategy.is_default),
        }
        strategy_id = await self._save_row("chunking_strategies", "Chunking strategy", values, strategy.id)
        stored = await self.get_strategy(strategy_id)
        if stored is None:
            raise NotFoundError("Row vanished after write")
        return stored

    async def delete_strategy(self, strategy_id: int) -> bool:
        return await self._delete_by_id("chunking_strategies", strategy_id)

    # ------------------------------------------------------------------
    # Cleansing configs
    # ------------------------------------------------------------------

    async def list_cleansing_configs(self) -> list[CleansingConfig]:
        rows = await self._fetch_all("SELECT * FROM cleansing_configs ORDER BY id")
        return [_row_to_cleansing_config(r) for r in rows]

    async def get_cleansing_config(self, config_id: int) -> CleansingConfig | None:
        row = await self._fetch_one("SELECT * FROM cleansing_configs WHERE id = ?", (config_id,))
        return _row_to_cleansing_config(row) if row else None

    async def get_default_cleansing_config(self) -> CleansingConfig | None:
        row = await self._fetch_one("SELECT * FROM cleansing_configs WHERE is_default = 1 LIMIT 1")
        return _row_to_cleansing_config(row) if row else None

    async def save_cleansing_config(self, config: CleansingConfig) -> CleansingConfig:
        values = {
            "name": config.name,
            "llm_model_id": config.llm_model_id,
            "llm_prompt": config.llm_prompt,
            "remove_headers": int(config.remove_headers),
            "remove_footers": int(config.remove_footers),
            "remove_page_numbers": int(config.remove_page_numbers),
            "normalize_whitespace": int(config.normalize_whitespace),
            "fix_encoding": int(config.fix_encoding),
            "remove_urls": int(config.remove_urls),
            "remove_emails": int(config.remove_emails),
            "custom_rules": _dumps([rule.model_dump() for rule in config.custom_rules]),
            "is_default": int(config.is_default),
        }
        config_id = await self._save_row("cleansing_configs", "Cleansing config", values, config.id)
        stored = await self.get_cleansing_config(config_id)
        if stored is None:
            raise NotFoundError("Row vanished after write")
        return stored

    async def delete_cleansing_config(self, config_id: int) -> bool:
        return await self._delete_by_id("cleansing_configs", config_id)
