"""Relational persistence for collections, documents and their settings."""

from src.providers.storage.sqlite_rag_store import SQLiteRagStore

__all__ = ["SQLiteRagStore"]
