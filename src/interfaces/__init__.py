"""Public interface definitions for every swappable backend.

Business logic talks only to these abstract base classes; concrete adapters
live in ``src/providers/`` and are wired together in ``src/main.py``.

    Interface            ->  Concrete implementations (in src/providers/)
    ---------------------------------------------------------------------
    IVectorStoreAdapter  ->  LocalIndexProvider, ChromaDBProvider, PgVectorProvider
    IEmbeddingProvider   ->  OpenAIEmbeddingProvider, OllamaEmbeddingProvider
    ILLMProvider         ->  OpenAILLMProvider
    ICacheProvider       ->  MemoryCacheProvider
    IRagStore            ->  SQLiteRagStore
"""

from src.interfaces.cache_provider import ICacheProvider
from src.interfaces.embedding_provider import IEmbeddingProvider
from src.interfaces.llm_provider import ILLMProvider
from src.interfaces.rag_store import IRagStore
from src.interfaces.vector_store_adapter import IVectorStoreAdapter, validate_namespace

__all__ = [
    "ICacheProvider",
    "IEmbeddingProvider",
    "ILLMProvider",
    "IRagStore",
    "IVectorStoreAdapter",
    "validate_namespace",
]
