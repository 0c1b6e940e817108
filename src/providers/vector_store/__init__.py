"""Vector store adapter implementations.

Three backends share the :class:`IVectorStoreAdapter` contract: an
in-process numpy index, a Chroma server over HTTP and PostgreSQL with
pgvector.  :func:`create_adapter` picks one from a stored configuration.
"""

from src.providers.vector_store.chromadb_provider import ChromaDBProvider
from src.providers.vector_store.factory import create_adapter, probe_connection
from src.providers.vector_store.local_index_provider import LocalIndexProvider
from src.providers.vector_store.pgvector_provider import PgVectorProvider

__all__ = [
    "ChromaDBProvider",
    "LocalIndexProvider",
    "PgVectorProvider",
    "create_adapter",
    "probe_connection",
]
