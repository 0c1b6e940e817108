"""Utility modules for ragstack.

- **errors** -- Exception hierarchy rooted at RagStackError; every class has
  a stable ``kind`` the API layer maps to an HTTP status.
- **concurrency** -- bounded ``gather`` and timeout helpers used by the
  document processing pipeline.
- **logging** -- structlog setup: coloured console output in development,
  structured JSON in production.
"""

from src.utils.concurrency import throttled_gather, with_timeout
from src.utils.errors import (
    CollectionInactiveError,
    ConfigError,
    EmbeddingError,
    LLMError,
    NotFoundError,
    OperationTimeoutError,
    ProcessingError,
    RagStackError,
    StateError,
    VectorStoreConnectionError,
    VectorStoreDisabledError,
)
from src.utils.logging import configure_logging, get_logger

__all__ = [
    "CollectionInactiveError",
    "ConfigError",
    "EmbeddingError",
    "LLMError",
    "NotFoundError",
    "OperationTimeoutError",
    "ProcessingError",
    "RagStackError",
    "StateError",
    "VectorStoreConnectionError",
    "VectorStoreDisabledError",
    "configure_logging",
    "get_logger",
    "throttled_gather",
    "with_timeout",
]
