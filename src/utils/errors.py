"""Custom exception hierarchy for ragstack.

All application exceptions inherit from :class:`RagStackError`, which
carries an optional ``provider_name`` so error handlers can identify which
backend (e.g. "openai", "pgvector", "chromadb") caused the failure, and a
stable machine-readable ``kind`` that the API layer maps to an HTTP status.

The hierarchy is organized by failure domain:

    RagStackError  (base -- catch-all for any ragstack error)
    +-- ConfigError                 (malformed / missing configuration)
    +-- VectorStoreConnectionError  (backend unreachable, carries troubleshooting)
    +-- ProcessingError             (cleansing / chunking / embedding / upsert)
    |   +-- OperationTimeoutError   (embedding or vector-store call timed out)
    +-- EmbeddingError              (embedding provider API failure)
    +-- LLMError                    (LLM-assisted cleansing call failure)
    +-- NotFoundError               (referenced row absent)
    +-- StateError                  (invalid state transition)
        +-- CollectionInactiveError
        +-- VectorStoreDisabledError

Callers branch on the class (or on ``kind`` once serialized): a
``VectorStoreConnectionError`` means "backend down", a ``ConfigError`` means
"the request itself is malformed".
"""


class RagStackError(Exception):
    """Base exception for all ragstack errors.

    Every subclass carries a human-readable ``message``, an optional
    ``provider_name`` and a class-level ``kind``.  ``__str__`` prefixes the
    provider name in brackets, e.g. ``[pgvector] Connection refused``.
    """

    kind: str = "internal"

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Configuration errors
# ---------------------------------------------------------------------------

class ConfigError(RagStackError):
    """Raised when configuration is malformed or missing, before any external call."""

    kind = "config"

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Backend / provider errors
# ---------------------------------------------------------------------------

class VectorStoreConnectionError(RagStackError):
    """Raised when a vector-store backend is unreachable or misconfigured.

    ``troubleshooting`` holds backend-specific, human-actionable hints
    (start the server, install the extension, fix the URL format, ...).
    """

    kind = "connection"

    def __init__(
        self,
        message: str = "Failed to connect to vector store",
        provider_name: str | None = None,
        troubleshooting: str = "",
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
        self._troubleshooting = troubleshooting

    @property
    def troubleshooting(self) -> str:
        return self._troubleshooting


class EmbeddingError(RagStackError):
    """Raised when an embedding provider call fails or returns malformed data."""

    kind = "embedding"

    def __init__(
        self,
        message: str = "Embedding generation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class LLMError(RagStackError):
    """Raised when an LLM API call fails or returns an empty response."""

    kind = "llm"

    def __init__(
        self,
        message: str = "LLM API call failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Processing errors
# ---------------------------------------------------------------------------

class ProcessingError(RagStackError):
    """Raised when a document fails during cleansing, chunking, embedding or upsert.

    The message is recorded on the document (``error_message``) and the
    document is left in the ``failed`` state with zero chunk rows.
    """

    kind = "processing"

    def __init__(
        self,
        message: str = "Document processing failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class OperationTimeoutError(ProcessingError):
    """Raised when an embedding or vector-store call exceeds its timeout."""

    kind = "timeout"

    def __init__(
        self,
        message: str = "Operation timed out",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Lookup / state errors
# ---------------------------------------------------------------------------

class NotFoundError(RagStackError):
    """Raised when a referenced collection, document, store or strategy is absent."""

    kind = "not_found"

    def __init__(
        self,
        message: str = "Resource not found",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class StateError(RagStackError):
    """Raised on an invalid state transition (e.g. reprocessing a completed document)."""

    kind = "state"

    def __init__(
        self,
        message: str = "Invalid state transition",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class CollectionInactiveError(StateError):
    """Raised when an operation targets a collection whose ``is_active`` flag is off."""

    kind = "collection_inactive"

    def __init__(
        self,
        message: str = "Collection is not active",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class VectorStoreDisabledError(StateError):
    """Raised when a collection's vector store is disabled."""

    kind = "vector_store_disabled"

    def __init__(
        self,
        message: str = "Vector store is disabled",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
