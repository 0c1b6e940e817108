"""Abstract base class for vector-store backends.

Defines the uniform contract every backend (in-process index, client/server
index, relational-extension index) implements.  Callers never branch on the
backend type: the factory in ``src/providers/vector_store/factory.py``
selects the implementation from the stored ``type`` discriminator.

Adapters are scoped to one logical operation::

    adapter = create_adapter(config)
    await adapter.connect()
    try:
        await adapter.upsert(...)
    finally:
        await adapter.disconnect()

so a configuration change takes effect on the next operation.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import Any

from src.models.vector_store import NamespaceStats, VectorHit, VectorItem, VectorStoreConfig
from src.utils.errors import ConfigError, StateError, VectorStoreConnectionError

_NAMESPACE_RE = re.compile(r"^[a-zA-Z0-9_-]+$")


def validate_namespace(namespace: str) -> None:
    """Raise ``ConfigError`` unless *namespace* is letters, digits, ``_`` or ``-``."""
    if not namespace or not _NAMESPACE_RE.match(namespace):
        raise ConfigError(
            f"Invalid collection name {namespace!r}: "
            "only letters, digits, underscores and hyphens are allowed"
        )


class IVectorStoreAdapter(ABC):
    """Contract for vector storage and nearest-neighbour search.

    Subclasses implement the ``_do_*`` hooks; the public methods enforce the
    lifecycle (no calls before :meth:`connect`, none after
    :meth:`disconnect`) and the result ordering shared by every backend.
    """

    def __init__(self, config: VectorStoreConfig) -> None:
        self._config = config
        self._connected = False
        self._closed = False

    @property
    def config(self) -> VectorStoreConfig:
        return self._config

    @property
    def is_connected(self) -> bool:
        return self._connected

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Validate the configuration and verify the backend is reachable.

        Raises
        ------
        ConfigError
            If a required field for this backend type is missing.  Raised
            before any network or disk I/O.
        VectorStoreConnectionError
            If the connection string is malformed (also before any I/O) or
            the backend cannot be reached.  Carries backend-specific
            troubleshooting text.
        StateError
            If the adapter was already disconnected.
        """
        if self._closed:
            raise StateError(
                "Vector store adapter cannot be reused after disconnect",
                provider_name=self.get_provider_name(),
            )
        if self._connected:
            return
        self.validate_config()
        await self._do_connect()
        self._connected = True

    async def disconnect(self) -> None:
        """Release held resources.  The adapter must not be reused afterwards."""
        if self._closed:
            return
        try:
            if self._connected:
                await self._do_disconnect()
        finally:
            self._connected = False
            self._closed = True

    # ------------------------------------------------------------------
    # Data operations
    # ------------------------------------------------------------------

    async def upsert(self, namespace: str, items: list[VectorItem]) -> None:
        """Insert or overwrite *items* in *namespace*.

        The namespace is created lazily.  Existing ids are overwritten, so
        repeating the call with the same items leaves the same state.

        Parameters
        ----------
        namespace:
            Collection name inside the backend.
        items:
            Entries to write.  Every vector must have the same length.
        """
        self._ensure_connected()
        validate_namespace(namespace)
        if not items:
            return
        dimensions = {len(item.vector) for item in items}
        if len(dimensions) != 1 or 0 in dimensions:
            raise ConfigError(
                f"All vectors in one upsert must share a non-zero dimension, got {sorted(dimensions)}",
                provider_name=self.get_provider_name(),
            )
        # Last write wins for duplicate ids inside one call.
        deduped = list({item.id: item for item in items}.values())
        await self._do_upsert(namespace, deduped)

    async def search(
        self,
        namespace: str,
        query_vector: list[float],
        top_k: int,
        filter: dict[str, Any] | None = None,  # noqa: A002
    ) -> list[VectorHit]:
        """Return up to *top_k* nearest entries ordered by decreasing score.

        Ties are broken by ascending id.  An absent namespace yields ``[]``.

        Parameters
        ----------
        namespace:
            Collection name inside the backend.
        query_vector:
            Query embedding; must match the stored dimension.
        top_k:
            Maximum number of hits to return.
        filter:
            Optional equality match on metadata keys.
        """
        self._ensure_connected()
        validate_namespace(namespace)
        if top_k <= 0:
            return []
        hits = await self._do_search(namespace, query_vector, top_k, filter or None)
        hits.sort(key=lambda hit: (-hit.score, hit.id))
        return hits[:top_k]

    async def delete(self, namespace: str, ids: list[str]) -> None:
        """Remove *ids* from *namespace*; unknown ids are ignored."""
        self._ensure_connected()
        validate_namespace(namespace)
        if not ids:
            return
        await self._do_delete(namespace, ids)

    async def delete_namespace(self, namespace: str) -> None:
        """Drop *namespace* and every entry in it; a no-op if it does not exist."""
        self._ensure_connected()
        validate_namespace(namespace)
        await self._do_delete_namespace(namespace)

    async def list_namespaces(self) -> list[str]:
        """Return the names of every namespace the backend holds, sorted."""
        self._ensure_connected()
        return sorted(await self._do_list_namespaces())

    async def namespace_stats(self, namespace: str) -> NamespaceStats:
        """Return the entry count and vector width of *namespace*.

        An absent namespace reports zero entries and no dimension.
        """
        self._ensure_connected()
        validate_namespace(namespace)
        return await self._do_namespace_stats(namespace)

    # ------------------------------------------------------------------
    # Backend hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def validate_config(self) -> None:
        """Check the configuration without I/O.

        Raises ``ConfigError`` for a missing required field and, through
        :meth:`_connection_error`, ``VectorStoreConnectionError`` for a
        malformed connection string.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a short identifier used in logs and error messages."""

    @abstractmethod
    def troubleshooting(self) -> str:
        """Return human-actionable hints shown when a connection fails."""

    @abstractmethod
    async def _do_connect(self) -> None: ...

    @abstractmethod
    async def _do_disconnect(self) -> None: ...

    @abstractmethod
    async def _do_upsert(self, namespace: str, items: list[VectorItem]) -> None: ...

    @abstractmethod
    async def _do_search(
        self,
        namespace: str,
        query_vector: list[float],
        top_k: int,
        filter: dict[str, Any] | None,  # noqa: A002
    ) -> list[VectorHit]:
        """Return at least the *top_k* best hits; ordering is applied by the caller."""

    @abstractmethod
    async def _do_delete(self, namespace: str, ids: list[str]) -> None: ...

    @abstractmethod
    async def _do_delete_namespace(self, namespace: str) -> None: ...

    @abstractmethod
    async def _do_list_namespaces(self) -> list[str]: ...

    @abstractmethod
    async def _do_namespace_stats(self, namespace: str) -> NamespaceStats: ...

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _ensure_connected(self) -> None:
        if self._closed:
            raise StateError(
                "Vector store adapter cannot be reused after disconnect",
                provider_name=self.get_provider_name(),
            )
        if not self._connected:
            raise StateError(
                "Vector store adapter is not connected",
                provider_name=self.get_provider_name(),
            )

    def _connection_error(self, exc: BaseException | None, message: str) -> VectorStoreConnectionError:
        """Build a connection error carrying this backend's troubleshooting text."""
        detail = f"{message}: {exc}" if exc is not None else message
        return VectorStoreConnectionError(
            message=detail,
            provider_name=self.get_provider_name(),
            troubleshooting=self.troubleshooting(),
        )
