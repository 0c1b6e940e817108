"""Shared concurrency primitives for document processing.

Two helpers are exposed:

1. **throttled_gather** -- ``asyncio.gather`` with every awaitable wrapped in a
   semaphore acquire/release, so a batch of documents can be processed with
   bounded parallelism.

2. **with_timeout** -- awaits a suspension point (embedding call, vector-store
   call) under a caller-specified deadline and converts expiry into an
   :class:`~src.utils.errors.OperationTimeoutError` with a readable message.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

import structlog

from src.utils.errors import OperationTimeoutError
from src.utils.logging import get_logger

_T = TypeVar("_T")

_logger: structlog.BoundLogger = get_logger(__name__)


async def throttled_gather(
    coros: list[Awaitable[_T]],
    limit: int = 4,
    return_exceptions: bool = True,
) -> list[_T | BaseException]:
    """Run awaitables concurrently with at most *limit* in flight.

    Parameters
    ----------
    coros:
        Awaitable objects to execute concurrently.
    limit:
        Maximum number of awaitables executing at the same time.
    return_exceptions:
        If ``True``, exceptions are returned in the results list rather
        than being raised.  Mirrors ``asyncio.gather`` semantics.

    Returns
    -------
    list[_T | BaseException]
        Results in the same order as the input awaitables.
    """
    semaphore = asyncio.Semaphore(max(1, limit))

    async def _wrapped(coro: Awaitable[_T]) -> _T:
        async with semaphore:
            return await coro

    tasks = [_wrapped(c) for c in coros]
    return await asyncio.gather(*tasks, return_exceptions=return_exceptions)


async def with_timeout(
    awaitable: Awaitable[_T],
    timeout: float | None,
    operation: str,
    provider_name: str | None = None,
) -> _T:
    """Await *awaitable*, raising :class:`OperationTimeoutError` after *timeout* seconds.

    A ``None`` or non-positive timeout waits indefinitely.
    """
    if timeout is None or timeout <= 0:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as exc:
        _logger.warning(
            "operation_timeout",
            operation=operation,
            timeout_seconds=timeout,
            provider=provider_name,
        )
        raise OperationTimeoutError(
            message=f"{operation} timed out after {timeout:g}s",
            provider_name=provider_name,
        ) from exc
