"""API middleware: CORS, request logging, and error handling.

Starlette runs middleware last-added-first, so ``main.py`` adds
``ErrorHandlingMiddleware`` before ``RequestLoggingMiddleware``; the logger
then sees the final status code, including statuses produced by the error
handler.
"""

from __future__ import annotations

import time

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.api.schemas import ErrorResponse
from src.utils.errors import RagStackError, VectorStoreConnectionError
from src.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

# Error kind -> HTTP status.  Subclasses carry their own kind, so
# OperationTimeoutError maps to 504 even though it is a ProcessingError.
STATUS_BY_KIND: dict[str, int] = {
    "config": 400,
    "state": 400,
    "collection_inactive": 400,
    "vector_store_disabled": 400,
    "not_found": 404,
    "processing": 500,
    "connection": 502,
    "embedding": 502,
    "llm": 502,
    "timeout": 504,
}


def status_for(exc: RagStackError) -> int:
    return STATUS_BY_KIND.get(exc.kind, 500)


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------


def configure_cors(app: FastAPI, *, allowed_origins: list[str] | None = None) -> None:
    """Add CORS middleware; all origins are allowed unless *allowed_origins* is given."""
    origins = allowed_origins or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


# ---------------------------------------------------------------------------
# Request Logging
# ---------------------------------------------------------------------------


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every HTTP request with method, path, status code, and duration."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        start = time.perf_counter()
        response: Response | None = None

        try:
            response = await call_next(request)
            return response
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            status_code = response.status_code if response else 500
            _logger.info(
                "http_request",
                method=request.method,
                path=str(request.url.path),
                status=status_code,
                duration_ms=duration_ms,
            )


# ---------------------------------------------------------------------------
# Error Handling
# ---------------------------------------------------------------------------


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Turn ``RagStackError`` subclasses into structured JSON errors.

    The body is an :class:`ErrorResponse` whose ``error`` is the exception's
    stable ``kind``.  Connection failures also carry the backend's
    troubleshooting text.  Stack traces stay in the server log; other
    exceptions fall through to FastAPI's default 500 handler.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        try:
            return await call_next(request)
        except RagStackError as exc:
            status_code = status_for(exc)
            log = _logger.error if status_code >= 500 else _logger.warning
            log(
                "application_error",
                error_type=type(exc).__name__,
                kind=exc.kind,
                message=exc.message,
                provider=exc.provider_name,
                path=str(request.url.path),
                status=status_code,
            )
            troubleshooting = None
            if isinstance(exc, VectorStoreConnectionError):
                troubleshooting = exc.troubleshooting or None
            body = ErrorResponse(
                error=exc.kind,
                detail=exc.message,
                troubleshooting=troubleshooting,
            )
            return JSONResponse(
                status_code=status_code,
                content=body.model_dump(exclude_none=True),
            )
