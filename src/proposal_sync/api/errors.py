"""Translate sync errors into HTTP responses.

Every error response has the body
``{"status": "error", "error": <code>, "message": ..., "traceId": ...}``
plus ``details`` where there is more to say (field issues, valid stages).
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from src.proposal_sync.api.middleware.logging import get_trace_id
from src.proposal_sync.errors import (
    AdapterError,
    InvalidInputError,
    RemoteAuthError,
    RemoteConnectivityError,
    RemoteDuplicateError,
    RemoteError,
    RemotePermissionError,
    RemoteRateLimitError,
    RemoteValidationError,
    SyncError,
    UnknownRemoteError,
    UnmappedStageError,
    ValidationError,
    retry_delay,
)

logger = structlog.get_logger(__name__)

# Most specific first; the first isinstance match wins.
STATUS_BY_ERROR: tuple[tuple[type[SyncError], int], ...] = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (AdapterError, status.HTTP_400_BAD_REQUEST),
    (InvalidInputError, status.HTTP_400_BAD_REQUEST),
    (UnmappedStageError, 422),
    (RemoteAuthError, status.HTTP_401_UNAUTHORIZED),
    (RemotePermissionError, status.HTTP_403_FORBIDDEN),
    (RemoteValidationError, status.HTTP_400_BAD_REQUEST),
    (RemoteDuplicateError, status.HTTP_409_CONFLICT),
    (RemoteRateLimitError, status.HTTP_429_TOO_MANY_REQUESTS),
    (RemoteConnectivityError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (UnknownRemoteError, status.HTTP_502_BAD_GATEWAY),
    (RemoteError, status.HTTP_502_BAD_GATEWAY),
)


def status_for(exc: SyncError) -> int:
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def error_response(
    status_code: int,
    error: str,
    message: str,
    trace_id: str | None,
    details: Any = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Build the standard error body."""
    content: dict[str, Any] = {
        "status": "error",
        "error": error,
        "message": message,
        "traceId": trace_id,
    }
    if details is not None:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def _details(exc: SyncError) -> Any:
    if isinstance(exc, ValidationError):
        return [issue.as_dict() for issue in exc.issues]
    if isinstance(exc, UnmappedStageError):
        return {"stage": exc.stage, "normalized": exc.normalized}
    if isinstance(exc, RemoteError) and exc.error_code:
        return {"errorCode": exc.error_code, "category": exc.category}
    return None


async def sync_error_handler(request: Request, exc: SyncError) -> JSONResponse:
    """Exception handler for SyncError and all its subclasses."""
    trace_id = get_trace_id(request)
    status_code = status_for(exc)

    headers = None
    if isinstance(exc, RemoteRateLimitError):
        headers = {"Retry-After": str(int(retry_delay(exc)))}

    log_method = logger.error if status_code >= 500 else logger.warning
    log_method(
        "request.sync_error",
        error=exc.code,
        message=exc.message,
        status_code=status_code,
        path=request.url.path,
    )

    return error_response(
        status_code,
        exc.code,
        exc.message,
        trace_id,
        details=_details(exc),
        headers=headers,
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("request.unhandled_error", path=request.url.path, error=str(exc))
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "internal_error",
        "Internal server error",
        get_trace_id(request),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SyncError, sync_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
