"""structlog setup and per-request trace ids.

Each request gets a trace id: the inbound X-Request-ID header when the
caller sends one, a fresh UUID otherwise. It is stored on request.state,
bound into structlog contextvars for every log line emitted while the
request runs, returned in error bodies and echoed as X-Request-ID.
"""

from __future__ import annotations

import logging
import time
import uuid

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.proposal_sync.config import Environment, get_settings

logger = structlog.get_logger(__name__)

TRACE_HEADER = "X-Request-ID"


def configure_structlog() -> None:
    """JSON lines in production, console rendering elsewhere; level from LOG_LEVEL."""
    settings = get_settings()
    level = logging.getLevelName(settings.LOG_LEVEL.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(format="%(message)s", level=level)
    logging.getLogger().setLevel(level)

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.ENVIRONMENT == Environment.production
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_trace_id(request: Request) -> str:
    """Trace id of the current request, as assigned by LoggingMiddleware."""
    trace_id = getattr(request.state, "trace_id", None)
    if trace_id is None:
        trace_id = request.headers.get(TRACE_HEADER) or str(uuid.uuid4())
        request.state.trace_id = trace_id
    return trace_id


def _elapsed_ms(started: float) -> float:
    return round((time.monotonic() - started) * 1000, 2)


class LoggingMiddleware(BaseHTTPMiddleware):
    """Assigns the trace id and logs one line per request with its timing."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        trace_id = request.headers.get(TRACE_HEADER) or str(uuid.uuid4())
        request.state.trace_id = trace_id
        started = time.monotonic()
        request_log = logger.bind(method=request.method, path=request.url.path)

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(trace_id=trace_id)
        try:
            try:
                response = await call_next(request)
            except Exception:
                request_log.error("request.failed", status_code=500, duration_ms=_elapsed_ms(started))
                raise

            response.headers[TRACE_HEADER] = trace_id
            if response.status_code >= 500:
                emit = request_log.error
            elif response.status_code >= 400:
                emit = request_log.warning
            else:
                emit = request_log.info
            emit("request.completed", status_code=response.status_code, duration_ms=_elapsed_ms(started))
            return response
        finally:
            structlog.contextvars.unbind_contextvars("trace_id")
