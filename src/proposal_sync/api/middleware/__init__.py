"""API middleware package."""

from src.proposal_sync.api.middleware.logging import LoggingMiddleware, get_trace_id

__all__ = ["LoggingMiddleware", "get_trace_id"]
