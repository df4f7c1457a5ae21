"""Prometheus metrics and Sentry integration.

Provides:
- MetricsMiddleware: request count and latency per route template
- record_sync_event() / record_remote_error(): sync and Salesforce counters
- init_sentry(): Initialize Sentry for the FastAPI app
- get_metrics_response(): Prometheus exposition for GET /metrics
"""

from __future__ import annotations

import time

import sentry_sdk
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, Counter, Histogram, generate_latest
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

METRICS_PATH = "/metrics"

# ── Request Metrics ──────────────────────────────────────────────────────────

REQUESTS = Counter(
    "proposal_sync_requests_total",
    "HTTP requests handled, by route template and status",
    ["method", "route", "status_code"],
)

REQUEST_LATENCY = Histogram(
    "proposal_sync_request_seconds",
    "HTTP request latency in seconds, by route template",
    ["method", "route"],
    buckets=(0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0),
)

# ── Sync Metrics ─────────────────────────────────────────────────────────────

SYNC_EVENTS = Counter(
    "proposal_sync_events_total",
    "Proposal events processed by the sync engine",
    ["event", "operation", "status"],
)

REMOTE_ERRORS = Counter(
    "proposal_sync_remote_errors_total",
    "Salesforce errors by category",
    ["category"],
)


def record_sync_event(event: str, operation: str | None, status: str) -> None:
    """Count one processed event. operation is "none" when nothing was written."""
    SYNC_EVENTS.labels(event=event, operation=operation or "none", status=status).inc()


def record_remote_error(category: str) -> None:
    REMOTE_ERRORS.labels(category=category).inc()


def _route_label(request: Request) -> str:
    # Matched template, so /salesforce/opportunity/{proposal_id} stays one series.
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


class MetricsMiddleware(BaseHTTPMiddleware):
    """Records request count and latency for everything except METRICS_PATH."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path == METRICS_PATH:
            return await call_next(request)

        started = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - started

        route = _route_label(request)
        REQUESTS.labels(request.method, route, str(response.status_code)).inc()
        REQUEST_LATENCY.labels(request.method, route).observe(elapsed)
        return response


# ── Sentry ───────────────────────────────────────────────────────────────────


def init_sentry(dsn: str, environment: str, release: str | None = None) -> None:
    """Initialize the Sentry SDK with the Starlette and FastAPI integrations.

    Args:
        dsn: Sentry DSN string.
        environment: Deployment environment; production samples 10% of traces.
        release: Service version reported with each event.
    """
    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        release=release,
        traces_sample_rate=0.1 if environment == "production" else 1.0,
        send_default_pii=False,
        integrations=[StarletteIntegration(), FastApiIntegration()],
    )


def get_metrics_response() -> Response:
    return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)
