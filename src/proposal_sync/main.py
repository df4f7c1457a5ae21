"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
error handlers, lifespan events that build the Salesforce store and sync
engine, and the v1 API router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.proposal_sync.api.errors import register_exception_handlers
from src.proposal_sync.api.middleware.logging import TRACE_HEADER, LoggingMiddleware, configure_structlog
from src.proposal_sync.api.v1.router import router as v1_router
from src.proposal_sync.config import get_settings
from src.proposal_sync.core.monitoring import (
    METRICS_PATH,
    MetricsMiddleware,
    get_metrics_response,
    init_sentry,
)
from src.proposal_sync.crm.salesforce import SalesforceStore
from src.proposal_sync.sync.engine import SyncEngine


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: build store and engine on startup, disconnect on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()

    if settings.SENTRY_DSN:
        init_sentry(
            dsn=settings.SENTRY_DSN,
            environment=settings.ENVIRONMENT.value,
            release=settings.SERVICE_VERSION,
        )

    store = SalesforceStore.from_settings(settings)
    app.state.record_store = store
    app.state.sync_engine = SyncEngine(
        store,
        serialize_per_proposal=settings.SYNC_SERIALIZE_PER_PROPOSAL,
    )

    missing = settings.missing_salesforce_settings()
    if missing:
        log.warning("startup.salesforce_not_configured", missing=missing)

    log.info(
        "startup.complete",
        environment=settings.ENVIRONMENT.value,
        external_id_field=settings.SF_EXTERNAL_ID_FIELD,
        serialize_per_proposal=settings.SYNC_SERIALIZE_PER_PROPOSAL,
    )

    yield

    await store.disconnect()
    log.info("shutdown.complete")


def create_app() -> FastAPI:
    """Build the application: middleware stack, error handlers, routes."""
    settings = get_settings()

    app = FastAPI(
        title="Prolibu → Salesforce Sync",
        version=settings.SERVICE_VERSION,
        description="Syncs Prolibu proposals to Salesforce Opportunities",
        lifespan=lifespan,
    )

    # add_middleware prepends, so the last one added runs first:
    # MetricsMiddleware → LoggingMiddleware → CORSMiddleware → routes
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins or ["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=[TRACE_HEADER],
    )
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(MetricsMiddleware)

    register_exception_handlers(app)
    app.include_router(v1_router)
    app.add_api_route(
        METRICS_PATH,
        get_metrics_response,
        methods=["GET"],
        include_in_schema=False,
    )

    return app


app = create_app()
