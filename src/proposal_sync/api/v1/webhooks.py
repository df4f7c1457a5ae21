"""Prolibu webhook endpoints.

POST /webhooks/prolibu runs the full pipeline for one delivery:
decode JSON → adapt Prolibu-native shapes → validate → SyncEngine.
Errors are rendered by the handlers in src/proposal_sync/api/errors.py.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from src.proposal_sync.api.deps import get_sync_engine
from src.proposal_sync.api.errors import error_response
from src.proposal_sync.api.middleware.logging import get_trace_id
from src.proposal_sync.errors import SyncError
from src.proposal_sync.sync.engine import SyncEngine
from src.proposal_sync.sync.stage_map import mapping_summary
from src.proposal_sync.webhooks.adapter import adapt_webhook, detect_shape
from src.proposal_sync.webhooks.schemas import REQUIRED_FIELDS, SUPPORTED_EVENTS, validate_webhook

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/webhooks/prolibu", tags=["webhooks"])


# ── Response Schemas ─────────────────────────────────────────────────────────


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class WebhookResultData(_CamelModel):
    event: str
    proposal_id: str
    external_record_id: str | None = None
    operation: str | None = None
    processed: bool


class WebhookResponse(_CamelModel):
    """Body returned for a processed webhook."""

    status: str = "ok"
    message: str
    trace_id: str
    data: WebhookResultData


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.post("", response_model=WebhookResponse)
async def receive_webhook(
    request: Request,
    engine: SyncEngine = Depends(get_sync_engine),
) -> Any:
    """Receive a Prolibu proposal webhook and sync it to Salesforce."""
    trace_id = get_trace_id(request)

    raw = await request.body()
    if not raw.strip():
        return error_response(
            status.HTTP_400_BAD_REQUEST, "empty_body", "Request body is empty", trace_id
        )
    try:
        payload = json.loads(raw)
    except ValueError:
        return error_response(
            status.HTTP_400_BAD_REQUEST, "invalid_json", "Request body is not valid JSON", trace_id
        )

    shape = detect_shape(payload)
    logger.info("webhook.received", shape=shape or "canonical")

    try:
        envelope = validate_webhook(adapt_webhook(payload))
        result = await engine.process(envelope.data, trace_id=trace_id)
    except SyncError:
        raise
    except Exception:
        logger.exception("webhook.processing_failed")
        return error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR, "internal_error", "Internal server error", trace_id
        )

    return WebhookResponse(
        message=result.message or "Webhook processed",
        trace_id=trace_id,
        data=WebhookResultData(
            event=envelope.event.value,
            proposal_id=result.proposal_id,
            external_record_id=result.external_record_id,
            operation=result.operation.value if result.operation else None,
            processed=result.success,
        ),
    )


@router.get("/health")
async def webhook_health():
    return {
        "status": "ok",
        "service": "prolibu-webhooks",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "supportedEvents": SUPPORTED_EVENTS,
    }


@router.get("/info")
async def webhook_info():
    """Document the webhook contract: events, required fields, stage mapping."""
    return {
        "service": "prolibu-webhooks",
        "supportedEvents": SUPPORTED_EVENTS,
        "requiredFields": REQUIRED_FIELDS,
        "stageMapping": mapping_summary().model_dump(),
        "acceptedShapes": ["canonical", "wrapper", "direct"],
        "endpoints": {
            "webhook": "POST /webhooks/prolibu",
            "health": "GET /webhooks/prolibu/health",
            "info": "GET /webhooks/prolibu/info",
        },
    }
