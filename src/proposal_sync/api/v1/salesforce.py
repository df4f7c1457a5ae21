"""Salesforce connection and lookup endpoints."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from src.proposal_sync.api.deps import get_record_store
from src.proposal_sync.api.middleware.logging import get_trace_id
from src.proposal_sync.crm.adapter import RecordStore
from src.proposal_sync.crm.schemas import StoreStatus

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/salesforce", tags=["salesforce"])


@router.get("/health")
async def salesforce_health(store: RecordStore = Depends(get_record_store)) -> JSONResponse:
    """Connection health: 200 when connected, 503 otherwise."""
    health = await store.health()
    status_code = (
        status.HTTP_200_OK
        if health.status == StoreStatus.CONNECTED
        else status.HTTP_503_SERVICE_UNAVAILABLE
    )
    logger.info("salesforce.health_checked", status=health.status.value)
    return JSONResponse(
        status_code=status_code,
        content={
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "service": "salesforce-integration",
            **health.model_dump(mode="json"),
        },
    )


@router.post("/reconnect")
async def salesforce_reconnect(
    request: Request,
    store: RecordStore = Depends(get_record_store),
) -> dict[str, Any]:
    """Drop the current session and log in again."""
    session = await store.reconnect()
    logger.info("salesforce.reconnected", instance_url=session.instance_url)
    return {
        "status": "ok",
        "message": "Reconnected to Salesforce",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "traceId": get_trace_id(request),
        "connectionInfo": session.model_dump(mode="json"),
    }


@router.get("/opportunity/{proposal_id}")
async def get_opportunity(
    proposal_id: str,
    request: Request,
    store: RecordStore = Depends(get_record_store),
) -> Any:
    """Fetch the Opportunity synced from a Prolibu proposal."""
    trace_id = get_trace_id(request)
    record = await store.find_by_external_id(proposal_id)
    if record is None:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={
                "status": "not_found",
                "message": f"Opportunity for proposal '{proposal_id}' not found",
                "traceId": trace_id,
            },
        )
    return {
        "status": "ok",
        "traceId": trace_id,
        "opportunity": record.model_dump(mode="json"),
    }
