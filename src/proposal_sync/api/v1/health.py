"""Service descriptor and liveness endpoints.

No external dependencies are checked here; Salesforce connectivity is
reported by GET /salesforce/health.
"""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter

from src.proposal_sync.config import get_settings

router = APIRouter(tags=["health"])

ENDPOINTS = {
    "health": "GET /health",
    "ping": "GET /ping",
    "webhook": "POST /webhooks/prolibu",
    "webhookHealth": "GET /webhooks/prolibu/health",
    "webhookInfo": "GET /webhooks/prolibu/info",
    "salesforceHealth": "GET /salesforce/health",
    "salesforceReconnect": "POST /salesforce/reconnect",
    "salesforceOpportunity": "GET /salesforce/opportunity/{proposal_id}",
    "metrics": "GET /metrics",
}


@router.get("/")
async def service_info():
    """Describe the service and list its endpoints."""
    settings = get_settings()
    return {
        "name": settings.SERVICE_NAME,
        "version": settings.SERVICE_VERSION,
        "environment": settings.ENVIRONMENT.value,
        "endpoints": ENDPOINTS,
    }


@router.get("/health")
async def health_check():
    """Basic liveness check."""
    settings = get_settings()
    return {
        "status": "ok",
        "environment": settings.ENVIRONMENT.value,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/ping")
async def ping():
    return {"message": "pong"}
