"""FastAPI dependencies for services held on app.state by the lifespan."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from src.proposal_sync.crm.adapter import RecordStore
from src.proposal_sync.sync.engine import SyncEngine


def get_sync_engine(request: Request) -> SyncEngine:
    """Retrieve the SyncEngine from app.state, 503 if not available."""
    engine = getattr(request.app.state, "sync_engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Sync engine not initialized",
        )
    return engine


def get_record_store(request: Request) -> RecordStore:
    """Retrieve the RecordStore from app.state, 503 if not available."""
    store = getattr(request.app.state, "record_store", None)
    if store is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Record store not initialized",
        )
    return store
