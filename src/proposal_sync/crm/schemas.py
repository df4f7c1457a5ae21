"""Pydantic schemas for the remote record store.

- SessionInfo: details of an established Salesforce session
- RemoteRecord: an Opportunity as read back from Salesforce
- StoreStatus / StoreHealth: connection health snapshot
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


class SessionInfo(BaseModel):
    """An established remote session."""

    instance_url: str
    api_version: str | None = None
    session_id_suffix: str | None = None
    connected_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class RemoteRecord(BaseModel):
    """Opportunity fields this service reads and writes, keyed by internal names."""

    id: str
    external_id: str | None = None
    name: str | None = None
    amount: float | None = None
    stage: str | None = None
    close_date: str | None = None
    description: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


class StoreStatus(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class StoreHealth(BaseModel):
    """Connection health as reported by GET /salesforce/health."""

    status: StoreStatus
    instance_url: str | None = None
    organization_name: str | None = None
    api_version: str | None = None
    last_error: str | None = None
    connect_attempts: int = 0
