"""Shared test fixtures.

Provides:
- InMemoryRecordStore: RecordStore test double keyed by external id
- A fixed clock (TODAY) for deterministic close dates
- A SyncEngine wired to the in-memory store
"""

from __future__ import annotations

import itertools
from datetime import date
from typing import Any

import pytest

from src.proposal_sync.crm.adapter import RecordStore
from src.proposal_sync.crm.schemas import RemoteRecord, SessionInfo, StoreHealth, StoreStatus
from src.proposal_sync.errors import RemoteDuplicateError
from src.proposal_sync.sync.engine import SyncEngine

TODAY = date(2025, 1, 15)


# ── In-Memory Test Double ────────────────────────────────────────────────────


class InMemoryRecordStore(RecordStore):
    """In-memory RecordStore for testing without Salesforce.

    Records calls so tests can assert which writes happened. Set
    ``race_winner`` to a field dict to simulate another worker creating the
    record between this engine's lookup and its create.
    """

    def __init__(self) -> None:
        self.records: dict[str, dict[str, Any]] = {}
        self.create_calls: list[dict[str, Any]] = []
        self.update_calls: list[tuple[str, dict[str, Any]]] = []
        self.lookups: list[str] = []
        self.connected = False
        self.race_winner: dict[str, Any] | None = None
        self._ids = (f"006{n:012d}" for n in itertools.count(1))

    def seed(self, external_id: str, **fields: Any) -> str:
        record_id = next(self._ids)
        self.records[record_id] = {"external_id": external_id, **fields}
        return record_id

    def get(self, external_id: str) -> dict[str, Any] | None:
        for record in self.records.values():
            if record.get("external_id") == external_id:
                return record
        return None

    async def connect(self) -> SessionInfo:
        self.connected = True
        return SessionInfo(instance_url="https://test.my.salesforce.com", api_version="59.0")

    async def disconnect(self) -> None:
        self.connected = False

    async def health(self) -> StoreHealth:
        if not self.connected:
            return StoreHealth(status=StoreStatus.DISCONNECTED, last_error="No connection established")
        return StoreHealth(status=StoreStatus.CONNECTED, instance_url="https://test.my.salesforce.com")

    async def find_by_external_id(self, external_id: str) -> RemoteRecord | None:
        self.lookups.append(external_id)
        for record_id, record in self.records.items():
            if record.get("external_id") == external_id:
                values = {key: value for key, value in record.items() if key in RemoteRecord.model_fields}
                if "stage" in values and values["stage"] is not None:
                    values["stage"] = str(getattr(values["stage"], "value", values["stage"]))
                return RemoteRecord(id=record_id, **values)
        return None

    async def create(self, fields: dict[str, Any]) -> str:
        self.create_calls.append(dict(fields))
        if self.race_winner is not None:
            self.seed(fields["external_id"], **self.race_winner)
            self.race_winner = None
        if self.get(fields["external_id"]) is not None:
            raise RemoteDuplicateError(
                "duplicate value found: Prolibu_External_Id__c",
                error_code="DUPLICATE_VALUE",
            )
        record_id = next(self._ids)
        self.records[record_id] = dict(fields)
        return record_id

    async def update_by_id(self, record_id: str, fields: dict[str, Any]) -> str:
        self.update_calls.append((record_id, dict(fields)))
        self.records[record_id].update(fields)
        return record_id


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def engine(store) -> SyncEngine:
    """SyncEngine over the in-memory store with a fixed clock."""
    return SyncEngine(store, today=lambda: TODAY)
