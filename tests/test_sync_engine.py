"""Unit tests for the SyncEngine.

Uses InMemoryRecordStore (tests/conftest.py) and a fixed clock; TODAY is
2025-01-15 so open-stage close dates land on 2025-02-14.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from src.proposal_sync.crm.adapter import RecordStore
from src.proposal_sync.crm.schemas import RemoteRecord
from src.proposal_sync.errors import RemoteConnectivityError, RemoteDuplicateError, UnmappedStageError
from src.proposal_sync.sync.engine import SyncEngine, SyncOperation
from src.proposal_sync.sync.stage_map import TargetStage
from src.proposal_sync.webhooks.schemas import EventKind, validate_proposal_data
from tests.conftest import TODAY, InMemoryRecordStore


def _event(kind: EventKind, **data):
    return validate_proposal_data(kind, data)


def _created(proposal_id: str = "p1", **overrides):
    data = {
        "proposalId": proposal_id,
        "title": "Mobile App",
        "amount": {"total": 50000},
        "stage": "proposal",
    }
    data.update(overrides)
    return _event(EventKind.CREATED, **data)


# ── Created ─────────────────────────────────────────────────────────────────


class TestCreated:
    """proposal.created: lookup-then-act upsert."""

    async def test_create_new_record(self, engine, store):
        """A new proposal creates one record with close date today+30."""
        result = await engine.process(_created())

        assert result.success is True
        assert result.operation is SyncOperation.CREATED
        assert result.target_stage is TargetStage.PROPOSAL_PRICE_QUOTE
        assert len(store.create_calls) == 1
        created = store.create_calls[0]
        assert created["external_id"] == "p1"
        assert created["stage"] is TargetStage.PROPOSAL_PRICE_QUOTE
        assert created["close_date"] == "2025-02-14"
        assert created["amount"] == 50000
        assert created["name"] == "Mobile App"
        assert result.external_record_id in store.records

    async def test_closed_stage_closes_today(self, engine, store):
        await engine.process(_created(stage="won"))
        assert store.create_calls[0]["close_date"] == TODAY.isoformat()

    async def test_created_twice_is_idempotent(self, engine, store):
        first = await engine.process(_created())
        second = await engine.process(_created(title="Mobile App v2"))

        assert first.operation is SyncOperation.CREATED
        assert second.operation is SyncOperation.UPDATED
        assert second.external_record_id == first.external_record_id
        assert len(store.records) == 1
        assert len(store.create_calls) == 1
        assert store.get("p1")["name"] == "Mobile App v2"

    async def test_duplicate_on_create_falls_back_to_update(self, engine, store):
        """Another worker creates the record between lookup and create."""
        store.race_winner = {"name": "Winner", "stage": "Qualification"}

        result = await engine.process(_created())

        assert result.success is True
        assert result.operation is SyncOperation.UPDATED
        assert len(store.records) == 1
        assert store.get("p1")["name"] == "Mobile App"
        assert len(store.update_calls) == 1

    async def test_duplicate_without_record_propagates(self):
        store = AsyncMock(spec=RecordStore)
        store.find_by_external_id.return_value = None
        store.create.side_effect = RemoteDuplicateError("duplicate", error_code="DUPLICATE_VALUE")
        engine = SyncEngine(store, today=lambda: TODAY)

        with pytest.raises(RemoteDuplicateError):
            await engine.process(_created())

    async def test_unmapped_stage_writes_nothing(self, engine, store):
        event = _created(stage="totally_unknown")

        with pytest.raises(UnmappedStageError):
            await engine.process(event)

        assert store.create_calls == []
        assert store.update_calls == []

    async def test_none_fields_not_sent(self, engine, store):
        await engine.process(_created())
        assert "description" not in store.create_calls[0]


# ── Updated ─────────────────────────────────────────────────────────────────


class TestUpdated:
    """proposal.updated: partial, non-destructive updates."""

    async def test_stage_change_to_won(self, engine, store):
        """An existing record moves to Closed Won with close date today."""
        await engine.process(_created())

        result = await engine.process(_event(EventKind.UPDATED, proposalId="p1", stage="won"))

        assert result.operation is SyncOperation.UPDATED
        assert result.target_stage is TargetStage.CLOSED_WON
        record_id, fields = store.update_calls[-1]
        assert record_id == result.external_record_id
        assert fields == {"stage": TargetStage.CLOSED_WON, "close_date": TODAY.isoformat()}

    async def test_partial_update_keeps_other_fields(self, engine, store):
        await engine.process(_created(description="Original"))

        await engine.process(_event(EventKind.UPDATED, proposalId="p1", stage="negotiation"))

        record = store.get("p1")
        assert record["name"] == "Mobile App"
        assert record["amount"] == 50000
        assert record["description"] == "Original"
        assert record["stage"] is TargetStage.NEGOTIATION_REVIEW
        assert record["close_date"] == "2025-02-14"

    async def test_closed_stage_uses_event_close_date(self, engine, store):
        await engine.process(_created())

        await engine.process(
            _event(EventKind.UPDATED, proposalId="p1", stage="lost", closeDate="2025-01-02")
        )

        assert store.update_calls[-1][1]["close_date"] == "2025-01-02"

    async def test_close_date_ignored_without_closing_stage(self, engine, store):
        await engine.process(_created())

        result = await engine.process(
            _event(EventKind.UPDATED, proposalId="p1", title="Renamed", closeDate="2025-01-02")
        )

        assert result.fields_updated == ["name"]

    async def test_update_missing_record_creates(self, engine, store):
        result = await engine.process(
            _event(EventKind.UPDATED, proposalId="p9", title="Late", stage="review")
        )

        assert result.operation is SyncOperation.CREATED
        assert store.create_calls == [
            {"name": "Late", "stage": TargetStage.NEGOTIATION_REVIEW, "external_id": "p9"}
        ]

    async def test_update_with_no_fields_is_a_noop(self, engine, store):
        await engine.process(_created())

        result = await engine.process(_event(EventKind.UPDATED, proposalId="p1"))

        assert result.success is True
        assert result.fields_updated == []
        assert store.update_calls == []


# ── Deleted ─────────────────────────────────────────────────────────────────


class TestDeleted:
    """proposal.deleted: close as lost, never delete."""

    async def test_delete_closes_as_lost_and_appends_reason(self, engine, store):
        """The existing description is kept and the reason appended."""
        store.seed("p1", name="Deal", description="Original notes", stage="Proposal/Price Quote")

        result = await engine.process(
            _event(EventKind.DELETED, proposalId="p1", reason="client declined")
        )

        assert result.operation is SyncOperation.CLOSED_LOST
        assert result.target_stage is TargetStage.CLOSED_LOST
        record = store.get("p1")
        assert record["stage"] is TargetStage.CLOSED_LOST
        assert record["close_date"] == TODAY.isoformat()
        assert record["description"] == "Original notes\n\nClosed Reason: client declined"
        assert len(store.records) == 1

    async def test_delete_reason_without_existing_description(self, engine, store):
        store.seed("p1", name="Deal")

        await engine.process(_event(EventKind.DELETED, proposalId="p1", reason="gone"))

        assert store.get("p1")["description"] == "Closed Reason: gone"

    async def test_delete_reason_keeps_existing_whitespace(self, engine, store):
        store.seed("p1", name="Deal", description="  indented notes\n")

        await engine.process(_event(EventKind.DELETED, proposalId="p1", reason="gone"))

        assert store.get("p1")["description"] == "  indented notes\n\n\nClosed Reason: gone"

    async def test_delete_without_reason_keeps_description(self, engine, store):
        store.seed("p1", name="Deal", description="Keep me")

        result = await engine.process(
            _event(EventKind.DELETED, proposalId="p1", closeDate="2025-01-01")
        )

        assert result.fields_updated == ["stage", "close_date"]
        assert store.get("p1")["description"] == "Keep me"
        assert store.get("p1")["close_date"] == "2025-01-01"

    async def test_delete_missing_record_is_not_an_error(self, engine, store):
        result = await engine.process(_event(EventKind.DELETED, proposalId="ghost"))

        assert result.success is False
        assert result.operation is None
        assert store.update_calls == []
        assert store.create_calls == []


# ── Errors and Concurrency ──────────────────────────────────────────────────


class TestEngineBehaviour:
    """Error propagation and per-proposal serialization."""

    async def test_remote_errors_propagate_without_retry(self):
        store = AsyncMock(spec=RecordStore)
        store.find_by_external_id.side_effect = RemoteConnectivityError("down")
        engine = SyncEngine(store, today=lambda: TODAY)

        with pytest.raises(RemoteConnectivityError):
            await engine.process(_created())

        assert store.find_by_external_id.await_count == 1

    async def test_serialized_events_do_not_duplicate(self):
        """With serialization on, concurrent creates yield one create and one update."""

        class SlowStore(InMemoryRecordStore):
            async def find_by_external_id(self, external_id):
                result = await super().find_by_external_id(external_id)
                await asyncio.sleep(0.01)
                return result

        store = SlowStore()
        engine = SyncEngine(store, today=lambda: TODAY, serialize_per_proposal=True)

        results = await asyncio.gather(engine.process(_created()), engine.process(_created()))

        operations = sorted(result.operation.value for result in results)
        assert operations == ["created", "updated"]
        assert len(store.create_calls) == 1
        assert len(store.records) == 1

    async def test_default_store_lookup_uses_remote_record(self):
        store = AsyncMock(spec=RecordStore)
        store.find_by_external_id.return_value = RemoteRecord(id="006X", external_id="p1")
        store.update_by_id.return_value = "006X"
        engine = SyncEngine(store, today=lambda: TODAY)

        result = await engine.process(_created())

        store.create.assert_not_called()
        store.update_by_id.assert_awaited_once()
        assert result.external_record_id == "006X"
