"""Proposal → Opportunity sync engine.

Reconciles one validated CanonicalEvent against the record store, keyed by
the external-id field (= proposalId):

- created: full field set; update if a record already exists, else create.
  A duplicate reported by create (a concurrent event won the race) falls
  back to lookup + update, so a proposal never yields two records.
- updated: partial field set, only what the event carries. A lookup miss
  degrades to a create with whatever fields were supplied.
- deleted: never removes the record; moves it to Closed Lost and appends the
  reason to its description. A lookup miss is a non-error "not found".

Remote errors propagate typed; the engine never retries. Retrying is the
store's job at connection time.

Lookup-then-act is not atomic across concurrent events for the same
proposal. With serialize_per_proposal=True events for one proposalId are
processed one at a time within this process.
"""

from __future__ import annotations

import asyncio
import weakref
from collections.abc import Callable
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel, Field

from src.proposal_sync.core.monitoring import record_sync_event
from src.proposal_sync.crm.adapter import RecordStore
from src.proposal_sync.errors import RemoteDuplicateError
from src.proposal_sync.sync.stage_map import TargetStage, is_closed, map_stage_to_target
from src.proposal_sync.webhooks.schemas import CanonicalEvent, EventKind

logger = structlog.get_logger(__name__)

OPEN_CLOSE_DATE_DAYS = 30


class SyncOperation(str, Enum):
    """What the engine did to the remote record."""

    CREATED = "created"
    UPDATED = "updated"
    CLOSED_LOST = "closed_lost"


class SyncResult(BaseModel):
    """Outcome of processing one event."""

    success: bool
    proposal_id: str
    external_record_id: str | None = None
    operation: SyncOperation | None = None
    target_stage: TargetStage | None = None
    fields_updated: list[str] = Field(default_factory=list)
    message: str = ""


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


class SyncEngine:
    """Applies canonical proposal events to a RecordStore.

    Args:
        store: Remote record store (SalesforceStore in production).
        today: Clock returning the current UTC date. Injectable for tests.
        serialize_per_proposal: Process events for the same proposalId one at a time.
    """

    def __init__(
        self,
        store: RecordStore,
        today: Callable[[], date] | None = None,
        serialize_per_proposal: bool = False,
    ) -> None:
        self._store = store
        self._today = today or _utc_today
        self._serialize = serialize_per_proposal
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    @property
    def store(self) -> RecordStore:
        return self._store

    def _lock_for(self, proposal_id: str) -> asyncio.Lock:
        lock = self._locks.get(proposal_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[proposal_id] = lock
        return lock

    async def process(self, event: CanonicalEvent, trace_id: str | None = None) -> SyncResult:
        """Dispatch an event to its handler.

        Args:
            event: Validated canonical event.
            trace_id: Request trace id, logged only.

        Returns:
            SyncResult describing the remote write (or its absence).

        Raises:
            UnmappedStageError: The event's stage has no mapping.
            RemoteError: Any categorized store failure.
        """
        handlers = {
            EventKind.CREATED: self.handle_created,
            EventKind.UPDATED: self.handle_updated,
            EventKind.DELETED: self.handle_deleted,
        }
        handler = handlers[event.kind]
        log = logger.bind(trace_id=trace_id, proposal_id=event.proposal_id, event_kind=event.kind.value)
        log.info("sync.started")

        try:
            if self._serialize:
                async with self._lock_for(event.proposal_id):
                    result = await handler(event)
            else:
                result = await handler(event)
        except Exception as exc:
            record_sync_event(event.kind.value, None, "error")
            log.warning("sync.failed", error=str(exc), error_type=type(exc).__name__)
            raise

        operation = result.operation.value if result.operation else None
        record_sync_event(event.kind.value, operation, "success" if result.success else "not_found")
        log.info(
            "sync.completed",
            success=result.success,
            operation=operation,
            external_record_id=result.external_record_id,
            target_stage=result.target_stage.value if result.target_stage else None,
            fields_updated=result.fields_updated,
        )
        return result

    # ── Event Handlers ──────────────────────────────────────────────────────

    async def handle_created(self, event: CanonicalEvent) -> SyncResult:
        """Create the record, or update it if it already exists."""
        target = map_stage_to_target(event.stage)
        today = self._today()
        close_date = today if is_closed(target) else today + timedelta(days=OPEN_CLOSE_DATE_DAYS)

        fields = _drop_none({
            "name": event.title,
            "amount": event.amount.total if event.amount else None,
            "stage": target,
            "description": event.description,
            "close_date": close_date.isoformat(),
        })

        existing = await self._store.find_by_external_id(event.proposal_id)
        if existing is not None:
            logger.info("sync.created_already_exists", proposal_id=event.proposal_id, record_id=existing.id)
            return await self._update(event.proposal_id, existing.id, fields, target)

        return await self._create_or_update(event.proposal_id, fields, target)

    async def handle_updated(self, event: CanonicalEvent) -> SyncResult:
        """Apply only the fields the event carries."""
        fields: dict[str, Any] = {}
        target: TargetStage | None = None

        if event.title:
            fields["name"] = event.title
        if event.amount is not None:
            fields["amount"] = event.amount.total
        if event.stage:
            target = map_stage_to_target(event.stage)
            fields["stage"] = target
            if is_closed(target):
                fields["close_date"] = event.close_date or self._today().isoformat()
        if event.description:
            fields["description"] = event.description

        existing = await self._store.find_by_external_id(event.proposal_id)
        if existing is None:
            logger.info("sync.updated_not_found_creating", proposal_id=event.proposal_id)
            return await self._create_or_update(event.proposal_id, fields, target)

        if not fields:
            return SyncResult(
                success=True,
                proposal_id=event.proposal_id,
                external_record_id=existing.id,
                operation=SyncOperation.UPDATED,
                message="No fields to update",
            )

        return await self._update(event.proposal_id, existing.id, fields, target)

    async def handle_deleted(self, event: CanonicalEvent) -> SyncResult:
        """Close the record as lost. Never deletes it."""
        existing = await self._store.find_by_external_id(event.proposal_id)
        if existing is None:
            logger.info("sync.deleted_not_found", proposal_id=event.proposal_id)
            return SyncResult(
                success=False,
                proposal_id=event.proposal_id,
                message=f"Opportunity for proposal {event.proposal_id} not found",
            )

        fields: dict[str, Any] = {
            "stage": TargetStage.CLOSED_LOST,
            "close_date": event.close_date or self._today().isoformat(),
        }
        if event.reason:
            closed_reason = f"Closed Reason: {event.reason}"
            fields["description"] = (
                f"{existing.description}\n\n{closed_reason}" if existing.description else closed_reason
            )

        record_id = await self._store.update_by_id(existing.id, fields)
        return SyncResult(
            success=True,
            proposal_id=event.proposal_id,
            external_record_id=record_id,
            operation=SyncOperation.CLOSED_LOST,
            target_stage=TargetStage.CLOSED_LOST,
            fields_updated=list(fields),
            message="Opportunity marked as Closed Lost",
        )

    # ── Store Operations ────────────────────────────────────────────────────

    async def _update(
        self,
        proposal_id: str,
        record_id: str,
        fields: dict[str, Any],
        target: TargetStage | None,
    ) -> SyncResult:
        record_id = await self._store.update_by_id(record_id, fields)
        return SyncResult(
            success=True,
            proposal_id=proposal_id,
            external_record_id=record_id,
            operation=SyncOperation.UPDATED,
            target_stage=target,
            fields_updated=list(fields),
            message="Opportunity updated",
        )

    async def _create_or_update(
        self,
        proposal_id: str,
        fields: dict[str, Any],
        target: TargetStage | None,
    ) -> SyncResult:
        """Create keyed by proposal_id; on a duplicate, update the winner's record."""
        try:
            record_id = await self._store.create({**fields, "external_id": proposal_id})
        except RemoteDuplicateError:
            existing = await self._store.find_by_external_id(proposal_id)
            if existing is None:
                raise
            logger.info("sync.create_race_lost", proposal_id=proposal_id, record_id=existing.id)
            return await self._update(proposal_id, existing.id, fields, target)

        return SyncResult(
            success=True,
            proposal_id=proposal_id,
            external_record_id=record_id,
            operation=SyncOperation.CREATED,
            target_stage=target,
            fields_updated=list(fields),
            message="Opportunity created",
        )


def _drop_none(fields: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in fields.items() if value is not None}
