"""Pydantic schemas and validation for Prolibu proposal webhooks.

Defines:
- EventKind: proposal.created / proposal.updated / proposal.deleted
- Per-kind data models (ProposalCreatedData, ProposalUpdatedData, ProposalDeletedData)
- CanonicalEvent: immutable normalized event consumed by the SyncEngine
- validate_proposal_data(): validate data for one event kind
- validate_webhook(): validate the full {event, data, timestamp, webhookId} envelope

Validation is eager: every violated field rule is reported in one
ValidationError. Scalars are strict (no str→number coercion); the adapter is
the only layer that coerces Prolibu-native values.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, StrictStr, StringConstraints, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from src.proposal_sync.errors import FieldIssue, ValidationError

# Pattern only; calendar validity (e.g. month 13) is not checked.
CLOSE_DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"


class EventKind(str, Enum):
    """Supported webhook event kinds."""

    CREATED = "proposal.created"
    UPDATED = "proposal.updated"
    DELETED = "proposal.deleted"


SUPPORTED_EVENTS: list[str] = [kind.value for kind in EventKind]

REQUIRED_FIELDS: dict[str, list[str]] = {
    EventKind.CREATED.value: ["proposalId", "title", "amount.total", "stage"],
    EventKind.UPDATED.value: ["proposalId"],
    EventKind.DELETED.value: ["proposalId"],
}

NonEmptyStr = Annotated[str, StringConstraints(strict=True, min_length=1)]
CloseDate = Annotated[str, StringConstraints(strict=True, pattern=CLOSE_DATE_PATTERN)]
PositiveAmount = Annotated[float, Field(strict=True, gt=0)]


class _WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python; unknown keys dropped."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class Amount(_WireModel):
    """Proposal amount. Currency is informational only."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )

    total: PositiveAmount
    currency: StrictStr | None = None


# ── Per-Kind Data Schemas ───────────────────────────────────────────────────


class ProposalUpdatedData(_WireModel):
    """proposal.updated: only proposalId required; other fields checked if present."""

    proposal_id: NonEmptyStr
    title: StrictStr | None = None
    amount: Amount | None = None
    stage: StrictStr | None = None
    close_date: CloseDate | None = None
    description: StrictStr | None = None
    client_id: StrictStr | None = None
    client_name: StrictStr | None = None
    prolibu: Any = None


class ProposalCreatedData(ProposalUpdatedData):
    """proposal.created: proposalId, title, amount.total and stage required."""

    title: NonEmptyStr
    amount: Amount
    stage: NonEmptyStr


class ProposalDeletedData(_WireModel):
    """proposal.deleted: proposalId required, closeDate and reason optional."""

    proposal_id: NonEmptyStr
    close_date: CloseDate | None = None
    reason: StrictStr | None = None


_DATA_SCHEMAS: dict[EventKind, type[_WireModel]] = {
    EventKind.CREATED: ProposalCreatedData,
    EventKind.UPDATED: ProposalUpdatedData,
    EventKind.DELETED: ProposalDeletedData,
}


class CanonicalEvent(_WireModel):
    """Normalized, validated proposal event. Immutable."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )

    kind: EventKind
    proposal_id: str
    title: str | None = None
    amount: Amount | None = None
    stage: str | None = None
    close_date: str | None = None
    description: str | None = None
    reason: str | None = None
    prolibu: Any = None


class WebhookEnvelope(BaseModel):
    """A validated webhook: event kind, canonical data and delivery metadata."""

    model_config = ConfigDict(frozen=True)

    event: EventKind
    data: CanonicalEvent
    timestamp: str | None = None
    webhook_id: str | None = None


class _EnvelopeIn(_WireModel):
    """Structural checks on the envelope; data is validated per kind."""

    event: StrictStr
    data: dict[str, Any]
    timestamp: StrictStr | None = None
    webhook_id: StrictStr | None = None

    @field_validator("event")
    @classmethod
    def _supported_event(cls, value: str) -> str:
        if value not in SUPPORTED_EVENTS:
            raise ValueError(
                f"event must be one of: {', '.join(SUPPORTED_EVENTS)} (got '{value}')"
            )
        return value

    @field_validator("timestamp")
    @classmethod
    def _iso_timestamp(cls, value: str | None) -> str | None:
        if value is None:
            return value
        try:
            datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise ValueError("timestamp must be an ISO-8601 datetime") from None
        return value


# ── Error Conversion ────────────────────────────────────────────────────────


def _to_issues(
    exc: PydanticValidationError,
    prefix: str = "",
    kind: EventKind | None = None,
) -> list[FieldIssue]:
    """Convert pydantic errors into FieldIssues with dotted camelCase paths."""
    issues: list[FieldIssue] = []
    for err in exc.errors():
        path = ".".join(str(part) for part in err["loc"])
        field = f"{prefix}{path}" if path else prefix.rstrip(".") or "body"
        if err["type"] == "missing":
            suffix = f" for {kind.value} events" if kind else ""
            message = f"{path} is required{suffix}"
        else:
            message = err["msg"]
        issues.append(FieldIssue(field=field, message=message, type=err["type"]))
    return issues


def _coerce_kind(value: Any) -> EventKind | None:
    if isinstance(value, EventKind):
        return value
    try:
        return EventKind(value)
    except ValueError:
        return None


# ── Validation Functions ────────────────────────────────────────────────────


def validate_proposal_data(kind: EventKind | str, data: Any) -> CanonicalEvent:
    """Validate proposal data for one event kind and build a CanonicalEvent.

    Args:
        kind: EventKind or its wire value.
        data: Raw data object from the webhook.

    Returns:
        The immutable CanonicalEvent.

    Raises:
        ValidationError: With one FieldIssue per violated rule.
    """
    event_kind = _coerce_kind(kind)
    if event_kind is None:
        raise ValidationError(
            [FieldIssue("event", f"Unsupported event type: {kind}", "enum")]
        )
    if not isinstance(data, dict):
        raise ValidationError(
            [FieldIssue("data", "data must be an object", "dict_type")]
        )

    schema = _DATA_SCHEMAS[event_kind]
    try:
        parsed = schema.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(_to_issues(exc, kind=event_kind)) from exc

    return CanonicalEvent(kind=event_kind, **parsed.model_dump(exclude={"client_id", "client_name"}))


def validate_webhook(payload: Any) -> WebhookEnvelope:
    """Validate a complete webhook envelope including its per-kind data.

    Envelope and data violations are collected together, so a bad timestamp
    and a missing title are both reported.
    """
    if not isinstance(payload, dict):
        raise ValidationError(
            [FieldIssue("body", "webhook body must be a JSON object", "dict_type")]
        )

    issues: list[FieldIssue] = []
    envelope: _EnvelopeIn | None = None
    try:
        envelope = _EnvelopeIn.model_validate(payload)
    except PydanticValidationError as exc:
        issues.extend(_to_issues(exc))

    kind = _coerce_kind(payload.get("event"))
    data = payload.get("data")
    event: CanonicalEvent | None = None
    if kind is not None and isinstance(data, dict):
        try:
            event = validate_proposal_data(kind, data)
        except ValidationError as exc:
            issues.extend(
                FieldIssue(f"data.{issue.field}", issue.message, issue.type)
                for issue in exc.issues
            )

    if issues or envelope is None or event is None:
        raise ValidationError(issues or [FieldIssue("body", "Invalid webhook", "invalid")])

    return WebhookEnvelope(
        event=event.kind,
        data=event,
        timestamp=envelope.timestamp,
        webhook_id=envelope.webhook_id,
    )
