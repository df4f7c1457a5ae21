"""Normalizes Prolibu-native webhook payloads into the canonical envelope.

Prolibu delivers proposals in two shapes:

- wrapper: ``{"model": "proposal", "action": "create", "body": {...}}``
- direct: the proposal record itself, ``{"proposalNumber": ..., "title": ...}``

Recognizers are tried in order and the first match wins. A payload no
recognizer claims (for example an already canonical envelope) is returned
unchanged so the validator can judge it.

Pure: no I/O beyond one structured log line per adaptation.
"""

from __future__ import annotations

import math
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Context, Decimal
from typing import Any, NamedTuple

import structlog

from src.proposal_sync.errors import MissingIdentifierError, UnsupportedActionError
from src.proposal_sync.webhooks.schemas import EventKind

logger = structlog.get_logger(__name__)

ACTION_TO_EVENT: dict[str, EventKind] = {
    "create": EventKind.CREATED,
    "update": EventKind.UPDATED,
    "delete": EventKind.DELETED,
    "destroy": EventKind.DELETED,
}

# Prolibu status → stage key understood by the stage map.
STATUS_TO_STAGE: dict[str, str] = {
    "Draft": "qualification",
    "Open": "qualification",
    "Sent": "proposal",
    "Viewed": "proposal",
    "Accepted": "won",
    "Rejected": "lost",
    "Expired": "lost",
    "Cancelled": "lost",
}

DEFAULT_STATUS = "Draft"
DEFAULT_STAGE = "qualification"
DEFAULT_CURRENCY = "USD"
HOURLY_RATE = 100
FALLBACK_AMOUNT = 1000
DEFAULT_CLOSE_DAYS = 30

# Body keys folded into canonical fields; everything else goes to data.prolibu.
_CONSUMED_KEYS = frozenset({
    "title",
    "total",
    "amount",
    "currency",
    "specialObservations",
    "content",
    "closeDate",
    "close_date",
})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Value Helpers ───────────────────────────────────────────────────────────


def _to_number(value: Any) -> float | None:
    """Coerce numbers and numeric strings; None for anything else."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


# Wide enough for any finite float quantized to cents.
_MONEY_CONTEXT = Context(prec=400)


def _round_money(value: float) -> float:
    cents = Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP, context=_MONEY_CONTEXT)
    return float(cents)


def resolve_amount(body: dict[str, Any]) -> float:
    """Derive a positive proposal amount from a Prolibu body.

    Precedence: ``total``, ``amount``, the sum of ``price * quantity`` over
    ``products``, then ``workingTime * HOURLY_RATE``. A result that is not
    positive and finite becomes FALLBACK_AMOUNT.
    """
    total = 0.0
    for key in ("total", "amount"):
        number = _to_number(body.get(key))
        if number is not None and number > 0:
            total = number
            break
    else:
        products = body.get("products")
        working_time = _to_number(body.get("workingTime"))
        if isinstance(products, list) and products:
            total = sum(
                (_to_number(item.get("price")) or 0.0) * (_to_number(item.get("quantity")) or 0.0)
                for item in products
                if isinstance(item, dict)
            )
        elif working_time:
            total = working_time * HOURLY_RATE

    if not math.isfinite(total) or total <= 0:
        total = FALLBACK_AMOUNT
    return _round_money(total)


def resolve_stage(body: dict[str, Any]) -> tuple[Any, str]:
    """Return (status, stage key) for a Prolibu body.

    Unknown or non-string statuses fall back to DEFAULT_STAGE; the raw status
    is returned unchanged for the side channel.
    """
    status = body.get("status") or body.get("stage") or DEFAULT_STATUS
    if not isinstance(status, str):
        return status, DEFAULT_STAGE
    return status, STATUS_TO_STAGE.get(status, DEFAULT_STAGE)


def _resolve_identifier(body: dict[str, Any]) -> str:
    identifier = body.get("proposalNumber") or body.get("id")
    if not identifier:
        raise MissingIdentifierError(
            "Prolibu proposal has neither proposalNumber nor id"
        )
    return str(identifier)


def _resolve_close_date(body: dict[str, Any]) -> str:
    close_date = body.get("expectedCloseDate") or body.get("closeDate") or body.get("close_date")
    if close_date:
        return close_date
    return (_utcnow() + timedelta(days=DEFAULT_CLOSE_DAYS)).date().isoformat()


# ── Envelope Construction ───────────────────────────────────────────────────


def _build_envelope(body: dict[str, Any], kind: EventKind, action: str) -> dict[str, Any]:
    proposal_id = _resolve_identifier(body)
    status, stage = resolve_stage(body)

    side_channel = {key: value for key, value in body.items() if key not in _CONSUMED_KEYS}
    side_channel["status"] = status

    data: dict[str, Any] = {
        "proposalId": proposal_id,
        "title": body.get("title") or f"Proposal {proposal_id}",
        "amount": {
            "total": resolve_amount(body),
            "currency": body.get("currency") or DEFAULT_CURRENCY,
        },
        "stage": stage,
        "closeDate": _resolve_close_date(body),
        "description": (
            body.get("specialObservations")
            or body.get("content")
            or f"Proposal {proposal_id} synced from Prolibu"
        ),
        "prolibu": side_channel,
    }
    if kind is EventKind.DELETED:
        data["reason"] = f"Proposal {action} in Prolibu"

    logger.info(
        "prolibu_adapter.adapted",
        proposal_id=proposal_id,
        event_kind=kind.value,
        action=action,
        status=status,
        stage=stage,
        amount=data["amount"]["total"],
    )

    return {
        "event": kind.value,
        "timestamp": _utcnow().isoformat(),
        "data": data,
    }


def _is_wrapper(payload: Any) -> bool:
    return (
        isinstance(payload, dict)
        and payload.get("model") == "proposal"
        and bool(payload.get("action"))
        and isinstance(payload.get("body"), dict)
    )


def _adapt_wrapper(payload: dict[str, Any]) -> dict[str, Any]:
    body = payload["body"]
    # Identifier is checked before the action.
    _resolve_identifier(body)
    action = payload["action"]
    kind = ACTION_TO_EVENT.get(action) if isinstance(action, str) else None
    if kind is None:
        raise UnsupportedActionError(action)
    return _build_envelope(body, kind, action)


def _is_direct(payload: Any) -> bool:
    return (
        isinstance(payload, dict)
        and bool(payload.get("proposalNumber"))
        and isinstance(payload.get("title"), str)
    )


def _adapt_direct(payload: dict[str, Any]) -> dict[str, Any]:
    return _build_envelope(payload, EventKind.UPDATED, "update")


class Recognizer(NamedTuple):
    """A named payload shape: a predicate and the transform it enables."""

    name: str
    matches: Callable[[Any], bool]
    transform: Callable[[dict[str, Any]], dict[str, Any]]


RECOGNIZERS: tuple[Recognizer, ...] = (
    Recognizer("wrapper", _is_wrapper, _adapt_wrapper),
    Recognizer("direct", _is_direct, _adapt_direct),
)


# ── Public API ──────────────────────────────────────────────────────────────


def detect_shape(payload: Any) -> str | None:
    """Name of the first recognizer that claims payload, or None."""
    for recognizer in RECOGNIZERS:
        if recognizer.matches(payload):
            return recognizer.name
    return None


def is_prolibu_webhook(payload: Any) -> bool:
    """Return True if payload is in a Prolibu-native shape."""
    return detect_shape(payload) is not None


def adapt_webhook(payload: Any) -> Any:
    """Convert a Prolibu-native payload to the canonical envelope.

    Args:
        payload: Decoded JSON body.

    Returns:
        ``{"event", "timestamp", "data"}`` for recognized shapes, otherwise
        payload unchanged.

    Raises:
        MissingIdentifierError: Recognized payload with no proposalNumber or id.
        UnsupportedActionError: Wrapper payload with an unmapped action.
    """
    for recognizer in RECOGNIZERS:
        if recognizer.matches(payload):
            return recognizer.transform(payload)
    return payload
