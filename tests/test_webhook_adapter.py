"""Unit tests for the Prolibu payload adapter.

The clock is patched so default close dates and timestamps are deterministic.
"""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from src.proposal_sync.errors import MissingIdentifierError, UnsupportedActionError
from src.proposal_sync.webhooks.adapter import (
    FALLBACK_AMOUNT,
    RECOGNIZERS,
    adapt_webhook,
    detect_shape,
    is_prolibu_webhook,
    resolve_amount,
    resolve_stage,
)
from src.proposal_sync.webhooks.schemas import validate_webhook

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def fixed_clock():
    with patch("src.proposal_sync.webhooks.adapter._utcnow", return_value=NOW):
        yield


def _wrapper(action: str = "create", **body) -> dict:
    return {"model": "proposal", "action": action, "body": body}


# ── Shape Detection ─────────────────────────────────────────────────────────


class TestShapeDetection:
    """Recognizers are tried in order; the first match wins."""

    def test_recognizer_order(self):
        assert [r.name for r in RECOGNIZERS] == ["wrapper", "direct"]

    def test_wrapper_detected(self):
        assert detect_shape(_wrapper(proposalNumber="P-1")) == "wrapper"

    def test_direct_detected(self):
        assert detect_shape({"proposalNumber": "P-1", "title": "Deal"}) == "direct"

    def test_wrapper_wins_over_direct(self):
        payload = _wrapper(proposalNumber="P-1")
        payload.update({"proposalNumber": "P-2", "title": "Outer"})
        assert detect_shape(payload) == "wrapper"

    def test_canonical_envelope_not_recognized(self):
        canonical = {"event": "proposal.created", "data": {"proposalId": "p1"}}
        assert detect_shape(canonical) is None
        assert adapt_webhook(canonical) is canonical

    @pytest.mark.parametrize(
        "payload",
        [
            {"model": "invoice", "action": "create", "body": {"id": "1"}},
            {"model": "proposal", "action": "", "body": {"id": "1"}},
            {"model": "proposal", "action": "create", "body": "not-a-dict"},
            {"proposalNumber": "P-1", "title": 5},
            {"proposalNumber": "", "title": "Deal"},
            [1, 2, 3],
            "text",
        ],
    )
    def test_unrecognized_payloads_pass_through(self, payload):
        assert is_prolibu_webhook(payload) is False
        assert adapt_webhook(payload) is payload


# ── Wrapper Shape ───────────────────────────────────────────────────────────


class TestWrapperShape:
    """{"model": "proposal", "action": ..., "body": {...}}"""

    def test_create_full_body(self):
        envelope = adapt_webhook(
            _wrapper(
                "create",
                proposalNumber="PRO-100",
                title="Mobile App",
                total=50000,
                currency="EUR",
                status="Sent",
                expectedCloseDate="2025-03-01",
                specialObservations="Priority client",
                createdBy="ana",
            )
        )

        assert envelope["event"] == "proposal.created"
        assert envelope["timestamp"] == NOW.isoformat()
        data = envelope["data"]
        assert data["proposalId"] == "PRO-100"
        assert data["title"] == "Mobile App"
        assert data["amount"] == {"total": 50000.0, "currency": "EUR"}
        assert data["stage"] == "proposal"
        assert data["closeDate"] == "2025-03-01"
        assert data["description"] == "Priority client"
        assert "reason" not in data

    def test_side_channel_keeps_unconsumed_fields(self):
        envelope = adapt_webhook(
            _wrapper("update", proposalNumber="PRO-1", title="T", status="Viewed", createdBy="ana", stage="Viewed")
        )

        prolibu = envelope["data"]["prolibu"]
        assert prolibu["createdBy"] == "ana"
        assert prolibu["proposalNumber"] == "PRO-1"
        assert prolibu["status"] == "Viewed"
        assert "title" not in prolibu

    @pytest.mark.parametrize(
        "action, event",
        [
            ("create", "proposal.created"),
            ("update", "proposal.updated"),
            ("delete", "proposal.deleted"),
            ("destroy", "proposal.deleted"),
        ],
    )
    def test_action_mapping(self, action, event):
        assert adapt_webhook(_wrapper(action, id="abc"))["event"] == event

    def test_delete_carries_reason(self):
        envelope = adapt_webhook(_wrapper("destroy", proposalNumber="PRO-9"))
        assert envelope["data"]["reason"] == "Proposal destroy in Prolibu"

    def test_unsupported_action(self):
        with pytest.raises(UnsupportedActionError) as exc_info:
            adapt_webhook(_wrapper("archive", proposalNumber="PRO-1"))
        assert exc_info.value.action == "archive"
        assert "archive" in str(exc_info.value)

    def test_missing_identifier(self):
        with pytest.raises(MissingIdentifierError):
            adapt_webhook(_wrapper("create", title="No id"))

    @pytest.mark.parametrize("action", [{"x": 1}, ["create"], 42])
    def test_non_string_action_unsupported(self, action):
        with pytest.raises(UnsupportedActionError) as exc_info:
            adapt_webhook(_wrapper(action, proposalNumber="PRO-1"))
        assert exc_info.value.action == action

    def test_identifier_checked_before_action(self):
        with pytest.raises(MissingIdentifierError):
            adapt_webhook(_wrapper("archive", title="No id"))

    def test_numeric_id_coerced_to_string(self):
        envelope = adapt_webhook(_wrapper("update", id=12345))
        assert envelope["data"]["proposalId"] == "12345"

    def test_proposal_number_preferred_over_id(self):
        envelope = adapt_webhook(_wrapper("update", proposalNumber="PRO-7", id="mongo-id"))
        assert envelope["data"]["proposalId"] == "PRO-7"


# ── Defaults ────────────────────────────────────────────────────────────────


class TestDefaults:
    """Values derived when the Prolibu body omits them."""

    def test_defaults_for_minimal_body(self):
        data = adapt_webhook(_wrapper("create", id="42"))["data"]

        assert data["title"] == "Proposal 42"
        assert data["description"] == "Proposal 42 synced from Prolibu"
        assert data["amount"] == {"total": float(FALLBACK_AMOUNT), "currency": "USD"}
        assert data["stage"] == "qualification"
        assert data["closeDate"] == "2025-02-14"
        assert data["prolibu"]["status"] == "Draft"

    def test_close_date_precedence(self):
        data = adapt_webhook(_wrapper("update", id="1", closeDate="2025-05-05", close_date="2025-06-06"))["data"]
        assert data["closeDate"] == "2025-05-05"

        data = adapt_webhook(_wrapper("update", id="1", close_date="2025-06-06"))["data"]
        assert data["closeDate"] == "2025-06-06"

    def test_content_used_when_no_observations(self):
        data = adapt_webhook(_wrapper("update", id="1", content="Scope text"))["data"]
        assert data["description"] == "Scope text"

    @pytest.mark.parametrize(
        "status, stage",
        [
            ("Draft", "qualification"),
            ("Open", "qualification"),
            ("Sent", "proposal"),
            ("Viewed", "proposal"),
            ("Accepted", "won"),
            ("Rejected", "lost"),
            ("Expired", "lost"),
            ("Cancelled", "lost"),
            ("Mystery", "qualification"),
        ],
    )
    def test_status_vocabulary(self, status, stage):
        assert resolve_stage({"status": status}) == (status, stage)

    @pytest.mark.parametrize("status", [["Sent"], {"name": "Sent"}, 7])
    def test_non_string_status_defaults_to_qualification(self, status):
        assert resolve_stage({"status": status}) == (status, "qualification")
        assert resolve_stage({"stage": status}) == (status, "qualification")

    def test_non_string_status_kept_in_side_channel(self):
        data = adapt_webhook(_wrapper("update", proposalNumber="P1", title="T", status=["Sent"]))["data"]

        assert data["stage"] == "qualification"
        assert data["prolibu"]["status"] == ["Sent"]

    def test_stage_used_when_no_status(self):
        assert resolve_stage({"stage": "Accepted"}) == ("Accepted", "won")
        assert resolve_stage({}) == ("Draft", "qualification")


class TestResolveAmount:
    """Amount precedence: total, amount, products, workingTime, fallback."""

    def test_total_first(self):
        assert resolve_amount({"total": 10, "amount": 20}) == 10.0

    def test_amount_when_total_missing_or_not_positive(self):
        assert resolve_amount({"amount": 20}) == 20.0
        assert resolve_amount({"total": 0, "amount": 20}) == 20.0

    def test_numeric_strings_coerced(self):
        assert resolve_amount({"total": "1500.5"}) == 1500.5

    def test_products_sum(self):
        body = {"products": [{"price": 100, "quantity": 2}, {"price": "50.25", "quantity": "2"}]}
        assert resolve_amount(body) == 300.5

    def test_products_with_bad_values_count_as_zero(self):
        body = {"products": [{"price": "abc", "quantity": 2}, {"price": 10, "quantity": 3}]}
        assert resolve_amount(body) == 30.0

    def test_working_time(self):
        assert resolve_amount({"workingTime": 12}) == 1200.0

    def test_empty_products_fall_through_to_working_time(self):
        assert resolve_amount({"products": [], "workingTime": 2}) == 200.0

    def test_fallback_when_nothing_positive(self):
        assert resolve_amount({}) == FALLBACK_AMOUNT
        assert resolve_amount({"total": -5}) == FALLBACK_AMOUNT
        assert resolve_amount({"products": [{"price": 0, "quantity": 5}]}) == FALLBACK_AMOUNT

    def test_overflowing_products_fall_back(self):
        assert resolve_amount({"products": [{"price": 1e308, "quantity": 10}]}) == FALLBACK_AMOUNT

    def test_overflowing_working_time_falls_back(self):
        assert resolve_amount({"workingTime": 1e307}) == FALLBACK_AMOUNT

    def test_very_large_finite_amount_rounds(self):
        assert resolve_amount({"total": 1e300}) == 1e300

    def test_rounds_half_up_to_cents(self):
        assert resolve_amount({"total": 10.005}) == 10.01
        assert resolve_amount({"total": 2.675}) == 2.68


# ── End-to-End with the Validator ───────────────────────────────────────────


class TestDirectShape:
    """Direct proposal records become proposal.updated events."""

    def test_direct_record_validates_as_update(self):
        payload = {
            "proposalNumber": "PRO-1",
            "title": "Direct",
            "status": "Accepted",
            "amount": "2500",
        }

        envelope = validate_webhook(adapt_webhook(payload))

        assert envelope.event.value == "proposal.updated"
        assert envelope.data.proposal_id == "PRO-1"
        assert envelope.data.stage == "won"
        assert envelope.data.amount.total == 2500.0
        assert envelope.data.prolibu["status"] == "Accepted"

    def test_wrapper_create_with_products(self):
        """A create with only products yields a valid event with the computed amount."""
        payload = _wrapper(
            "create",
            proposalNumber="PRO-77",
            products=[{"price": 250, "quantity": 4}],
            status="Sent",
        )

        envelope = validate_webhook(adapt_webhook(payload))

        assert envelope.event.value == "proposal.created"
        assert envelope.data.title == "Proposal PRO-77"
        assert envelope.data.amount.total == 1000.0
        assert envelope.data.stage == "proposal"
