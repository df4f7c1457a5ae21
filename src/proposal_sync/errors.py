"""Error taxonomy for proposal sync.

Every error raised by the core carries a stable ``code`` so the HTTP boundary
(src/proposal_sync/api/errors.py) can pick a response without parsing message
text. Groups:

- Input/business errors: InvalidInputError, UnmappedStageError, ValidationError
- Adapter (payload shape) errors: UnsupportedActionError, MissingIdentifierError
- Remote store errors: RemoteError and its categories (auth, permission,
  rate limit, field validation, duplicate, connectivity, unknown)

Business errors are permanent until the caller fixes the input. Only remote
connectivity and rate-limit errors are ``retryable``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


class SyncError(Exception):
    """Base class for every error raised by the proposal sync core."""

    code: str = "sync_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidInputError(SyncError, ValueError):
    """Raised when a primitive argument is malformed (empty, wrong type, None)."""

    code = "invalid_input"


class UnmappedStageError(SyncError, LookupError):
    """Raised when a source stage has no entry in the stage mapping table."""

    code = "unmapped_stage"

    def __init__(self, stage: str, normalized: str, valid_stages: list[str]) -> None:
        self.stage = stage
        self.normalized = normalized
        super().__init__(
            f'Prolibu stage "{stage}" has no mapping defined. '
            f"Valid stages: {', '.join(valid_stages)}"
        )


# ── Adapter Errors ──────────────────────────────────────────────────────────


class AdapterError(SyncError):
    """Raised when a recognized Prolibu payload cannot be normalized."""

    code = "invalid_prolibu_webhook"


class UnsupportedActionError(AdapterError):
    """Raised when a wrapper payload carries an action with no event mapping."""

    code = "unsupported_action"

    def __init__(self, action: Any) -> None:
        self.action = action
        super().__init__(f"Unsupported action: {action}")


class MissingIdentifierError(AdapterError):
    """Raised when a Prolibu payload has neither proposalNumber nor id."""

    code = "missing_identifier"


# ── Validation Errors ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class FieldIssue:
    """One violated field rule: dotted path, human-readable reason, rule type."""

    field: str
    message: str
    type: str = "invalid"

    def as_dict(self) -> dict[str, str]:
        return {"field": self.field, "message": self.message, "type": self.type}


class ValidationError(SyncError, ValueError):
    """Raised when a canonical event violates its schema.

    Carries every violation found, not only the first one.
    """

    code = "validation_error"

    def __init__(self, issues: list[FieldIssue], message: str | None = None) -> None:
        self.issues = list(issues)
        if message is None:
            summary = "; ".join(f"{i.field}: {i.message}" for i in self.issues)
            message = f"Invalid event data ({summary})" if summary else "Invalid event data"
        super().__init__(message)

    @property
    def fields(self) -> list[str]:
        return [issue.field for issue in self.issues]


# ── Remote Store Errors ─────────────────────────────────────────────────────


class RemoteError(SyncError):
    """Base class for categorized remote record store failures.

    Args:
        message: Human-readable description.
        error_code: Error code reported by the remote system, if any.
    """

    code = "remote_error"
    category = "unknown"
    retryable = False

    def __init__(self, message: str, error_code: str | None = None) -> None:
        self.error_code = error_code
        super().__init__(message)


class RemoteAuthError(RemoteError):
    """Credentials rejected or missing."""

    code = "salesforce_auth_error"
    category = "auth"


class RemoteSessionExpiredError(RemoteAuthError):
    """The live session is no longer valid and must be re-established."""

    code = "salesforce_session_expired"


class RemotePermissionError(RemoteError):
    """Authenticated user lacks access to the object or field."""

    code = "salesforce_permission_error"
    category = "permission"


class RemoteRateLimitError(RemoteError):
    """API request limit exceeded."""

    code = "salesforce_rate_limit"
    category = "rate_limit"
    retryable = True


class RemoteValidationError(RemoteError):
    """The remote store rejected field values."""

    code = "salesforce_validation_error"
    category = "validation"


class RemoteDuplicateError(RemoteError):
    """A record with the same unique external id already exists."""

    code = "salesforce_duplicate_error"
    category = "duplicate"


class RemoteConnectivityError(RemoteError):
    """Network failure or remote unavailable."""

    code = "salesforce_connection_error"
    category = "connectivity"
    retryable = True


class UnknownRemoteError(RemoteError):
    """Remote failure that fits no other category."""

    code = "salesforce_error"


# ── Retry Policy ────────────────────────────────────────────────────────────

RATE_LIMIT_DELAY_SECONDS = 30
RATE_LIMIT_MAX_DELAY_SECONDS = 300
BACKOFF_MAX_DELAY_SECONDS = 30


def is_retryable(error: BaseException) -> bool:
    """Return True if a failed remote call may be attempted again."""
    return isinstance(error, RemoteError) and error.retryable


def retry_delay(error: BaseException, attempt: int = 1) -> float:
    """Seconds to wait before retry ``attempt`` (1-based) after ``error``.

    Rate limits back off linearly in 30s steps up to 5 minutes; everything
    else backs off exponentially from 1s up to 30s.
    """
    attempt = max(attempt, 1)
    if isinstance(error, RemoteRateLimitError):
        return float(min(RATE_LIMIT_DELAY_SECONDS * attempt, RATE_LIMIT_MAX_DELAY_SECONDS))
    return float(min(2 ** (attempt - 1), BACKOFF_MAX_DELAY_SECONDS))
