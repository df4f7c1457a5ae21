"""Salesforce record store -- Opportunity upserts via simple-salesforce.

Implements RecordStore over the Salesforce REST API.

Key implementation details:
- One lazily created session per store, guarded by an asyncio.Lock
- simple-salesforce is synchronous; every SDK call runs in asyncio.to_thread()
- connect() retries only retryable failures (connectivity, rate limit) with
  tenacity, waiting retry_delay() between attempts
- An operation that hits an expired session drops it, reconnects and runs
  again (bounded attempts, fixed delay)
- Every SDK failure is translated by categorize_salesforce_error()
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import requests
import structlog
from simple_salesforce import Salesforce, format_soql
from simple_salesforce.exceptions import (
    SalesforceAuthenticationFailed,
    SalesforceError,
    SalesforceExpiredSession,
    SalesforceMalformedRequest,
    SalesforceRefusedRequest,
)
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from src.proposal_sync.config import Settings
from src.proposal_sync.core.monitoring import record_remote_error
from src.proposal_sync.crm.adapter import RecordStore
from src.proposal_sync.crm.field_mapping import (
    DEFAULT_EXTERNAL_ID_FIELD,
    from_salesforce_record,
    select_fields,
    to_salesforce_fields,
)
from src.proposal_sync.crm.schemas import RemoteRecord, SessionInfo, StoreHealth, StoreStatus
from src.proposal_sync.errors import (
    RemoteAuthError,
    RemoteConnectivityError,
    RemoteDuplicateError,
    RemoteError,
    RemotePermissionError,
    RemoteRateLimitError,
    RemoteSessionExpiredError,
    RemoteValidationError,
    UnknownRemoteError,
    is_retryable,
    retry_delay,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

SOBJECT = "Opportunity"


# ── Error Categorization ────────────────────────────────────────────────────

_VALIDATION_CODES = frozenset({
    "REQUIRED_FIELD_MISSING",
    "FIELD_CUSTOM_VALIDATION_EXCEPTION",
    "INVALID_FIELD",
    "INVALID_FIELD_FOR_INSERT_UPDATE",
    "INVALID_OR_NULL_FOR_RESTRICTED_PICKLIST",
    "INVALID_TYPE",
    "MALFORMED_QUERY",
    "MALFORMED_ID",
    "STRING_TOO_LONG",
    "JSON_PARSER_ERROR",
})

_DUPLICATE_CODES = frozenset({"DUPLICATE_VALUE", "DUPLICATES_DETECTED", "DUPLICATE_EXTERNAL_ID"})

_AUTH_CODES = frozenset({"INVALID_LOGIN", "INVALID_AUTH_HEADER", "INVALID_CLIENT", "INVALID_GRANT"})


def _first_error(content: Any) -> tuple[str | None, str | None]:
    """Extract (errorCode, message) from a Salesforce REST error body."""
    if isinstance(content, list) and content and isinstance(content[0], dict):
        return content[0].get("errorCode"), content[0].get("message")
    if isinstance(content, dict):
        return content.get("errorCode") or content.get("error"), content.get("message")
    return None, None


def categorize_salesforce_error(exc: BaseException) -> RemoteError:
    """Translate a simple-salesforce or requests exception into a RemoteError.

    Args:
        exc: Exception raised by an SDK call.

    Returns:
        The RemoteError subclass for its category. RemoteErrors pass through.
    """
    if isinstance(exc, RemoteError):
        return exc

    if isinstance(exc, (requests.exceptions.ConnectionError, requests.exceptions.Timeout)):
        return RemoteConnectivityError(f"Salesforce unreachable: {exc}")

    if isinstance(exc, SalesforceAuthenticationFailed):
        code = getattr(exc, "code", None)
        message = getattr(exc, "message", None) or str(exc)
        if code == "REQUEST_LIMIT_EXCEEDED":
            return RemoteRateLimitError(message, error_code=code)
        return RemoteAuthError(message, error_code=code or "INVALID_LOGIN")

    if isinstance(exc, SalesforceError):
        code, message = _first_error(exc.content)
        message = message or str(exc)

        if isinstance(exc, SalesforceExpiredSession) or code == "INVALID_SESSION_ID":
            return RemoteSessionExpiredError(message, error_code=code or "INVALID_SESSION_ID")
        if code in _AUTH_CODES:
            return RemoteAuthError(message, error_code=code)
        if code and code.startswith("INSUFFICIENT_ACCESS"):
            return RemotePermissionError(message, error_code=code)
        if code == "REQUEST_LIMIT_EXCEEDED":
            return RemoteRateLimitError(message, error_code=code)
        if code in _DUPLICATE_CODES:
            return RemoteDuplicateError(message, error_code=code)
        if code in _VALIDATION_CODES:
            return RemoteValidationError(message, error_code=code)
        if isinstance(exc, SalesforceRefusedRequest):
            return RemotePermissionError(message, error_code=code)
        if isinstance(exc, SalesforceMalformedRequest):
            return RemoteValidationError(message, error_code=code)
        if getattr(exc, "status", None) in (502, 503, 504):
            return RemoteConnectivityError(message, error_code=code)
        return UnknownRemoteError(message, error_code=code)

    return UnknownRemoteError(f"Unexpected Salesforce error: {exc}")


def _wait_retry_delay(retry_state: RetryCallState) -> float:
    """tenacity wait strategy delegating to retry_delay()."""
    error = retry_state.outcome.exception() if retry_state.outcome else None
    if error is None:
        return 0.0
    return retry_delay(error, retry_state.attempt_number)


# ── Store ───────────────────────────────────────────────────────────────────


class SalesforceStore(RecordStore):
    """Salesforce Opportunity store.

    Args:
        username: Salesforce username.
        password: Salesforce password.
        security_token: Security token appended to the password at login.
        domain: "login" for production orgs, "test" for sandboxes.
        external_id_field: API name of the custom external-id field.
        api_version: REST API version, or None for the SDK default.
        connect_max_retries: Attempts for connect() on retryable failures.
        operation_max_attempts: Attempts per operation when the session expires.
        operation_retry_delay: Seconds between those attempts.
        client_factory: Builds the SDK client; defaults to simple_salesforce.Salesforce.
        sleep: Async sleep used between retries.
    """

    def __init__(
        self,
        username: str,
        password: str,
        security_token: str,
        domain: str = "login",
        external_id_field: str = DEFAULT_EXTERNAL_ID_FIELD,
        api_version: str | None = None,
        connect_max_retries: int = 3,
        operation_max_attempts: int = 2,
        operation_retry_delay: float = 1.0,
        client_factory: Callable[..., Any] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._credentials = {
            "SF_USERNAME": username,
            "SF_PASSWORD": password,
            "SF_SECURITY_TOKEN": security_token,
        }
        self._domain = domain
        self._external_id_field = external_id_field
        self._api_version = api_version or None
        self._connect_max_retries = max(connect_max_retries, 1)
        self._operation_max_attempts = max(operation_max_attempts, 1)
        self._operation_retry_delay = operation_retry_delay
        self._client_factory = client_factory or Salesforce
        self._sleep = sleep

        self._client: Any = None
        self._session: SessionInfo | None = None
        self._lock = asyncio.Lock()
        self._connect_attempts = 0
        self._last_error: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> SalesforceStore:
        return cls(
            username=settings.SF_USERNAME,
            password=settings.SF_PASSWORD,
            security_token=settings.SF_SECURITY_TOKEN,
            domain=settings.SF_LOGIN_DOMAIN,
            external_id_field=settings.SF_EXTERNAL_ID_FIELD,
            api_version=settings.SF_API_VERSION or None,
            connect_max_retries=settings.SF_CONNECT_MAX_RETRIES,
            operation_max_attempts=settings.SF_OPERATION_MAX_ATTEMPTS,
            operation_retry_delay=settings.SF_OPERATION_RETRY_DELAY,
        )

    @property
    def external_id_field(self) -> str:
        return self._external_id_field

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    def missing_credentials(self) -> list[str]:
        return [name for name, value in self._credentials.items() if not value]

    # ── Session Management ──────────────────────────────────────────────────

    def _login(self) -> Any:
        kwargs: dict[str, Any] = {
            "username": self._credentials["SF_USERNAME"],
            "password": self._credentials["SF_PASSWORD"],
            "security_token": self._credentials["SF_SECURITY_TOKEN"],
            "domain": self._domain,
        }
        if self._api_version:
            kwargs["version"] = self._api_version
        try:
            return self._client_factory(**kwargs)
        except Exception as exc:
            raise categorize_salesforce_error(exc) from exc

    async def _connect_locked(self) -> SessionInfo:
        missing = self.missing_credentials()
        if missing:
            self._last_error = f"Salesforce credentials not configured: {', '.join(missing)}"
            raise RemoteAuthError(self._last_error, error_code="MISSING_CREDENTIALS")

        def _before_sleep(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "salesforce.connect_retry",
                attempt=retry_state.attempt_number,
                max_attempts=self._connect_max_retries,
                error=str(error),
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._connect_max_retries),
            wait=_wait_retry_delay,
            retry=retry_if_exception(is_retryable),
            before_sleep=_before_sleep,
            sleep=self._sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    self._connect_attempts += 1
                    client = await asyncio.to_thread(self._login)
        except RemoteError as exc:
            self._last_error = exc.message
            record_remote_error(exc.category)
            logger.error(
                "salesforce.connect_failed",
                error=exc.message,
                error_code=exc.error_code,
                category=exc.category,
            )
            raise

        session_id = getattr(client, "session_id", None) or ""
        self._client = client
        self._last_error = None
        self._session = SessionInfo(
            instance_url=f"https://{getattr(client, 'sf_instance', '')}",
            api_version=getattr(client, "sf_version", None),
            session_id_suffix=session_id[-6:] or None,
        )
        logger.info(
            "salesforce.connected",
            instance_url=self._session.instance_url,
            api_version=self._session.api_version,
        )
        return self._session

    async def connect(self) -> SessionInfo:
        """Establish a session, reusing the live one if present.

        Raises:
            RemoteAuthError: Missing or rejected credentials (not retried).
            RemoteConnectivityError: Still unreachable after the retry budget.
        """
        async with self._lock:
            if self._client is not None and self._session is not None:
                return self._session
            return await self._connect_locked()

    async def disconnect(self) -> None:
        async with self._lock:
            if self._client is not None:
                logger.info("salesforce.disconnected")
            self._client = None
            self._session = None
            self._connect_attempts = 0

    async def _invalidate(self, client: Any) -> None:
        """Drop the session if it is still the one that failed."""
        async with self._lock:
            if self._client is client:
                self._client = None
                self._session = None

    async def _ensure_client(self) -> Any:
        await self.connect()
        return self._client

    async def _run(self, operation: str, func: Callable[[Any], T]) -> T:
        """Run a blocking SDK call, reconnecting once per expired session."""

        def _before_sleep(retry_state: RetryCallState) -> None:
            logger.warning(
                "salesforce.session_expired",
                operation=operation,
                attempt=retry_state.attempt_number,
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._operation_max_attempts),
            wait=wait_fixed(self._operation_retry_delay),
            retry=retry_if_exception_type(RemoteSessionExpiredError),
            before_sleep=_before_sleep,
            sleep=self._sleep,
            reraise=True,
        )

        async for attempt in retrying:
            with attempt:
                client = await self._ensure_client()
                try:
                    return await asyncio.to_thread(func, client)
                except Exception as exc:
                    error = categorize_salesforce_error(exc)
                    record_remote_error(error.category)
                    logger.warning(
                        "salesforce.operation_failed",
                        operation=operation,
                        error=error.message,
                        error_code=error.error_code,
                        category=error.category,
                    )
                    if isinstance(error, RemoteSessionExpiredError):
                        await self._invalidate(client)
                    raise error from exc

        raise AssertionError("unreachable")  # pragma: no cover

    # ── Record Operations ───────────────────────────────────────────────────

    async def find_by_external_id(self, external_id: str) -> RemoteRecord | None:
        """Fetch the Opportunity whose external-id field equals external_id."""
        fields = ", ".join(select_fields(self._external_id_field))
        soql = format_soql(
            f"SELECT {fields} FROM {SOBJECT} WHERE {self._external_id_field} = {{}} LIMIT 1",
            external_id,
        )

        result = await self._run("find_by_external_id", lambda client: client.query(soql))

        records = result.get("records") or []
        if not records:
            logger.info("salesforce.record_not_found", external_id=external_id)
            return None

        record = from_salesforce_record(records[0], self._external_id_field)
        logger.info("salesforce.record_found", external_id=external_id, record_id=record.id)
        return record

    async def create(self, fields: dict[str, Any]) -> str:
        """Create an Opportunity and return its id.

        Raises:
            RemoteDuplicateError: The external id is already taken.
        """
        payload = to_salesforce_fields(fields, self._external_id_field)

        result = await self._run(
            "create",
            lambda client: getattr(client, SOBJECT).create(payload),
        )

        if not result.get("success", True) or not result.get("id"):
            code, message = _first_error(result.get("errors"))
            raise UnknownRemoteError(
                message or f"Salesforce create failed: {result.get('errors')}",
                error_code=code,
            )

        logger.info(
            "salesforce.record_created",
            record_id=result["id"],
            external_id=fields.get("external_id"),
            stage=payload.get("StageName"),
        )
        return result["id"]

    async def update_by_id(self, record_id: str, fields: dict[str, Any]) -> str:
        """Update an Opportunity by id and return the id."""
        payload = to_salesforce_fields(fields, self._external_id_field)

        await self._run(
            "update_by_id",
            lambda client: getattr(client, SOBJECT).update(record_id, payload),
        )

        logger.info("salesforce.record_updated", record_id=record_id, fields=sorted(payload))
        return record_id

    async def health(self) -> StoreHealth:
        """Ping the org with a trivial query. Never raises; reports DISCONNECTED without a session."""
        if self._client is None:
            return StoreHealth(
                status=StoreStatus.DISCONNECTED,
                last_error=self._last_error or "No connection established",
                connect_attempts=self._connect_attempts,
            )

        try:
            result = await self._run(
                "health",
                lambda client: client.query("SELECT Id, Name FROM Organization LIMIT 1"),
            )
        except RemoteError as exc:
            return StoreHealth(
                status=StoreStatus.ERROR,
                last_error=exc.message,
                connect_attempts=self._connect_attempts,
            )

        records = result.get("records") or [{}]
        session = self._session
        return StoreHealth(
            status=StoreStatus.CONNECTED,
            instance_url=session.instance_url if session else None,
            api_version=session.api_version if session else None,
            organization_name=records[0].get("Name"),
            connect_attempts=self._connect_attempts,
        )

    async def check_field(self, field_name: str | None = None) -> bool:
        """Return True if field_name (default: the external-id field) exists on Opportunity."""
        field_name = field_name or self._external_id_field
        description = await self._run("describe", lambda client: getattr(client, SOBJECT).describe())
        return any(field.get("name") == field_name for field in description.get("fields", []))
