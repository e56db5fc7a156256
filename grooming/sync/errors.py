"""Error taxonomy for calendar sync failures.

Every failure of a sync attempt is classified into exactly one of:

- ``RetryableTransient``: network trouble, timeouts, rate limits, 5xx and
  database outages. The orchestrator retries these with backoff until the
  attempt budget runs out.
- ``TerminalCredential``: the connection's credentials are revoked or
  unusable. The connection moves to ``error`` and needs a reconnect.
- ``TerminalResource``: the calendar or event is gone, or the appointment no
  longer exists. Surfaced to the admin for a manual resync.
- ``TerminalValidation``: the mapped payload was rejected. This points at a
  mapping bug and is never retried blindly.
"""

import logging
from typing import Optional

import httpx
import psycopg
from pydantic import ValidationError

from grooming.db.token_cipher import TokenDecryptionError
from grooming.integrations.google.calendar_client import (
    GoogleCalendarError,
    GoogleCredentialError,
)
from grooming.models.sync import ErrorClass

logger = logging.getLogger(__name__)

TRANSIENT_HTTP_CODES = frozenset({408, 423, 429, 500, 502, 503, 504})
RATE_LIMIT_REASONS = frozenset({"rateLimitExceeded", "userRateLimitExceeded"})


class CalendarSyncError(Exception):
    """Base class for classified sync failures."""

    error_class: ErrorClass = "terminal_validation"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        code: str = "SYNC_ERROR",
        status_code: Optional[int] = None,
        user_message: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.user_message = user_message or message


class RetryableTransient(CalendarSyncError):
    error_class: ErrorClass = "retryable_transient"
    retryable = True

    def __init__(self, message: str, *, retry_after: Optional[float] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class TerminalCredential(CalendarSyncError):
    error_class: ErrorClass = "terminal_credential"


class TerminalResource(CalendarSyncError):
    error_class: ErrorClass = "terminal_resource"


class TerminalValidation(CalendarSyncError):
    error_class: ErrorClass = "terminal_validation"


class InvalidCredential(Exception):
    """The provider rejected the OAuth handshake."""


class ConnectionNotFound(LookupError):
    """No calendar connection matches the request."""


class AppointmentNotFound(LookupError):
    """The booking system has no appointment with the given id."""


class ImportNotFound(LookupError):
    """No pending staged import exists for the calendar event."""


class StillFailing(Exception):
    """Resume was requested but the connection still cannot reach the calendar."""

    def __init__(self, message: str, cause: Optional[CalendarSyncError] = None):
        super().__init__(message)
        self.cause = cause


def _transient_message(status_code: int) -> str:
    return {
        408: "Request timed out. The sync will be retried automatically.",
        423: "The calendar is temporarily locked. The sync will be retried automatically.",
        429: "Rate limit reached. The sync will be retried after a short delay.",
        503: "Google Calendar is temporarily unavailable. The sync will be retried automatically.",
    }.get(
        status_code,
        "Google Calendar server error. The sync will be retried automatically.",
    )


def classify_http_error(error: GoogleCalendarError) -> CalendarSyncError:
    """Map a Google API error response onto the sync error taxonomy."""
    status_code = error.status_code
    code = f"HTTP_{status_code}"
    message = f"{error.message} (status {status_code}, reason {error.reason or 'n/a'})"

    if status_code in TRANSIENT_HTTP_CODES or status_code >= 500:
        return RetryableTransient(
            message,
            code=code,
            status_code=status_code,
            retry_after=error.retry_after,
            user_message=_transient_message(status_code),
        )

    if status_code == 403 and error.reason in RATE_LIMIT_REASONS:
        return RetryableTransient(
            message,
            code="RATE_LIMITED",
            status_code=status_code,
            retry_after=error.retry_after,
            user_message=_transient_message(429),
        )

    if status_code in (401, 403):
        return TerminalCredential(
            message,
            code=code,
            status_code=status_code,
            user_message="Google Calendar access was denied. Please reconnect your calendar.",
        )

    if status_code in (404, 410):
        return TerminalResource(
            message,
            code=code,
            status_code=status_code,
            user_message=(
                "Calendar or event not found. It may have been deleted from "
                "Google Calendar; use resync to recreate it."
            ),
        )

    return TerminalValidation(
        message,
        code=code,
        status_code=status_code,
        user_message="Google Calendar rejected the event data. Please check the appointment details.",
    )


def classify_exception(exc: BaseException) -> CalendarSyncError:
    """Classify any exception raised during a sync attempt."""
    if isinstance(exc, CalendarSyncError):
        return exc

    if isinstance(exc, (ConnectionNotFound, AppointmentNotFound)):
        return TerminalResource(
            str(exc),
            code="NOT_FOUND",
            user_message="The appointment or calendar connection no longer exists.",
        )

    if isinstance(exc, GoogleCredentialError):
        if exc.transient:
            return RetryableTransient(
                f"Token refresh failed: {exc}",
                code="TOKEN_REFRESH_FAILED",
                user_message="Could not refresh the calendar credentials. The sync will be retried automatically.",
            )
        return TerminalCredential(
            str(exc),
            code="CREDENTIAL_REVOKED",
            user_message="Google Calendar access was revoked. Please reconnect your calendar.",
        )

    if isinstance(exc, GoogleCalendarError):
        return classify_http_error(exc)

    if isinstance(exc, httpx.TimeoutException):
        return RetryableTransient(
            f"Request timed out: {exc}",
            code="TIMEOUT",
            user_message="Request timed out. The sync will be retried automatically.",
        )

    if isinstance(exc, httpx.TransportError):
        return RetryableTransient(
            f"Network error: {type(exc).__name__}: {exc}",
            code="NETWORK_ERROR",
            user_message="Network connection issue. The sync will be retried automatically.",
        )

    if isinstance(exc, psycopg.OperationalError):
        return RetryableTransient(
            f"Database unavailable: {type(exc).__name__}: {exc}",
            code="DB_UNAVAILABLE",
            user_message="The sync database is temporarily unavailable. The sync will be retried automatically.",
        )

    if isinstance(exc, TokenDecryptionError):
        return TerminalCredential(
            str(exc),
            code="TOKEN_UNREADABLE",
            user_message="The stored calendar credentials could not be read. Please reconnect your calendar.",
        )

    if isinstance(exc, ValidationError):
        return TerminalValidation(
            f"Invalid event data: {exc}",
            code="VALIDATION_ERROR",
            user_message="The event data could not be mapped. Please check the appointment details.",
        )

    logger.error(
        f"Unclassified sync error treated as terminal: "
        f"exception_type={type(exc).__name__}, error={exc}"
    )
    return TerminalValidation(
        f"{type(exc).__name__}: {exc}",
        code="UNEXPECTED_ERROR",
        user_message="An unexpected error occurred. Please check the connection settings or contact support.",
    )
