"""Tests for classifying sync failures."""

import httpx
import psycopg
import pytest
from pydantic import BaseModel, ValidationError

from grooming.integrations.google.calendar_client import (
    GoogleCalendarError,
    GoogleCredentialError,
)
from grooming.db.token_cipher import TokenDecryptionError
from grooming.sync.errors import (
    AppointmentNotFound,
    ConnectionNotFound,
    RetryableTransient,
    TerminalCredential,
    TerminalResource,
    TerminalValidation,
    classify_exception,
    classify_http_error,
)


class TestClassifyHttpError:
    @pytest.mark.parametrize("status_code", [408, 423, 429, 500, 502, 503, 504, 599])
    def test_transient_statuses(self, status_code):
        error = classify_http_error(GoogleCalendarError(status_code, "boom"))

        assert isinstance(error, RetryableTransient)
        assert error.retryable
        assert error.error_class == "retryable_transient"
        assert error.code == f"HTTP_{status_code}"

    def test_retry_after_is_carried(self):
        error = classify_http_error(GoogleCalendarError(429, "slow down", retry_after=30))
        assert error.retry_after == 30

    @pytest.mark.parametrize("reason", ["rateLimitExceeded", "userRateLimitExceeded"])
    def test_403_rate_limit_is_transient(self, reason):
        error = classify_http_error(GoogleCalendarError(403, "Rate Limit Exceeded", reason=reason))

        assert isinstance(error, RetryableTransient)
        assert error.code == "RATE_LIMITED"

    @pytest.mark.parametrize("status_code", [401, 403])
    def test_auth_failures_are_credential_errors(self, status_code):
        error = classify_http_error(GoogleCalendarError(status_code, "Forbidden", reason="forbidden"))

        assert isinstance(error, TerminalCredential)
        assert not error.retryable
        assert "reconnect" in error.user_message

    @pytest.mark.parametrize("status_code", [404, 410])
    def test_missing_resources(self, status_code):
        error = classify_http_error(GoogleCalendarError(status_code, "Not Found"))

        assert isinstance(error, TerminalResource)
        assert "resync" in error.user_message

    @pytest.mark.parametrize("status_code", [400, 409, 412])
    def test_other_client_errors_are_validation(self, status_code):
        error = classify_http_error(GoogleCalendarError(status_code, "Bad Request"))

        assert isinstance(error, TerminalValidation)
        assert error.status_code == status_code


class TestClassifyException:
    def test_classified_errors_pass_through(self):
        original = TerminalResource("gone", code="GONE")
        assert classify_exception(original) is original

    def test_timeout(self):
        error = classify_exception(httpx.ReadTimeout("timed out"))
        assert isinstance(error, RetryableTransient)
        assert error.code == "TIMEOUT"

    def test_network_error(self):
        error = classify_exception(httpx.ConnectError("connection refused"))
        assert isinstance(error, RetryableTransient)
        assert error.code == "NETWORK_ERROR"

    def test_revoked_refresh_token(self):
        error = classify_exception(GoogleCredentialError("Refresh token expired or revoked."))
        assert isinstance(error, TerminalCredential)
        assert error.code == "CREDENTIAL_REVOKED"

    def test_transient_refresh_failure(self):
        error = classify_exception(GoogleCredentialError("Token refresh failed", transient=True))
        assert isinstance(error, RetryableTransient)
        assert error.code == "TOKEN_REFRESH_FAILED"

    @pytest.mark.parametrize(
        "exc", [ConnectionNotFound("no connection"), AppointmentNotFound("no appointment")]
    )
    def test_missing_records(self, exc):
        error = classify_exception(exc)
        assert isinstance(error, TerminalResource)
        assert error.code == "NOT_FOUND"

    def test_database_outage_is_transient(self):
        error = classify_exception(psycopg.OperationalError("connection to server failed"))

        assert isinstance(error, RetryableTransient)
        assert error.code == "DB_UNAVAILABLE"
        assert "connection to server failed" in error.message
        assert "temporarily unavailable" in error.user_message

    def test_unreadable_token_needs_reconnect(self):
        error = classify_exception(TokenDecryptionError("bad key"))

        assert isinstance(error, TerminalCredential)
        assert error.code == "TOKEN_UNREADABLE"
        assert "reconnect" in error.user_message

    def test_pydantic_validation(self):
        class Strict(BaseModel):
            count: int

        with pytest.raises(ValidationError) as exc_info:
            Strict(count="many")

        error = classify_exception(exc_info.value)
        assert isinstance(error, TerminalValidation)
        assert error.code == "VALIDATION_ERROR"

    def test_unexpected_errors_are_terminal(self, caplog):
        error = classify_exception(KeyError("id"))

        assert isinstance(error, TerminalValidation)
        assert error.code == "UNEXPECTED_ERROR"
        assert "KeyError" in error.message
        assert "Unclassified sync error" in caplog.text
