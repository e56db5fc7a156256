"""Tests for Google OAuth helpers."""

from unittest.mock import AsyncMock, Mock, patch

import httpx
import pytest
from fastapi import HTTPException

from grooming.integrations.google.auth import (
    GoogleToken,
    build_oauth_authorize_url,
    callback_redirect_uri,
    exchange_code_for_token,
    fetch_primary_calendar,
    revoke_token,
)
from grooming.integrations.google.calendar_client import GoogleCalendarError


def test_build_oauth_authorize_url():
    """Test building the Google OAuth authorization URL."""
    url = build_oauth_authorize_url("https://examplecallback.com")
    assert "https://accounts.google.com/o/oauth2/v2/auth" in url
    assert "client_id=test_client_id" in url
    assert "redirect_uri=https%3A%2F%2Fexamplecallback.com" in url
    assert "scope=https%3A%2F%2Fwww.googleapis.com%2Fauth%2Fcalendar" in url
    assert "access_type=offline" in url
    assert "prompt=consent" in url
    assert "state=" not in url


def test_build_oauth_authorize_url_with_state():
    url = build_oauth_authorize_url("https://examplecallback.com", state="signed-state")
    assert "state=signed-state" in url


def test_build_oauth_authorize_url_missing_client_id(monkeypatch):
    monkeypatch.setattr("grooming.integrations.google.auth.GOOGLE_CLIENT_ID", "")
    with pytest.raises(ValueError, match="GOOGLE_CLIENT_ID"):
        build_oauth_authorize_url("https://examplecallback.com")


def test_callback_redirect_uri():
    assert callback_redirect_uri() == "https://api.example.com/calendar/connection/callback"


@pytest.mark.asyncio
async def test_exchange_code_for_token_success():
    """Test a successful code exchange."""
    mock_response = Mock()
    mock_response.status_code = 200
    mock_response.json.return_value = {
        "access_token": "test_access_token",
        "refresh_token": "test_refresh_token",
        "expires_in": 3600,
        "scope": "https://www.googleapis.com/auth/calendar",
    }

    with patch("httpx.AsyncClient") as mock_client:
        mock_client_instance = AsyncMock()
        mock_client.return_value.__aenter__.return_value = mock_client_instance
        mock_client_instance.post.return_value = mock_response

        token = await exchange_code_for_token("test_code")

    assert isinstance(token, GoogleToken)
    assert token.refresh_token == "test_refresh_token"
    assert token.token_type == "Bearer"
    assert token.expires_at_datetime() is not None
    sent = mock_client_instance.post.call_args[1]["data"]
    assert sent["code"] == "test_code"
    assert sent["redirect_uri"] == "https://api.example.com/calendar/connection/callback"


@pytest.mark.asyncio
async def test_exchange_code_for_token_failure():
    mock_response = Mock()
    mock_response.status_code = 400
    mock_response.text = "invalid_grant"

    with patch("httpx.AsyncClient") as mock_client:
        mock_client_instance = AsyncMock()
        mock_client.return_value.__aenter__.return_value = mock_client_instance
        mock_client_instance.post.return_value = mock_response

        with pytest.raises(HTTPException) as exc_info:
            await exchange_code_for_token("bad_code")

    assert exc_info.value.status_code == 502


@pytest.mark.asyncio
async def test_exchange_code_not_configured(monkeypatch):
    monkeypatch.setattr("grooming.integrations.google.auth.GOOGLE_CLIENT_SECRET", "")
    with pytest.raises(HTTPException) as exc_info:
        await exchange_code_for_token("test_code")
    assert exc_info.value.status_code == 503


def test_token_without_expiry():
    assert GoogleToken(access_token="a").expires_at_datetime() is None


@patch("httpx.Client")
def test_fetch_primary_calendar(mock_client):
    mock_client_instance = Mock()
    mock_client.return_value.__enter__.return_value = mock_client_instance
    mock_client_instance.get.return_value = httpx.Response(
        200, json={"id": "owner@thepuppyday.com", "summary": "The Puppy Day"}
    )

    calendar = fetch_primary_calendar("access-1")

    assert calendar["id"] == "owner@thepuppyday.com"
    headers = mock_client_instance.get.call_args[1]["headers"]
    assert headers == {"Authorization": "Bearer access-1"}


@patch("httpx.Client")
def test_fetch_primary_calendar_rejected(mock_client):
    mock_client_instance = Mock()
    mock_client.return_value.__enter__.return_value = mock_client_instance
    mock_client_instance.get.return_value = httpx.Response(
        401, json={"error": {"message": "Invalid Credentials"}}
    )

    with pytest.raises(GoogleCalendarError) as exc_info:
        fetch_primary_calendar("bad")

    assert exc_info.value.status_code == 401


@patch("httpx.Client")
def test_revoke_token(mock_client):
    mock_client_instance = Mock()
    mock_client.return_value.__enter__.return_value = mock_client_instance
    mock_client_instance.post.return_value = httpx.Response(200)

    assert revoke_token("refresh-1") is True
    assert mock_client_instance.post.call_args[1]["data"] == {"token": "refresh-1"}

    mock_client_instance.post.return_value = httpx.Response(400, text="invalid_token")
    assert revoke_token("refresh-1") is False
