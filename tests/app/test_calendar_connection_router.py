"""Tests for the calendar connection routes."""

from unittest.mock import AsyncMock, patch
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient

from grooming.app.oauth import create_oauth_state, decode_oauth_state
from grooming.integrations.google.auth import GoogleToken
from grooming.integrations.google.calendar_client import GoogleCalendarError
from tests._fakes import build_world


@pytest.fixture
def unconnected(app):
    world = build_world()
    app.state.sync_engine = world.engine
    return world


class TestGetConnection:
    def test_connected(self, staff_client: TestClient):
        response = staff_client.get("/calendar/connection")

        assert response.status_code == 200
        data = response.json()
        assert data["connected"] is True
        assert data["connection"]["calendar_email"] == "owner@thepuppyday.com"
        assert "access_token" not in data["connection"]
        assert "refresh_token" not in data["connection"]

    def test_not_connected(self, staff_client: TestClient, unconnected):
        response = staff_client.get("/calendar/connection")
        assert response.json() == {"connected": False, "connection": None}


class TestAuthorize:
    def test_authorize_url_carries_signed_state(self, admin_client: TestClient):
        response = admin_client.get("/calendar/connection/authorize")

        assert response.status_code == 200
        url = response.json()["authorization_url"]
        query = parse_qs(urlparse(url).query)
        assert query["redirect_uri"] == ["https://api.example.com/calendar/connection/callback"]
        assert query["access_type"] == ["offline"]
        assert decode_oauth_state(query["state"][0]) == "00000000-0000-0000-0000-000000000001"


class TestCallback:
    """Test the Google OAuth callback."""

    def _callback(self, client, **params):
        return client.get("/calendar/connection/callback", params=params, follow_redirects=False)

    def test_successful_connection(self, client: TestClient, world):
        token = GoogleToken(access_token="access-2", refresh_token="refresh-2", expires_in=3600)
        with patch(
            "grooming.integrations.google.auth.exchange_code_for_token",
            new=AsyncMock(return_value=token),
        ) as mock_exchange:
            response = self._callback(client, code="auth-code", state=create_oauth_state("admin-1"))

        mock_exchange.assert_awaited_once_with("auth-code")
        assert response.status_code == 307
        assert response.headers["location"] == (
            "https://dashboard.example.com/admin/settings/calendar?connected=true"
        )
        connection = world.connection
        assert connection.access_token == "access-2"
        assert connection.webhook_channel_id is not None
        assert world.verified_tokens == ["access-2"]

    def test_missing_refresh_token_redirects_with_error(self, client: TestClient, world):
        token = GoogleToken(access_token="access-2")
        with patch(
            "grooming.integrations.google.auth.exchange_code_for_token",
            new=AsyncMock(return_value=token),
        ):
            response = self._callback(client, code="auth-code", state=create_oauth_state("admin-1"))

        assert response.status_code == 307
        assert "error=" in response.headers["location"]
        assert world.connection.access_token == "test_access_token"

    def test_google_error_redirects(self, client: TestClient):
        response = self._callback(client, error="access_denied")

        assert response.status_code == 307
        assert response.headers["location"].endswith("?error=access_denied")

    def test_invalid_state(self, client: TestClient):
        response = self._callback(client, code="auth-code", state="forged")
        assert response.status_code == 400

    def test_missing_code(self, client: TestClient):
        response = self._callback(client, state=create_oauth_state("admin-1"))
        assert response.status_code == 400


class TestDisconnect:
    def test_disconnect(self, admin_client: TestClient, world):
        response = admin_client.delete("/calendar/connection")

        assert response.status_code == 204
        assert world.connection is None
        assert world.sync_log.entries[-1].operation == "disconnect"

    def test_disconnect_without_connection(self, admin_client: TestClient, unconnected):
        assert admin_client.delete("/calendar/connection").status_code == 404


class TestCalendars:
    def test_list_calendars(self, admin_client: TestClient):
        response = admin_client.get("/calendar/connection/calendars")

        assert response.status_code == 200
        assert response.json() == [
            {"id": "owner@thepuppyday.com", "name": "The Puppy Day", "primary": True, "access_role": "owner"},
            {
                "id": "groomers@group.calendar.google.com",
                "name": "Groomers",
                "primary": False,
                "access_role": "writer",
            },
        ]

    def test_list_calendars_google_error(self, admin_client: TestClient, world):
        world.calendar.fail("list_calendars", GoogleCalendarError(500, "Backend Error"))

        response = admin_client.get("/calendar/connection/calendars")

        assert response.status_code == 502
        assert "Backend Error" in response.json()["detail"]

    def test_select_calendar(self, admin_client: TestClient, world):
        response = admin_client.put(
            "/calendar/connection/calendar",
            json={"calendar_id": "groomers@group.calendar.google.com", "calendar_name": "Groomers"},
        )

        assert response.status_code == 200
        assert response.json()["calendar_id"] == "groomers@group.calendar.google.com"
        assert world.connection.is_primary_calendar is False
        assert world.connection.webhook_channel_id is not None
