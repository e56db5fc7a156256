"""Tests for calendar connection and event payload models."""

from datetime import datetime, timedelta, timezone

from grooming.models.calendar import EventAttendee, EventDateTime, ExternalEventPayload

NOW = datetime(2025, 1, 7, 16, 0, tzinfo=timezone.utc)


class TestNeedsTokenRefresh:
    def test_unknown_expiry(self, connection_factory):
        assert connection_factory.make({"token_expires_at": None}).needs_token_refresh(NOW) is False

    def test_within_margin(self, connection_factory):
        connection = connection_factory.make({"token_expires_at": NOW + timedelta(minutes=4)})
        assert connection.needs_token_refresh(NOW) is True

    def test_outside_margin(self, connection_factory):
        connection = connection_factory.make({"token_expires_at": NOW + timedelta(minutes=10)})
        assert connection.needs_token_refresh(NOW) is False

    def test_naive_expiry_is_utc(self, connection_factory):
        connection = connection_factory.make({"token_expires_at": datetime(2025, 1, 7, 15, 0)})
        assert connection.needs_token_refresh(NOW) is True


def test_connection_states(connection_factory):
    paused = connection_factory.make({"state": "paused"})
    assert paused.is_paused
    assert not paused.admits_automatic_jobs
    assert connection_factory.make().admits_automatic_jobs


class TestExternalEventPayload:
    def _payload(self, **kwargs):
        return ExternalEventPayload(
            summary="Full Groom - Max (Jane Doe)",
            description="Service: Full Groom",
            start=EventDateTime(date_time="2025-01-08T10:00:00-08:00", time_zone="America/Los_Angeles"),
            end=EventDateTime(date_time="2025-01-08T11:45:00-08:00", time_zone="America/Los_Angeles"),
            **kwargs,
        )

    def test_to_api_omits_empty_fields(self):
        body = self._payload().to_api()
        assert "location" not in body
        assert "attendees" not in body
        assert "extendedProperties" not in body
        assert body["start"] == {"dateTime": "2025-01-08T10:00:00-08:00", "timeZone": "America/Los_Angeles"}

    def test_to_api_full(self):
        body = self._payload(
            location="The Puppy Day",
            attendees=[EventAttendee(email="jane@example.com", display_name="Jane Doe")],
            private_properties={"appointment_id": "appt-1"},
        ).to_api()

        assert body["attendees"] == [{"email": "jane@example.com", "displayName": "Jane Doe"}]
        assert body["extendedProperties"] == {"private": {"appointment_id": "appt-1"}}

    def test_canonical_json_is_stable(self):
        assert self._payload().canonical_json() == self._payload().canonical_json()
        assert self._payload().canonical_json().startswith('{"description"')
