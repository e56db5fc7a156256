"""Tests for event mapping database operations."""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from grooming.db.event_mappings import (
    delete_by_appointment,
    delete_by_event,
    get_by_appointment,
    get_by_event,
    get_by_fingerprint,
    insert_mapping,
    touch_mapping,
)
from grooming.models.calendar import EventMapping

SYNCED_AT = datetime(2025, 1, 7, 16, 0, tzinfo=timezone.utc)
ROW = ("fp-abc123", "evt-1", "conn-1", "appt-1", "push", SYNCED_AT)


@pytest.fixture
def mock_cursor():
    with patch("grooming.db.event_mappings.get_db_cursor") as mock_get_cursor:
        cursor = MagicMock()
        mock_get_cursor.return_value.__enter__.return_value = cursor
        yield cursor


class TestLookups:
    """Test the three unique-key lookups."""

    @pytest.mark.parametrize(
        "lookup, column, value",
        [
            (get_by_fingerprint, "fingerprint", "fp-abc123"),
            (get_by_appointment, "appointment_id", "appt-1"),
            (get_by_event, "external_event_id", "evt-1"),
        ],
    )
    def test_lookup_by_key(self, mock_cursor, lookup, column, value):
        mock_cursor.fetchone.return_value = ROW

        mapping = lookup(value)

        assert mapping == EventMapping(
            fingerprint="fp-abc123",
            external_event_id="evt-1",
            connection_id="conn-1",
            appointment_id="appt-1",
            sync_direction="push",
            last_synced_at=SYNCED_AT,
        )
        query, params = mock_cursor.execute.call_args[0]
        assert f"WHERE {column} = %s" in query
        assert params == (value,)

    def test_missing(self, mock_cursor):
        mock_cursor.fetchone.return_value = None
        assert get_by_event("evt-unknown") is None


class TestInsertMapping:
    def test_inserted(self, mock_cursor):
        mock_cursor.rowcount = 1
        mapping = EventMapping(fingerprint="fp-abc123", external_event_id="evt-1", connection_id="conn-1")

        assert insert_mapping(mapping) is True

        query, params = mock_cursor.execute.call_args[0]
        assert "ON CONFLICT DO NOTHING" in query
        assert params[:5] == ("fp-abc123", "evt-1", "conn-1", None, "push")
        assert params[5] is not None

    def test_conflict_loses(self, mock_cursor):
        mock_cursor.rowcount = 0
        mapping = EventMapping(
            fingerprint="fp-abc123",
            external_event_id="evt-2",
            connection_id="conn-1",
            last_synced_at=SYNCED_AT,
        )

        assert insert_mapping(mapping) is False
        assert mock_cursor.execute.call_args[0][1][5] == SYNCED_AT


class TestTouchMapping:
    def test_moves_fingerprint(self, mock_cursor):
        mock_cursor.rowcount = 1

        assert touch_mapping("evt-1", SYNCED_AT, fingerprint="fp-new", appointment_id="appt-1")

        query, params = mock_cursor.execute.call_args[0]
        assert "UPDATE calendar_event_mappings" in query
        assert params == (SYNCED_AT, "appt-1", "fp-new", "fp-new", "fp-new", "evt-1")

    def test_unknown_event(self, mock_cursor):
        mock_cursor.rowcount = 0
        assert touch_mapping("evt-unknown", SYNCED_AT) is False


class TestDelete:
    def test_delete_by_appointment(self, mock_cursor):
        mock_cursor.rowcount = 1
        assert delete_by_appointment("appt-1") is True
        assert mock_cursor.execute.call_args[0][1] == ("appt-1",)

    def test_delete_by_event_missing(self, mock_cursor):
        mock_cursor.rowcount = 0
        assert delete_by_event("evt-1") is False
        assert "WHERE external_event_id = %s" in mock_cursor.execute.call_args[0][0]
