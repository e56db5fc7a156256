"""Tests for sync job store database operations."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
from psycopg.errors import UniqueViolation

from grooming.db.sync_jobs import (
    claim_job,
    count_jobs,
    delete_failed_for_appointment,
    discard_queued,
    list_jobs,
    next_due_job_ids,
    release_parked,
    reset_stalled,
    save_job,
)
from grooming.models.sync import SyncJob

NOW = datetime(2025, 1, 7, 16, 0, tzinfo=timezone.utc)


@pytest.fixture
def mock_cursor():
    with patch("grooming.db.sync_jobs.get_db_cursor") as mock_get_cursor:
        cursor = MagicMock()
        mock_get_cursor.return_value.__enter__.return_value = cursor
        yield cursor


def _row(**overrides):
    values = {
        "id": "job-1",
        "connection_id": "conn-1",
        "appointment_id": "appt-1",
        "external_event_id": None,
        "operation": "push_create",
        "trigger": "appointment_created",
        "automatic": True,
        "starts_at": NOW + timedelta(days=1),
        "status": "running",
        "parked": False,
        "attempts": 0,
        "next_retry_at": None,
        "last_error": None,
        "error_class": None,
        "created_at": NOW,
    }
    values.update(overrides)
    return tuple(values.values())


class TestSaveJob:
    def test_upserts_with_serialization_key(self, mock_cursor):
        job = SyncJob(operation="push_update", connection_id="conn-1", appointment_id="appt-1", id="job-1")
        job.next_retry_at = NOW + timedelta(minutes=1)

        save_job(job, NOW)

        query, params = mock_cursor.execute.call_args[0]
        assert "ON CONFLICT (id)" in query
        assert params[0] == "job-1"
        assert params[8] == "appointment:appt-1"
        assert params[9] == "queued"
        assert params[12] == NOW + timedelta(minutes=1)
        assert params[-2:] == (NOW, NOW)


class TestClaimJob:
    def test_claimed(self, mock_cursor):
        mock_cursor.fetchone.return_value = _row()

        outcome, job = claim_job("job-1", NOW)

        assert outcome == "claimed"
        assert job.status == "running"
        query, params = mock_cursor.execute.call_args[0]
        assert "SET status = 'running'" in query
        assert params == (NOW, "job-1", NOW)

    def test_busy_when_sibling_is_running(self, mock_cursor):
        mock_cursor.execute.side_effect = UniqueViolation("duplicate key value")

        assert claim_job("job-1", NOW) == ("busy", None)

    def test_early(self, mock_cursor):
        mock_cursor.fetchone.side_effect = [None, ("queued", False, NOW + timedelta(minutes=5))]
        assert claim_job("job-1", NOW) == ("early", None)

    @pytest.mark.parametrize(
        "state",
        [None, ("running", False, None), ("queued", True, None), ("failed_terminal", False, None)],
    )
    def test_gone(self, mock_cursor, state):
        mock_cursor.fetchone.side_effect = [None, state]
        assert claim_job("job-1", NOW) == ("gone", None)


class TestQueries:
    def test_next_due_skips_running_siblings(self, mock_cursor):
        mock_cursor.fetchall.return_value = [("job-2",), ("job-3",)]

        assert next_due_job_ids(NOW, limit=10) == ["job-2", "job-3"]
        query, params = mock_cursor.execute.call_args[0]
        assert "NOT EXISTS" in query
        assert "ORDER BY COALESCE(j.next_retry_at, j.enqueued_at)" in query
        assert params == (NOW, 10)

    def test_list_jobs_filters(self, mock_cursor):
        mock_cursor.fetchall.return_value = [_row(status="queued", parked=True)]

        (job,) = list_jobs(status="queued", parked=True, connection_id="conn-1")

        assert job.parked is True
        query, params = mock_cursor.execute.call_args[0]
        assert "status = %s AND parked = %s AND connection_id = %s" in query
        assert params == ("queued", True, "conn-1")

    def test_count_jobs(self, mock_cursor):
        mock_cursor.fetchone.return_value = (3,)

        assert count_jobs("queued", parked=False) == 3
        assert mock_cursor.execute.call_args[0][1] == ("queued", False)


class TestHousekeeping:
    def test_discard_queued(self, mock_cursor):
        mock_cursor.fetchall.return_value = [_row(status="queued")]

        (dropped,) = discard_queued("appt-1", ("push_create", "push_update"))

        assert dropped.id == "job-1"
        query, params = mock_cursor.execute.call_args[0]
        assert "status = 'queued'" in query
        assert params == ("appt-1", ["push_create", "push_update"])

    def test_release_parked(self, mock_cursor):
        mock_cursor.fetchall.return_value = [_row(status="queued")]

        assert [job.id for job in release_parked("conn-1", NOW)] == ["job-1"]
        assert mock_cursor.execute.call_args[0][1] == (NOW, NOW, "conn-1")

    def test_delete_failed_oldest_first(self, mock_cursor):
        mock_cursor.fetchall.return_value = [
            _row(id="job-2", status="failed_terminal", created_at=NOW + timedelta(minutes=1)),
            _row(id="job-1", status="failed_terminal"),
        ]

        assert [job.id for job in delete_failed_for_appointment("appt-1")] == ["job-1", "job-2"]

    def test_reset_stalled(self, mock_cursor):
        mock_cursor.fetchall.return_value = [_row(status="queued")]
        before = NOW - timedelta(minutes=15)

        assert len(reset_stalled(before, NOW)) == 1
        query, params = mock_cursor.execute.call_args[0]
        assert "WHERE status = 'running' AND updated_at < %s" in query
        assert params == (NOW, NOW, before)
