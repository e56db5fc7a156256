"""Tests for the Celery tasks and job dispatch."""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
from celery.exceptions import Retry
from kombu.exceptions import OperationalError

from grooming.worker import tasks
from grooming.worker.celery_app import (
    PROCESS_SYNC_JOB,
    RUN_SYNC_MAINTENANCE,
    SYNC_QUEUE,
    celery_app,
    dispatch_sync_job,
)


@pytest.fixture
def engine():
    engine = MagicMock()
    engine.config.busy_retry_seconds = 5
    with patch("grooming.worker.tasks.get_engine", return_value=engine):
        yield engine


class TestProcessSyncJob:
    def test_runs_job_by_id(self, engine):
        engine.orchestrator.run_job.return_value = "claimed"

        result = tasks.process_sync_job("job-1")

        engine.orchestrator.run_job.assert_called_once_with("job-1")
        assert result == {"job_id": "job-1", "outcome": "claimed"}

    @pytest.mark.parametrize("outcome", ["gone", "early"])
    def test_jobs_that_cannot_run_are_acknowledged(self, engine, outcome):
        engine.orchestrator.run_job.return_value = outcome

        assert tasks.process_sync_job("job-1")["outcome"] == outcome

    def test_busy_job_is_retried_later(self, engine):
        engine.orchestrator.run_job.return_value = "busy"

        with patch.object(tasks.process_sync_job, "retry", side_effect=Retry()) as retry:
            with pytest.raises(Retry):
                tasks.process_sync_job("job-1")

        retry.assert_called_once_with(countdown=5)


class TestMaintenanceTask:
    def test_runs_maintenance_pass(self, engine):
        engine.maintenance.run_once.return_value = {"jobs_recovered": 2}

        assert tasks.run_sync_maintenance() == {"jobs_recovered": 2}

    def test_scheduled_by_beat(self):
        entry = celery_app.conf.beat_schedule["calendar-sync-maintenance"]
        assert entry["task"] == RUN_SYNC_MAINTENANCE


class TestGetEngine:
    def test_engine_is_built_once(self, monkeypatch):
        monkeypatch.setattr(tasks, "_engine", None)
        with patch("grooming.worker.tasks.build_sync_engine") as build:
            first = tasks.get_engine()
            second = tasks.get_engine()

        build.assert_called_once_with(dispatch=dispatch_sync_job)
        assert first is second


class TestDispatchSyncJob:
    def test_sends_job_id_with_eta(self):
        eta = datetime(2025, 1, 7, 17, 0, tzinfo=timezone.utc)
        with patch.object(celery_app, "send_task") as send_task:
            assert dispatch_sync_job("job-1", eta) is True

        send_task.assert_called_once_with(
            PROCESS_SYNC_JOB, args=["job-1"], eta=eta, queue=SYNC_QUEUE
        )

    def test_unreachable_broker(self, caplog):
        with patch.object(celery_app, "send_task", side_effect=OperationalError("Connection refused")):
            assert dispatch_sync_job("job-1") is False

        assert "Failed to dispatch sync job: job_id=job-1" in caplog.text
