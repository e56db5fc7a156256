"""Tests for the default logging notifier."""

import logging

from grooming.models.sync import SyncJob, SyncResult
from grooming.sync.errors import TerminalValidation
from grooming.sync.notifications import LoggingNotifier


def test_logging_notifier(caplog):
    notifier = LoggingNotifier()
    job = SyncJob(operation="push_create", connection_id="conn-1", appointment_id="appt-1")
    failure = SyncResult(
        success=False,
        operation="push_create",
        error=TerminalValidation("payload rejected", code="HTTP_400"),
        message="payload rejected",
    )

    with caplog.at_level(logging.INFO, logger="grooming.sync.notifications"):
        notifier.sync_failed("conn-1", job, failure)
        notifier.sync_succeeded("conn-1", job, SyncResult(success=True, operation="push_create"))
        notifier.sync_paused("conn-1", "HTTP_400 x5")

    messages = [record.getMessage() for record in caplog.records]
    assert "error_class=terminal_validation" in messages[0]
    assert "Calendar sync succeeded" in messages[1]
    assert caplog.records[2].levelno == logging.ERROR
    assert "reason=HTTP_400 x5" in messages[2]
