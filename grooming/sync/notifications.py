"""Admin notifications about sync outcomes.

Delivery (email/SMS) belongs to the notification subsystem; this engine
only decides when to notify. The default notifier writes to the log.
"""

import logging
from typing import Protocol

from grooming.models.sync import SyncJob, SyncResult

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def sync_failed(self, connection_id: str, job: SyncJob, result: SyncResult) -> None: ...

    def sync_succeeded(self, connection_id: str, job: SyncJob, result: SyncResult) -> None: ...

    def sync_paused(self, connection_id: str, reason: str) -> None: ...


class LoggingNotifier:
    def sync_failed(self, connection_id: str, job: SyncJob, result: SyncResult) -> None:
        logger.warning(
            f"[notify] Calendar sync failed: connection_id={connection_id}, "
            f"appointment_id={job.appointment_id}, operation={job.operation}, "
            f"error_class={result.error_class}, message={result.message}"
        )

    def sync_succeeded(self, connection_id: str, job: SyncJob, result: SyncResult) -> None:
        logger.info(
            f"[notify] Calendar sync succeeded: connection_id={connection_id}, "
            f"appointment_id={job.appointment_id}, operation={result.operation}"
        )

    def sync_paused(self, connection_id: str, reason: str) -> None:
        logger.error(
            f"[notify] Calendar sync paused: connection_id={connection_id}, reason={reason}"
        )
