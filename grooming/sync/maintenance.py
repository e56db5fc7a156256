"""Periodic housekeeping: webhook renewal, job recovery and retention pruning.

Celery beat triggers ``run_once`` every ``maintenance_interval_seconds``.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from grooming.models.sync import utc_now
from .config import SyncConfig
from .history import SyncHistoryLog
from .queue import JobQueue
from .quota import QuotaGovernor
from .webhooks import WebhookManager

logger = logging.getLogger(__name__)


class SyncMaintenance:
    def __init__(
        self,
        webhooks: WebhookManager,
        history: SyncHistoryLog,
        governor: QuotaGovernor,
        queue: JobQueue,
        config: SyncConfig,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.webhooks = webhooks
        self.history = history
        self.governor = governor
        self.queue = queue
        self.config = config
        self.clock = clock

    def run_once(self, now: Optional[datetime] = None) -> dict[str, int]:
        now = now or self.clock()
        renewed = self.webhooks.renew_expiring(now)
        recovered = self.queue.recover(
            stalled_before=now - timedelta(seconds=self.config.stalled_job_seconds),
            overdue_before=now - timedelta(seconds=self.config.redispatch_after_seconds),
        )
        pruned_history = self.history.prune(
            now - timedelta(days=self.config.history_retention_days)
        )
        # Keep the previous window around for the status panel.
        pruned_quota = self.governor.prune(
            now - timedelta(seconds=2 * self.config.quota_window_seconds)
        )
        logger.info(
            f"Calendar sync maintenance: webhooks_renewed={renewed}, jobs_recovered={recovered}, "
            f"history_pruned={pruned_history}, quota_windows_pruned={pruned_quota}"
        )
        return {
            "webhooks_renewed": renewed,
            "jobs_recovered": recovered,
            "history_pruned": pruned_history,
            "quota_windows_pruned": pruned_quota,
        }
