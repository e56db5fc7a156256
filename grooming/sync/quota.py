"""Quota governor for the shared Google Calendar API budget.

Calls are counted in fixed windows aligned to multiples of the window length
(daily at midnight UTC by default). The ledger row for the current window is
the single shared counter across all workers.

Admission is asymmetric at critical usage: pushes for appointments starting
soon still go out so customers are not missed, while imports and routine
pushes wait for the window to reset.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Union

from grooming.db import quota as quota_db
from grooming.models.sync import QuotaSnapshot, Severity, SyncJob, utc_now
from .config import SyncConfig

logger = logging.getLogger(__name__)

SEVERITY_ORDER: dict[Severity, int] = {"ok": 0, "warning": 1, "high": 2, "critical": 3}


@dataclass(frozen=True)
class Allowed:
    pass


@dataclass(frozen=True)
class Deferred:
    resume_at: datetime
    reason: str


@dataclass(frozen=True)
class Denied:
    resume_at: datetime
    reason: str


Admission = Union[Allowed, Deferred, Denied]


def classify_severity(percentage: float) -> Severity:
    if percentage >= 95:
        return "critical"
    if percentage >= 90:
        return "high"
    if percentage >= 80:
        return "warning"
    return "ok"


def format_time_until(delta: timedelta) -> str:
    """Human-readable duration such as '3 hours 5 minutes'."""
    total_minutes = max(int(delta.total_seconds() // 60), 0)
    hours, minutes = divmod(total_minutes, 60)
    minutes_text = f"{minutes} minute{'s' if minutes != 1 else ''}"
    if hours > 0:
        return f"{hours} hour{'s' if hours != 1 else ''} {minutes_text}"
    return minutes_text


class QuotaGovernor:
    def __init__(
        self,
        config: SyncConfig,
        ledger=quota_db,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config
        self.ledger = ledger
        self.clock = clock
        self._lock = threading.Lock()
        self._last_severity: Severity = "ok"

    def window_start(self, now: datetime | None = None) -> datetime:
        now = now or self.clock()
        epoch = int(now.timestamp())
        start = epoch - (epoch % self.config.quota_window_seconds)
        return datetime.fromtimestamp(start, tz=timezone.utc)

    def record_call(self, weight: int = 1) -> int:
        """Count ``weight`` API calls against the current window. Returns the new total."""
        used = self.ledger.increment_calls(self.window_start(), weight)
        self._observe(used)
        return used

    def get_snapshot(self, now: datetime | None = None) -> QuotaSnapshot:
        now = now or self.clock()
        started = self.window_start(now)
        resets_at = started + timedelta(seconds=self.config.quota_window_seconds)
        used = self.ledger.get_call_count(started)
        limit = self.config.quota_limit
        percentage = round(used / limit * 100, 2)
        severity = classify_severity(percentage)

        message = None
        if severity != "ok":
            message = (
                f"Google Calendar API usage is at {percentage:.0f}% of the daily limit "
                f"({used}/{limit}). Resets in {format_time_until(resets_at - now)}."
            )
            if severity == "critical":
                message += " Only imminent appointments are being synced."

        return QuotaSnapshot(
            used=used,
            limit=limit,
            percentage=percentage,
            severity=severity,
            window_started_at=started,
            resets_at=resets_at,
            message=message,
        )

    def is_urgent(self, job: SyncJob, now: datetime) -> bool:
        """A push for an appointment starting within the urgent horizon."""
        if not job.is_push or job.starts_at is None:
            return False
        horizon = now + timedelta(hours=self.config.urgent_horizon_hours)
        return now <= job.starts_at <= horizon

    def check_admission(self, job: SyncJob, now: datetime | None = None) -> Admission:
        now = now or self.clock()
        snapshot = self.get_snapshot(now)

        if snapshot.used >= snapshot.limit:
            return Denied(
                resume_at=snapshot.resets_at,
                reason=f"API quota exhausted ({snapshot.used}/{snapshot.limit})",
            )

        if snapshot.severity == "critical" and not self.is_urgent(job, now):
            return Deferred(
                resume_at=snapshot.resets_at,
                reason=f"API quota critical ({snapshot.percentage:.0f}%); non-urgent work deferred",
            )

        return Allowed()

    def prune(self, older_than: datetime) -> int:
        return self.ledger.delete_windows_before(self.window_start(older_than))

    def _observe(self, used: int) -> None:
        severity = classify_severity(used / self.config.quota_limit * 100)
        with self._lock:
            previous = self._last_severity
            self._last_severity = severity
        if SEVERITY_ORDER[severity] > SEVERITY_ORDER[previous]:
            log = logger.warning if severity in ("warning", "high") else logger.error
            log(
                f"Google Calendar API quota severity increased: previous={previous}, "
                f"severity={severity}, used={used}, limit={self.config.quota_limit}"
            )
        elif severity != previous:
            logger.info(
                f"Google Calendar API quota severity decreased: previous={previous}, "
                f"severity={severity}, used={used}"
            )
