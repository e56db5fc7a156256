"""Tunable parameters for the calendar sync engine.

All values can be overridden with environment variables; the defaults match
the provider's documented limits and the business's operating hours.
"""

import os
from dataclasses import dataclass, fields


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e


@dataclass(frozen=True)
class SyncConfig:
    """Sync engine settings."""

    business_timezone: str = "America/Los_Angeles"
    business_location: str = "The Puppy Day, La Mirada, CA"

    worker_count: int = 4
    request_timeout_seconds: float = 10.0
    # A job whose appointment is busy is offered to a worker again after this.
    busy_retry_seconds: int = 5
    # Running longer than this means the worker died.
    stalled_job_seconds: int = 900
    # Due for longer than this without running means the broker lost the message.
    redispatch_after_seconds: int = 300

    max_attempts: int = 3
    backoff_base_seconds: float = 60.0
    backoff_max_seconds: float = 900.0
    backoff_jitter_ratio: float = 0.1

    pause_failure_threshold: int = 5
    pause_window_seconds: int = 1800

    quota_limit: int = 1_000_000
    quota_window_seconds: int = 86_400
    urgent_horizon_hours: float = 4.0

    fingerprint_granularity_minutes: int = 15

    webhook_ttl_seconds: int = 7 * 86_400
    webhook_renewal_threshold_hours: float = 24.0
    history_retention_days: int = 90
    maintenance_interval_seconds: int = 900

    def __post_init__(self) -> None:
        if self.worker_count < 1:
            raise ValueError("worker_count must be at least 1")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.pause_failure_threshold < 1:
            raise ValueError("pause_failure_threshold must be at least 1")
        if self.quota_limit <= 0 or self.quota_window_seconds <= 0:
            raise ValueError("quota_limit and quota_window_seconds must be positive")
        if self.fingerprint_granularity_minutes <= 0:
            raise ValueError("fingerprint_granularity_minutes must be positive")

    @classmethod
    def from_env(cls) -> "SyncConfig":
        """Build a config from CALENDAR_SYNC_* / BUSINESS_* environment variables."""
        defaults = cls()
        return cls(
            business_timezone=os.getenv("BUSINESS_TIMEZONE", defaults.business_timezone),
            business_location=os.getenv("BUSINESS_LOCATION", defaults.business_location),
            worker_count=_env_int("CALENDAR_SYNC_WORKERS", defaults.worker_count),
            request_timeout_seconds=_env_float(
                "CALENDAR_REQUEST_TIMEOUT_SECONDS", defaults.request_timeout_seconds
            ),
            busy_retry_seconds=_env_int(
                "CALENDAR_SYNC_BUSY_RETRY_SECONDS", defaults.busy_retry_seconds
            ),
            stalled_job_seconds=_env_int(
                "CALENDAR_SYNC_STALLED_JOB_SECONDS", defaults.stalled_job_seconds
            ),
            redispatch_after_seconds=_env_int(
                "CALENDAR_SYNC_REDISPATCH_SECONDS", defaults.redispatch_after_seconds
            ),
            max_attempts=_env_int("CALENDAR_SYNC_MAX_ATTEMPTS", defaults.max_attempts),
            backoff_base_seconds=_env_float(
                "CALENDAR_SYNC_BACKOFF_BASE_SECONDS", defaults.backoff_base_seconds
            ),
            backoff_max_seconds=_env_float(
                "CALENDAR_SYNC_BACKOFF_MAX_SECONDS", defaults.backoff_max_seconds
            ),
            backoff_jitter_ratio=_env_float(
                "CALENDAR_SYNC_BACKOFF_JITTER", defaults.backoff_jitter_ratio
            ),
            pause_failure_threshold=_env_int(
                "CALENDAR_SYNC_PAUSE_THRESHOLD", defaults.pause_failure_threshold
            ),
            pause_window_seconds=_env_int(
                "CALENDAR_SYNC_PAUSE_WINDOW_SECONDS", defaults.pause_window_seconds
            ),
            quota_limit=_env_int("CALENDAR_QUOTA_LIMIT", defaults.quota_limit),
            quota_window_seconds=_env_int(
                "CALENDAR_QUOTA_WINDOW_SECONDS", defaults.quota_window_seconds
            ),
            urgent_horizon_hours=_env_float(
                "CALENDAR_URGENT_HORIZON_HOURS", defaults.urgent_horizon_hours
            ),
            fingerprint_granularity_minutes=_env_int(
                "CALENDAR_FINGERPRINT_GRANULARITY_MINUTES",
                defaults.fingerprint_granularity_minutes,
            ),
            webhook_ttl_seconds=_env_int(
                "CALENDAR_WEBHOOK_TTL_SECONDS", defaults.webhook_ttl_seconds
            ),
            webhook_renewal_threshold_hours=_env_float(
                "CALENDAR_WEBHOOK_RENEWAL_HOURS", defaults.webhook_renewal_threshold_hours
            ),
            history_retention_days=_env_int(
                "CALENDAR_SYNC_HISTORY_RETENTION_DAYS", defaults.history_retention_days
            ),
            maintenance_interval_seconds=_env_int(
                "CALENDAR_SYNC_MAINTENANCE_SECONDS", defaults.maintenance_interval_seconds
            ),
        )

    def as_dict(self) -> dict[str, object]:
        return {f.name: getattr(self, f.name) for f in fields(self)}
