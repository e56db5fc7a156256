"""Append-only audit log of sync attempts and connection events."""

import logging
from datetime import datetime
from typing import Callable, Iterable, Optional

from grooming.db import sync_log as sync_log_db
from grooming.models.sync import (
    LogOperation,
    SyncJob,
    SyncLogEntry,
    SyncLogFilters,
    SyncLogPage,
    SyncOutcome,
    SyncResult,
    utc_now,
)

logger = logging.getLogger(__name__)


class SyncHistoryLog:
    def __init__(self, repository=sync_log_db, clock: Callable[[], datetime] = utc_now):
        self.repository = repository
        self.clock = clock

    def append(self, entry: SyncLogEntry) -> SyncLogEntry:
        stored = self.repository.insert_entry(entry)
        if entry.error_class == "terminal_validation":
            # Validation failures point at a mapping bug.
            logger.error(
                f"Sync validation failure: operation={entry.operation}, "
                f"appointment_id={entry.appointment_id}, error_code={entry.error_code}, "
                f"message={entry.message}"
            )
        return stored

    def record(self, job: SyncJob, result: SyncResult) -> SyncLogEntry:
        """Append the outcome of one execution attempt."""
        error = result.error
        return self.append(
            SyncLogEntry(
                created_at=self.clock(),
                connection_id=job.connection_id,
                job_id=job.id,
                appointment_id=result.appointment_id or job.appointment_id,
                external_event_id=result.external_event_id or job.external_event_id,
                operation=job.operation,
                outcome=result.outcome,
                error_class=result.error_class,
                error_code=error.code if error is not None else None,
                message=error.message if error is not None else result.message,
                retry_count=job.attempts,
                tags=tuple(result.tags),
                duration_ms=result.duration_ms,
            )
        )

    def record_event(
        self,
        connection_id: Optional[str],
        operation: LogOperation,
        message: str,
        outcome: SyncOutcome = "success",
        tags: Iterable[str] = (),
        error_code: Optional[str] = None,
    ) -> SyncLogEntry:
        """Append a connection lifecycle event (pause, resume, connect, ...)."""
        return self.append(
            SyncLogEntry(
                created_at=self.clock(),
                connection_id=connection_id,
                operation=operation,
                outcome=outcome,
                error_code=error_code,
                message=message,
                tags=tuple(tags),
            )
        )

    def query(self, filters: SyncLogFilters) -> SyncLogPage:
        entries, total = self.repository.query_entries(filters)
        return SyncLogPage(
            entries=entries, total=total, limit=filters.limit, offset=filters.offset
        )

    def recent_failures(
        self, connection_id: Optional[str] = None, limit: int = 10
    ) -> list[SyncLogEntry]:
        page = self.query(
            SyncLogFilters(connection_id=connection_id, outcome="failure", limit=limit)
        )
        return page.entries

    def last_failure_for(self, appointment_id: str) -> Optional[SyncLogEntry]:
        return self.repository.last_failure_for(appointment_id)

    def prune(self, older_than: datetime) -> int:
        return self.repository.delete_before(older_than)
