"""Job queue over the persistent job store, dispatched through Celery.

``put`` stores the job and hands its id to the dispatcher with the time it
becomes due, so retries and quota deferrals ride on the broker's ETA instead
of a sleeping worker. Whoever runs a job first has to ``claim`` it; the claim
is atomic in the store and refuses a job while a sibling with the same
serialization key (appointment id) is running.
"""

import logging
from datetime import datetime
from typing import Callable, Iterable, Optional

from grooming.db import sync_jobs as sync_jobs_db
from grooming.models.sync import ClaimOutcome, SyncJob, utc_now

logger = logging.getLogger(__name__)

# Called with (job_id, eta); returns False when the message could not be sent.
Dispatcher = Callable[[str, Optional[datetime]], bool]


class JobQueue:
    def __init__(
        self,
        repository=sync_jobs_db,
        dispatch: Optional[Dispatcher] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.dispatch = dispatch
        self.clock = clock

    def put(self, job: SyncJob, not_before: Optional[datetime] = None) -> None:
        job.status = "queued"
        job.parked = False
        job.next_retry_at = not_before
        self.repository.save_job(job, self.clock())
        self._dispatch(job)

    def park(self, job: SyncJob) -> None:
        """Store the job without dispatching it until its connection is active again."""
        job.status = "queued"
        job.parked = True
        job.next_retry_at = None
        self.repository.save_job(job, self.clock())

    def claim(self, job_id: str) -> tuple[ClaimOutcome, Optional[SyncJob]]:
        return self.repository.claim_job(job_id, self.clock())

    def take(self) -> Optional[SyncJob]:
        """Claim the oldest due job that is free to run, if any."""
        now = self.clock()
        for job_id in self.repository.next_due_job_ids(now):
            outcome, job = self.repository.claim_job(job_id, now)
            if outcome == "claimed":
                return job
        return None

    def finish(self, job: SyncJob) -> None:
        self.repository.delete_job(job.id)

    def fail(self, job: SyncJob) -> None:
        """Keep a terminally failed job around for the admin to retry."""
        job.status = "failed_terminal"
        job.next_retry_at = None
        self.repository.save_job(job, self.clock())

    def discard_queued(self, appointment_id: str, operations: Iterable[str]) -> list[SyncJob]:
        """Drop queued or parked (never running) jobs for an appointment."""
        return self.repository.discard_queued(appointment_id, tuple(operations))

    def queued_jobs(self) -> list[SyncJob]:
        return self.repository.list_jobs(status="queued", parked=False)

    def parked_jobs(self, connection_id: str) -> list[SyncJob]:
        return self.repository.list_jobs(status="queued", parked=True, connection_id=connection_id)

    def failed_jobs(self, connection_id: Optional[str] = None) -> list[SyncJob]:
        return self.repository.list_jobs(status="failed_terminal", connection_id=connection_id)

    def remove_failed(self, appointment_id: str) -> list[SyncJob]:
        return self.repository.delete_failed_for_appointment(appointment_id)

    def release_parked(self, connection_id: str) -> list[SyncJob]:
        jobs = self.repository.release_parked(connection_id, self.clock())
        for job in jobs:
            self._dispatch(job)
        return jobs

    def recover(self, stalled_before: datetime, overdue_before: datetime) -> int:
        """Requeue jobs stranded by a dead worker or a lost broker message.

        Dispatching a job twice is harmless: only one claim can win.
        """
        stalled = self.repository.reset_stalled(stalled_before, self.clock())
        for job in stalled:
            logger.warning(
                f"Requeued stalled sync job: job_id={job.id}, operation={job.operation}, "
                f"appointment_id={job.appointment_id}"
            )
            self._dispatch(job)
        overdue = self.repository.list_overdue(overdue_before)
        for job in overdue:
            self._dispatch(job)
        return len(stalled) + len(overdue)

    def in_flight_count(self) -> int:
        return self.repository.count_jobs("running")

    def __len__(self) -> int:
        return self.repository.count_jobs("queued", parked=False)

    def _dispatch(self, job: SyncJob) -> None:
        if self.dispatch is None:
            return
        if not self.dispatch(job.id, job.next_retry_at):
            logger.warning(
                f"Sync job stored but not dispatched; maintenance will pick it up: "
                f"job_id={job.id}, operation={job.operation}"
            )
