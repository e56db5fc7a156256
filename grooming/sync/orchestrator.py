"""Sync orchestrator: turns booking and calendar events into jobs and owns their lifecycle.

Jobs flow queued -> running -> succeeded / failed_retryable / failed_terminal.
Every live job is stored by the ``JobQueue``; Celery workers run them by id
through ``run_job``. Retryable failures go back on the queue with exponential
backoff until the attempt budget runs out. Terminal failures count towards
the auto-pause threshold; when too many land inside the window the
connection is paused and automatic work is parked until an admin resumes it.
Manual work (retry, resync, batch) is never parked.
"""

import logging
import random
from collections import Counter
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from grooming.db import appointments as appointments_db
from grooming.db import sync_settings as settings_db
from grooming.models.appointment import Appointment
from grooming.models.calendar import CalendarConnection, ConnectionStatus
from grooming.models.sync import (
    PUSH_OPERATIONS,
    AppointmentEventType,
    ClaimOutcome,
    SyncJob,
    SyncLogFilters,
    SyncResult,
    SyncStatusResponse,
    utc_now,
)
from grooming.utils.timezone import ensure_utc
from .config import SyncConfig
from .connections import ConnectionStore
from .criteria import should_sync_appointment
from .duplicates import DuplicateResolver
from .errors import AppointmentNotFound, ConnectionNotFound, StillFailing, classify_exception
from .executor import SyncExecutor
from .history import SyncHistoryLog
from .notifications import LoggingNotifier, Notifier
from .queue import JobQueue
from .quota import Allowed, QuotaGovernor
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

PENDING_PUSHES = ("push_create", "push_update")
SYSTEM_ACTOR = "system:sync"
# History tag on attempts that ended a job for good; the auto-pause window counts these.
TERMINAL_TAG = "terminal"


class SyncOrchestrator:
    def __init__(
        self,
        executor: SyncExecutor,
        connections: ConnectionStore,
        history: SyncHistoryLog,
        governor: QuotaGovernor,
        resolver: DuplicateResolver,
        config: SyncConfig,
        bookings=appointments_db,
        settings_repo=settings_db,
        notifier: Optional[Notifier] = None,
        queue: Optional[JobQueue] = None,
        clock: Callable[[], datetime] = utc_now,
        rng: Optional[random.Random] = None,
    ):
        self.executor = executor
        self.connections = connections
        self.history = history
        self.governor = governor
        self.resolver = resolver
        self.config = config
        self.bookings = bookings
        self.settings_repo = settings_repo
        self.notifier = notifier or LoggingNotifier()
        self.clock = clock
        self.queue = queue or JobQueue(clock=clock)
        self.retry_policy = RetryPolicy.from_config(config)
        self.rng = rng or random.Random()

    # Entry points

    def on_appointment_event(
        self, appointment_id: str, event: AppointmentEventType
    ) -> list[SyncJob]:
        """React to a create/update/cancel in the booking system.

        Cancellation always produces a delete, whatever the sync direction or
        settings, so an event never outlives its appointment.
        """
        connection = self.connections.get_active()
        if connection is None:
            logger.debug(
                f"No calendar connection; ignoring appointment event: "
                f"appointment_id={appointment_id}, event={event}"
            )
            return []

        if event == "cancelled":
            return [self._enqueue_cancellation(connection, appointment_id)]

        appointment = self.bookings.get_appointment_for_sync(appointment_id)
        if appointment is None:
            logger.warning(
                f"Appointment event for unknown appointment: appointment_id={appointment_id}, "
                f"event={event}"
            )
            return []

        if appointment.is_cancelled:
            return [self._enqueue_cancellation(connection, appointment_id)]

        settings = self.settings_repo.get_settings(connection.id)
        decision = should_sync_appointment(appointment, settings, self.clock())
        if not decision.should_sync:
            logger.debug(
                f"Appointment not synced: appointment_id={appointment_id}, "
                f"reason={decision.reason}"
            )
            return []

        job = SyncJob(
            operation="push_create" if event == "created" else "push_update",
            connection_id=connection.id,
            appointment_id=appointment_id,
            trigger=f"appointment_{event}",
            starts_at=ensure_utc(appointment.scheduled_at),
        )
        self._submit(connection, job)
        return [job]

    def on_webhook_notification(
        self,
        channel_id: str,
        resource_id: Optional[str],
        resource_state: str,
        channel_token: Optional[str],
    ) -> Optional[SyncJob]:
        """Handle a push notification from Google. Returns the scan job, if any."""
        connection = self.connections.get_by_channel(channel_id)
        if connection is None:
            logger.warning(f"Webhook for unknown channel: channel_id={channel_id}")
            return None

        if connection.webhook_token and channel_token != connection.webhook_token:
            logger.warning(
                f"Webhook token mismatch: connection_id={connection.id}, channel_id={channel_id}"
            )
            return None

        if (
            resource_id
            and connection.webhook_resource_id
            and resource_id != connection.webhook_resource_id
        ):
            logger.warning(
                f"Webhook resource mismatch: connection_id={connection.id}, "
                f"resource_id={resource_id}"
            )
            return None

        if resource_state == "sync":
            # Handshake sent when the channel is created.
            return None

        settings = self.settings_repo.get_settings(connection.id)
        if not settings.imports:
            logger.debug(
                f"Ignoring webhook; direction does not import: connection_id={connection.id}, "
                f"sync_direction={settings.sync_direction}"
            )
            return None

        for queued in self.queue.queued_jobs():
            if queued.operation == "import_scan" and queued.connection_id == connection.id:
                return queued

        job = SyncJob(operation="import_scan", connection_id=connection.id, trigger="webhook")
        self._submit(connection, job)
        return job

    def enqueue_batch(self, appointment_ids: Iterable[str]) -> list[SyncJob]:
        """Push the current state of each appointment. Unknown ids are skipped."""
        connection = self._require_connection()
        settings = self.settings_repo.get_settings(connection.id)
        jobs = []
        for appointment_id in appointment_ids:
            appointment = self.bookings.get_appointment_for_sync(appointment_id)
            if appointment is None:
                logger.warning(f"Batch sync skipped unknown appointment: appointment_id={appointment_id}")
                continue
            jobs.append(self._manual_push(connection, appointment, settings, trigger="batch"))
        logger.info(f"Batch sync enqueued: connection_id={connection.id}, jobs={len(jobs)}")
        return jobs

    def retry_sync(self, appointment_id: str) -> SyncJob:
        """Re-run the appointment's last failed job with a fresh attempt budget."""
        connection = self._require_connection()
        failed = self.queue.remove_failed(appointment_id)

        if failed:
            job = failed[-1]
            job.attempts = 0
            job.automatic = False
            job.trigger = "retry"
            job.last_error = None
            job.error_class = None
            job.connection_id = connection.id
        else:
            last = self.history.last_failure_for(appointment_id)
            operation = (
                last.operation
                if last is not None and last.operation in PUSH_OPERATIONS
                else "push_update"
            )
            job = SyncJob(
                operation=operation,
                connection_id=connection.id,
                appointment_id=appointment_id,
                trigger="retry",
                automatic=False,
            )

        self.queue.put(job)
        logger.info(
            f"Retry enqueued: appointment_id={appointment_id}, job_id={job.id}, "
            f"operation={job.operation}"
        )
        return job

    def resync(self, appointment_id: str) -> SyncJob:
        """Delete the appointment's event and push it again from scratch.

        The create is only enqueued after the delete succeeds.
        """
        connection = self._require_connection()
        appointment = self.bookings.get_appointment_for_sync(appointment_id)
        if appointment is None:
            raise AppointmentNotFound(f"Appointment {appointment_id} not found")

        job = SyncJob(
            operation="push_delete",
            connection_id=connection.id,
            appointment_id=appointment_id,
            trigger="resync",
            automatic=False,
            starts_at=ensure_utc(appointment.scheduled_at),
        )
        self.queue.put(job)
        return job

    def pause(self, reason: str, actor: str) -> ConnectionStatus:
        connection = self._require_connection()
        return self.connections.pause(connection.id, reason, actor, tags=("manual",)).status()

    def resume(self, actor: str) -> ConnectionStatus:
        """Reset the failure count, probe the calendar and re-admit parked jobs.

        Raises:
            StillFailing: if the probe fails; the connection is paused again.
        """
        connection = self._require_connection()
        connection = self.connections.resume(connection.id, actor)

        error = self.executor.probe(connection)
        if error is not None:
            reason = f"Resume failed: {error.user_message}"
            if error.error_class == "terminal_credential":
                self.connections.mark_error(connection.id, reason, actor=SYSTEM_ACTOR)
            else:
                self.connections.pause(
                    connection.id, reason, actor=SYSTEM_ACTOR, tags=("resume-failed",)
                )
            raise StillFailing(reason, cause=error)

        released = self.queue.release_parked(connection.id)
        logger.info(
            f"Sync resumed: connection_id={connection.id}, actor={actor}, "
            f"released_jobs={len(released)}"
        )
        return connection.status()

    def on_connected(self, connection: CalendarConnection) -> int:
        """A (re)connect releases the work parked while the connection was down."""
        return len(self.queue.release_parked(connection.id))

    def status(self) -> SyncStatusResponse:
        quota = self.governor.get_snapshot()
        connection = self.connections.get_active()
        if connection is None:
            return SyncStatusResponse(connected=False, quota=quota)

        return SyncStatusResponse(
            connected=True,
            connection=connection.status(),
            paused=connection.is_paused,
            pause_reason=connection.pause_reason,
            quota=quota,
            recent_failures=self.history.recent_failures(connection.id),
            failed_jobs=[job.view() for job in self.queue.failed_jobs(connection.id)],
            queue_depth=len(self.queue),
            in_flight=self.queue.in_flight_count(),
            parked=len(self.queue.parked_jobs(connection.id)),
        )

    # Processing

    def run_job(self, job_id: str) -> ClaimOutcome:
        """Claim and process one stored job. Workers call this with the dispatched id."""
        outcome, job = self.queue.claim(job_id)
        if outcome == "claimed" and job is not None:
            self._run(job)
        else:
            logger.debug(f"Sync job not run: job_id={job_id}, outcome={outcome}")
        return outcome

    def run_once(self) -> Optional[SyncResult]:
        """Claim the oldest runnable job and process it."""
        job = self.queue.take()
        if job is None:
            return None
        return self._run(job)

    def run_until_idle(self, max_jobs: int = 1000) -> list[SyncResult]:
        """Process every runnable job. Delayed jobs that are not yet due are left queued."""
        results = []
        for _ in range(max_jobs):
            job = self.queue.take()
            if job is None:
                break
            result = self._run(job)
            if result is not None:
                results.append(result)
        return results

    def process(self, job: SyncJob) -> Optional[SyncResult]:
        """Admit, execute and settle one claimed job. Returns None when the job was not run."""
        connection = self.connections.get(job.connection_id)
        if connection is None:
            job.status = "failed_terminal"
            job.last_error = "Calendar connection no longer exists"
            self.queue.finish(job)
            logger.warning(
                f"Dropping job for missing connection: job_id={job.id}, "
                f"connection_id={job.connection_id}"
            )
            return None

        if job.automatic and not connection.admits_automatic_jobs:
            self._park(job)
            return None

        admission = self.governor.check_admission(job)
        if not isinstance(admission, Allowed):
            logger.info(
                f"Job deferred by quota: job_id={job.id}, operation={job.operation}, "
                f"resume_at={admission.resume_at.isoformat()}, reason={admission.reason}"
            )
            self.queue.put(job, not_before=admission.resume_at)
            return None

        job.attempts += 1
        result = self.executor.execute(job)
        if result.success:
            self._settle_success(connection, job, result)
        else:
            self._settle_failure(connection, job, result)
        return result

    def _run(self, job: SyncJob) -> Optional[SyncResult]:
        try:
            return self.process(job)
        except Exception as exc:
            self._settle_interrupted(job, exc)
            return None

    # Settlement

    def _settle_success(
        self, connection: CalendarConnection, job: SyncJob, result: SyncResult
    ) -> None:
        job.status = "succeeded"
        job.last_error = None
        job.error_class = None
        self.queue.finish(job)
        self._record(job, result)
        self.connections.record_success(connection.id)
        if job.appointment_id:
            self.queue.remove_failed(job.appointment_id)

        for follow_up in result.follow_ups:
            self._submit(connection, follow_up)

        if job.trigger == "resync" and job.operation == "push_delete" and job.appointment_id:
            self.queue.put(
                SyncJob(
                    operation="push_create",
                    connection_id=connection.id,
                    appointment_id=job.appointment_id,
                    trigger="resync",
                    automatic=False,
                    starts_at=job.starts_at,
                )
            )

        logger.info(
            f"Sync job succeeded: job_id={job.id}, operation={result.operation}, "
            f"appointment_id={job.appointment_id}, external_event_id={result.external_event_id}, "
            f"attempts={job.attempts}, tags={','.join(result.tags)}"
        )
        if not result.skipped and self.settings_repo.get_settings(connection.id).notify_on_success:
            self.notifier.sync_succeeded(connection.id, job, result)

    def _settle_failure(
        self, connection: CalendarConnection, job: SyncJob, result: SyncResult
    ) -> None:
        error = result.error
        if error is None:
            raise ValueError(f"Failed sync result without an error: job_id={job.id}")
        job.last_error = error.message
        job.error_class = error.error_class
        now = self.clock()

        if error.retryable and not self.retry_policy.exhausted(job.attempts):
            delay = self.retry_policy.delay_for(job.attempts - 1, self.rng)
            retry_after = getattr(error, "retry_after", None)
            if retry_after:
                delay = max(delay, retry_after)
            job.status = "failed_retryable"
            self._record(job, result)
            self.queue.put(job, not_before=now + timedelta(seconds=delay))
            logger.info(
                f"Sync job will be retried: job_id={job.id}, operation={job.operation}, "
                f"attempts={job.attempts}, delay_seconds={delay:.1f}, error_code={error.code}"
            )
            return

        if error.retryable:
            result.tags.append("retries-exhausted")
        result.tags.append(TERMINAL_TAG)
        self.queue.fail(job)
        self._record(job, result)
        logger.error(
            f"Sync job failed: job_id={job.id}, operation={job.operation}, "
            f"appointment_id={job.appointment_id}, attempts={job.attempts}, "
            f"error_class={error.error_class}, error_code={error.code}, error={error.message}"
        )

        if error.error_class == "terminal_credential":
            self.connections.mark_error(connection.id, error.user_message, actor=SYSTEM_ACTOR)

        consecutive = self.connections.record_failure(connection.id)
        self._count_towards_pause(connection, consecutive, now)

        if self.settings_repo.get_settings(connection.id).notify_on_failure:
            self.notifier.sync_failed(connection.id, job, result)

    def _settle_interrupted(self, job: SyncJob, exc: Exception) -> None:
        """Handle an exception raised outside the attempt itself (store, quota ledger, ...).

        The job goes back on the queue with backoff without using an attempt,
        or is failed if the error is not retryable. If even that cannot be
        written, the job stays running in the store until maintenance resets it.
        """
        error = classify_exception(exc)
        logger.exception(
            f"Sync job interrupted: job_id={job.id}, operation={job.operation}, "
            f"appointment_id={job.appointment_id}, error_code={error.code}, "
            f"exception_type={type(exc).__name__}, error={exc}"
        )
        if job.status == "succeeded":
            # The calendar write went through; only bookkeeping after it failed.
            return

        job.last_error = error.message
        job.error_class = error.error_class
        self._record(
            job,
            SyncResult(
                success=False,
                operation=job.operation,
                appointment_id=job.appointment_id,
                external_event_id=job.external_event_id,
                error=error,
                message=error.user_message,
                tags=["interrupted"],
            ),
        )
        try:
            if error.retryable:
                delay = self.retry_policy.delay_for(job.attempts, self.rng)
                self.queue.put(job, not_before=self.clock() + timedelta(seconds=delay))
            else:
                self.queue.fail(job)
        except Exception as requeue_error:
            logger.exception(
                f"Could not requeue interrupted sync job; maintenance will recover it: "
                f"job_id={job.id}, exception_type={type(requeue_error).__name__}, "
                f"error={requeue_error}"
            )

    def _count_towards_pause(
        self, connection: CalendarConnection, consecutive: int, now: datetime
    ) -> None:
        """Pause once the last ``threshold`` terminal failures all fall inside the window.

        The connection's failure counter resets on success, resume and
        reconnect, so reaching the threshold means none of those happened
        in between.
        """
        threshold = self.config.pause_failure_threshold
        if consecutive < threshold:
            return

        window_start = now - timedelta(seconds=self.config.pause_window_seconds)
        recent = self.history.query(
            SyncLogFilters(
                connection_id=connection.id,
                outcome="failure",
                tag=TERMINAL_TAG,
                limit=threshold,
            )
        ).entries
        if len(recent) < threshold or recent[-1].created_at < window_start:
            return

        current = self.connections.get(connection.id)
        if current is None or current.state != "connected":
            return

        codes = Counter(entry.error_code or "UNKNOWN" for entry in recent)
        summary = ", ".join(f"{code} x{n}" for code, n in codes.most_common())
        minutes = self.config.pause_window_seconds // 60
        reason = (
            f"Paused after {len(recent)} failed syncs within {minutes} minutes: {summary}"
        )
        self.connections.pause(
            connection.id, reason, actor="system:auto-pause", tags=("auto-pause",)
        )
        self.notifier.sync_paused(connection.id, reason)

    # Helpers

    def _record(self, job: SyncJob, result: SyncResult) -> None:
        try:
            self.history.record(job, result)
        except Exception as e:
            logger.exception(
                f"Failed to write sync history: job_id={job.id}, "
                f"exception_type={type(e).__name__}, error={e}"
            )

    def _require_connection(self) -> CalendarConnection:
        connection = self.connections.get_active()
        if connection is None:
            raise ConnectionNotFound("No Google Calendar connection is configured")
        return connection

    def _submit(self, connection: CalendarConnection, job: SyncJob) -> None:
        if job.automatic and not connection.admits_automatic_jobs:
            self._park(job)
        else:
            self.queue.put(job)

    def _park(self, job: SyncJob) -> None:
        self.queue.park(job)
        logger.debug(
            f"Job parked while connection is not active: job_id={job.id}, "
            f"connection_id={job.connection_id}, operation={job.operation}"
        )

    def _enqueue_cancellation(
        self, connection: CalendarConnection, appointment_id: str
    ) -> SyncJob:
        dropped = self.queue.discard_queued(appointment_id, PENDING_PUSHES)
        job = SyncJob(
            operation="push_delete",
            connection_id=connection.id,
            appointment_id=appointment_id,
            trigger="appointment_cancelled",
        )
        self._submit(connection, job)
        logger.info(
            f"Cancellation enqueued: appointment_id={appointment_id}, job_id={job.id}, "
            f"dropped_pushes={len(dropped)}"
        )
        return job

    def _manual_push(
        self,
        connection: CalendarConnection,
        appointment: Appointment,
        settings,
        trigger: str,
    ) -> SyncJob:
        decision = should_sync_appointment(appointment, settings, self.clock(), force=True)
        if not decision.should_sync:
            operation = "push_delete"
        elif self.resolver.mapping_for_appointment(appointment.id) is not None:
            operation = "push_update"
        else:
            operation = "push_create"
        job = SyncJob(
            operation=operation,
            connection_id=connection.id,
            appointment_id=appointment.id,
            trigger=trigger,
            automatic=False,
            starts_at=ensure_utc(appointment.scheduled_at),
        )
        self.queue.put(job)
        return job
