"""Database operations for the sync job store.

Every live job (queued, running, parked or failed terminally) is a row in
``calendar_sync_jobs``; Celery messages only carry the job id. A partial
unique index on ``serialization_key`` for running rows guarantees that two
jobs for the same appointment never run at the same time, whichever worker
claims them.
"""

import logging
from datetime import datetime
from typing import Iterable, Optional

from psycopg.errors import UniqueViolation

from grooming.models.sync import ClaimOutcome, SyncJob
from .connection import get_db_cursor

logger = logging.getLogger(__name__)

_COLUMNS = """
    id, connection_id, appointment_id, external_event_id, operation, trigger,
    automatic, starts_at, status, parked, attempts, next_retry_at, last_error,
    error_class, created_at
"""


def _row_to_job(row: tuple) -> SyncJob:
    (
        job_id,
        connection_id,
        appointment_id,
        external_event_id,
        operation,
        trigger,
        automatic,
        starts_at,
        status,
        parked,
        attempts,
        next_retry_at,
        last_error,
        error_class,
        created_at,
    ) = row
    return SyncJob(
        id=job_id,
        connection_id=connection_id,
        appointment_id=appointment_id,
        external_event_id=external_event_id,
        operation=operation,
        trigger=trigger,
        automatic=automatic,
        starts_at=starts_at,
        status=status,
        parked=parked,
        attempts=attempts,
        next_retry_at=next_retry_at,
        last_error=last_error,
        error_class=error_class,
        created_at=created_at,
    )


def save_job(job: SyncJob, now: datetime) -> None:
    """Insert or overwrite a job row. ``now`` becomes its place in the queue."""
    with get_db_cursor() as cursor:
        cursor.execute(
            """
            INSERT INTO calendar_sync_jobs (
                id, connection_id, appointment_id, external_event_id, operation,
                trigger, automatic, starts_at, serialization_key, status, parked,
                attempts, next_retry_at, last_error, error_class, created_at,
                enqueued_at, updated_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (id)
            DO UPDATE SET
                connection_id = EXCLUDED.connection_id,
                trigger = EXCLUDED.trigger,
                automatic = EXCLUDED.automatic,
                status = EXCLUDED.status,
                parked = EXCLUDED.parked,
                attempts = EXCLUDED.attempts,
                next_retry_at = EXCLUDED.next_retry_at,
                last_error = EXCLUDED.last_error,
                error_class = EXCLUDED.error_class,
                enqueued_at = EXCLUDED.enqueued_at,
                updated_at = EXCLUDED.updated_at
            """,
            (
                job.id,
                job.connection_id,
                job.appointment_id,
                job.external_event_id,
                job.operation,
                job.trigger,
                job.automatic,
                job.starts_at,
                job.serialization_key,
                job.status,
                job.parked,
                job.attempts,
                job.next_retry_at,
                job.last_error,
                job.error_class,
                job.created_at,
                now,
                now,
            ),
        )


def get_job(job_id: str) -> Optional[SyncJob]:
    with get_db_cursor() as cursor:
        cursor.execute(
            f"SELECT {_COLUMNS} FROM calendar_sync_jobs WHERE id = %s",
            (job_id,),
        )
        row = cursor.fetchone()
        return _row_to_job(row) if row else None


def claim_job(job_id: str, now: datetime) -> tuple[ClaimOutcome, Optional[SyncJob]]:
    """Atomically move a due job from queued to running.

    Returns ``busy`` when another job with the same serialization key is
    running, ``early`` when the job is not due yet and ``gone`` when it was
    finished, discarded, parked or is already running.
    """
    try:
        with get_db_cursor() as cursor:
            cursor.execute(
                f"""
                UPDATE calendar_sync_jobs
                SET status = 'running',
                    next_retry_at = NULL,
                    updated_at = %s
                WHERE id = %s
                  AND status = 'queued'
                  AND NOT parked
                  AND (next_retry_at IS NULL OR next_retry_at <= %s)
                RETURNING {_COLUMNS}
                """,
                (now, job_id, now),
            )
            row = cursor.fetchone()
            if row is not None:
                return "claimed", _row_to_job(row)

            cursor.execute(
                "SELECT status, parked, next_retry_at FROM calendar_sync_jobs WHERE id = %s",
                (job_id,),
            )
            state = cursor.fetchone()
    except UniqueViolation:
        logger.debug(f"Sync job is waiting on a running sibling: job_id={job_id}")
        return "busy", None

    if state is None:
        return "gone", None
    status, parked, next_retry_at = state
    if status == "queued" and not parked and next_retry_at is not None and next_retry_at > now:
        return "early", None
    return "gone", None


def next_due_job_ids(now: datetime, limit: int = 50) -> list[str]:
    """Ids of due queued jobs whose appointment has nothing running, oldest first."""
    with get_db_cursor() as cursor:
        cursor.execute(
            """
            SELECT j.id
            FROM calendar_sync_jobs j
            WHERE j.status = 'queued'
              AND NOT j.parked
              AND (j.next_retry_at IS NULL OR j.next_retry_at <= %s)
              AND NOT EXISTS (
                  SELECT 1 FROM calendar_sync_jobs r
                  WHERE r.status = 'running' AND r.serialization_key = j.serialization_key
              )
            ORDER BY COALESCE(j.next_retry_at, j.enqueued_at), j.enqueued_at
            LIMIT %s
            """,
            (now, limit),
        )
        return [row[0] for row in cursor.fetchall()]


def delete_job(job_id: str) -> bool:
    with get_db_cursor() as cursor:
        cursor.execute("DELETE FROM calendar_sync_jobs WHERE id = %s", (job_id,))
        return cursor.rowcount > 0


def discard_queued(appointment_id: str, operations: Iterable[str]) -> list[SyncJob]:
    """Delete queued (including parked) jobs of the given operations for an appointment."""
    with get_db_cursor() as cursor:
        cursor.execute(
            f"""
            DELETE FROM calendar_sync_jobs
            WHERE appointment_id = %s
              AND status = 'queued'
              AND operation = ANY(%s)
            RETURNING {_COLUMNS}
            """,
            (appointment_id, list(operations)),
        )
        return [_row_to_job(row) for row in cursor.fetchall()]


def list_jobs(
    status: Optional[str] = None,
    parked: Optional[bool] = None,
    connection_id: Optional[str] = None,
) -> list[SyncJob]:
    conditions = []
    params: list = []
    if status is not None:
        conditions.append("status = %s")
        params.append(status)
    if parked is not None:
        conditions.append("parked = %s")
        params.append(parked)
    if connection_id is not None:
        conditions.append("connection_id = %s")
        params.append(connection_id)
    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

    with get_db_cursor() as cursor:
        cursor.execute(
            f"""
            SELECT {_COLUMNS}
            FROM calendar_sync_jobs
            {where}
            ORDER BY COALESCE(next_retry_at, enqueued_at), enqueued_at
            """,
            tuple(params),
        )
        return [_row_to_job(row) for row in cursor.fetchall()]


def count_jobs(status: str, parked: Optional[bool] = None) -> int:
    with get_db_cursor() as cursor:
        if parked is None:
            cursor.execute(
                "SELECT COUNT(*) FROM calendar_sync_jobs WHERE status = %s",
                (status,),
            )
        else:
            cursor.execute(
                "SELECT COUNT(*) FROM calendar_sync_jobs WHERE status = %s AND parked = %s",
                (status, parked),
            )
        row = cursor.fetchone()
        return row[0] if row else 0


def release_parked(connection_id: str, now: datetime) -> list[SyncJob]:
    """Un-park every job held back for the connection and return them."""
    with get_db_cursor() as cursor:
        cursor.execute(
            f"""
            UPDATE calendar_sync_jobs
            SET parked = FALSE,
                enqueued_at = %s,
                updated_at = %s
            WHERE connection_id = %s AND parked
            RETURNING {_COLUMNS}
            """,
            (now, now, connection_id),
        )
        jobs = [_row_to_job(row) for row in cursor.fetchall()]
    logger.info(f"Released parked sync jobs: connection_id={connection_id}, count={len(jobs)}")
    return jobs


def delete_failed_for_appointment(appointment_id: str) -> list[SyncJob]:
    """Remove the appointment's terminally failed jobs, oldest first."""
    with get_db_cursor() as cursor:
        cursor.execute(
            f"""
            DELETE FROM calendar_sync_jobs
            WHERE appointment_id = %s AND status = 'failed_terminal'
            RETURNING {_COLUMNS}
            """,
            (appointment_id,),
        )
        jobs = [_row_to_job(row) for row in cursor.fetchall()]
    return sorted(jobs, key=lambda job: job.created_at)


def reset_stalled(before: datetime, now: datetime) -> list[SyncJob]:
    """Put jobs left running by a dead worker back in the queue."""
    with get_db_cursor() as cursor:
        cursor.execute(
            f"""
            UPDATE calendar_sync_jobs
            SET status = 'queued',
                enqueued_at = %s,
                updated_at = %s
            WHERE status = 'running' AND updated_at < %s
            RETURNING {_COLUMNS}
            """,
            (now, now, before),
        )
        return [_row_to_job(row) for row in cursor.fetchall()]


def list_overdue(before: datetime) -> list[SyncJob]:
    """Queued jobs that should have run before ``before``; their dispatch was lost."""
    with get_db_cursor() as cursor:
        cursor.execute(
            f"""
            SELECT {_COLUMNS}
            FROM calendar_sync_jobs
            WHERE status = 'queued'
              AND NOT parked
              AND COALESCE(next_retry_at, enqueued_at) < %s
            ORDER BY COALESCE(next_retry_at, enqueued_at)
            """,
            (before,),
        )
        return [_row_to_job(row) for row in cursor.fetchall()]
