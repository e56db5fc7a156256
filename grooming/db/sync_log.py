"""Database operations for the append-only calendar sync log."""

import logging
from datetime import datetime
from typing import Optional

from psycopg import sql

from grooming.models.sync import SyncLogEntry, SyncLogFilters
from .connection import get_db_cursor

logger = logging.getLogger(__name__)

_COLUMNS = """
    id, created_at, connection_id, job_id, appointment_id, external_event_id,
    operation, outcome, error_class, error_code, message, retry_count, tags,
    duration_ms
"""


def _row_to_entry(row: tuple) -> SyncLogEntry:
    (
        entry_id,
        created_at,
        connection_id,
        job_id,
        appointment_id,
        external_event_id,
        operation,
        outcome,
        error_class,
        error_code,
        message,
        retry_count,
        tags,
        duration_ms,
    ) = row
    return SyncLogEntry(
        id=entry_id,
        created_at=created_at,
        connection_id=connection_id,
        job_id=job_id,
        appointment_id=appointment_id,
        external_event_id=external_event_id,
        operation=operation,
        outcome=outcome,
        error_class=error_class,
        error_code=error_code,
        message=message or "",
        retry_count=retry_count or 0,
        tags=tuple(tags or ()),
        duration_ms=duration_ms,
    )


def insert_entry(entry: SyncLogEntry) -> SyncLogEntry:
    """Append an entry and return it with its database id."""
    with get_db_cursor() as cursor:
        cursor.execute(
            f"""
            INSERT INTO calendar_sync_log (
                created_at, connection_id, job_id, appointment_id,
                external_event_id, operation, outcome, error_class, error_code,
                message, retry_count, tags, duration_ms
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING {_COLUMNS}
            """,
            (
                entry.created_at,
                entry.connection_id,
                entry.job_id,
                entry.appointment_id,
                entry.external_event_id,
                entry.operation,
                entry.outcome,
                entry.error_class,
                entry.error_code,
                entry.message,
                entry.retry_count,
                list(entry.tags),
                entry.duration_ms,
            ),
        )
        row = cursor.fetchone()
        if row is None:
            raise RuntimeError(f"Failed to insert sync log entry for job_id={entry.job_id}")
        return _row_to_entry(row)


def query_entries(filters: SyncLogFilters) -> tuple[list[SyncLogEntry], int]:
    """Return one page of entries (newest first) and the total match count."""
    conditions: list[sql.Composable] = []
    params: list = []

    if filters.connection_id is not None:
        conditions.append(sql.SQL("connection_id = %s"))
        params.append(filters.connection_id)
    if filters.appointment_id is not None:
        conditions.append(sql.SQL("appointment_id = %s"))
        params.append(filters.appointment_id)
    if filters.operation is not None:
        conditions.append(sql.SQL("operation = %s"))
        params.append(filters.operation)
    if filters.outcome is not None:
        conditions.append(sql.SQL("outcome = %s"))
        params.append(filters.outcome)
    if filters.error_class is not None:
        conditions.append(sql.SQL("error_class = %s"))
        params.append(filters.error_class)
    if filters.tag is not None:
        conditions.append(sql.SQL("%s = ANY(tags)"))
        params.append(filters.tag)
    if filters.since is not None:
        conditions.append(sql.SQL("created_at >= %s"))
        params.append(filters.since)
    if filters.until is not None:
        conditions.append(sql.SQL("created_at < %s"))
        params.append(filters.until)

    where_clause = sql.SQL(" AND ").join(conditions) if conditions else sql.SQL("TRUE")

    with get_db_cursor() as cursor:
        cursor.execute(
            sql.SQL("SELECT COUNT(*) FROM calendar_sync_log WHERE {where_clause}").format(
                where_clause=where_clause
            ),
            params,
        )
        count_row = cursor.fetchone()
        total = count_row[0] if count_row else 0

        cursor.execute(
            sql.SQL("""
                SELECT {columns}
                FROM calendar_sync_log
                WHERE {where_clause}
                ORDER BY created_at DESC, id DESC
                LIMIT %s OFFSET %s
            """).format(columns=sql.SQL(_COLUMNS), where_clause=where_clause),
            [*params, filters.limit, filters.offset],
        )
        entries = [_row_to_entry(row) for row in cursor.fetchall()]

    return entries, total


def last_failure_for(appointment_id: str) -> Optional[SyncLogEntry]:
    """The most recent failed job entry for an appointment."""
    with get_db_cursor() as cursor:
        cursor.execute(
            f"""
            SELECT {_COLUMNS}
            FROM calendar_sync_log
            WHERE appointment_id = %s
              AND outcome = 'failure'
              AND job_id IS NOT NULL
            ORDER BY created_at DESC, id DESC
            LIMIT 1
            """,
            (appointment_id,),
        )
        row = cursor.fetchone()
        return _row_to_entry(row) if row else None


def delete_before(cutoff: datetime) -> int:
    """Retention: drop entries older than ``cutoff``. Returns the number removed."""
    with get_db_cursor() as cursor:
        cursor.execute(
            "DELETE FROM calendar_sync_log WHERE created_at < %s",
            (cutoff,),
        )
        deleted = cursor.rowcount
    logger.info(f"Pruned sync log: cutoff={cutoff.isoformat()}, deleted={deleted}")
    return deleted
