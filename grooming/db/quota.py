"""Call-count ledger for the Google Calendar API quota."""

from datetime import datetime

from .connection import get_db_cursor


def increment_calls(window_start: datetime, weight: int = 1) -> int:
    """Atomically add ``weight`` calls to the window and return the new total.

    Concurrent workers all go through this single upsert, so the counter
    never undercounts.
    """
    with get_db_cursor() as cursor:
        cursor.execute(
            """
            INSERT INTO calendar_api_quota (window_start, call_count, updated_at)
            VALUES (%s, %s, NOW())
            ON CONFLICT (window_start)
            DO UPDATE SET
                call_count = calendar_api_quota.call_count + EXCLUDED.call_count,
                updated_at = NOW()
            RETURNING call_count
            """,
            (window_start, weight),
        )
        row = cursor.fetchone()
        if row is None:
            raise RuntimeError(f"Failed to record API calls for window {window_start}")
        return row[0]


def get_call_count(window_start: datetime) -> int:
    with get_db_cursor() as cursor:
        cursor.execute(
            "SELECT call_count FROM calendar_api_quota WHERE window_start = %s",
            (window_start,),
        )
        row = cursor.fetchone()
        return row[0] if row else 0


def delete_windows_before(cutoff: datetime) -> int:
    with get_db_cursor() as cursor:
        cursor.execute(
            "DELETE FROM calendar_api_quota WHERE window_start < %s",
            (cutoff,),
        )
        return cursor.rowcount
