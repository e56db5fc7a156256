"""Database operations for Google Calendar connections.

OAuth tokens are encrypted before they are written and decrypted on read.
"""

import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from grooming.models.calendar import CalendarConnection, ConnectionState
from .connection import get_db_cursor
from .token_cipher import decrypt_token, encrypt_token

logger = logging.getLogger(__name__)

_COLUMNS = """
    id, admin_id, calendar_email, calendar_id, access_token, refresh_token,
    state, calendar_name, is_primary_calendar, token_expires_at, last_sync_at,
    pause_reason, paused_at, state_changed_by, consecutive_failures,
    webhook_channel_id, webhook_resource_id, webhook_token, webhook_expires_at,
    sync_token, created_at, updated_at
"""


def _row_to_connection(row: tuple) -> CalendarConnection:
    (
        connection_id,
        admin_id,
        calendar_email,
        calendar_id,
        access_token,
        refresh_token,
        state,
        calendar_name,
        is_primary_calendar,
        token_expires_at,
        last_sync_at,
        pause_reason,
        paused_at,
        state_changed_by,
        consecutive_failures,
        webhook_channel_id,
        webhook_resource_id,
        webhook_token,
        webhook_expires_at,
        sync_token,
        created_at,
        updated_at,
    ) = row
    return CalendarConnection(
        id=connection_id,
        admin_id=admin_id,
        calendar_email=calendar_email,
        calendar_id=calendar_id,
        access_token=decrypt_token(access_token),
        refresh_token=decrypt_token(refresh_token),
        state=state,
        calendar_name=calendar_name,
        is_primary_calendar=is_primary_calendar,
        token_expires_at=token_expires_at,
        last_sync_at=last_sync_at,
        pause_reason=pause_reason,
        paused_at=paused_at,
        state_changed_by=state_changed_by,
        consecutive_failures=consecutive_failures,
        webhook_channel_id=webhook_channel_id,
        webhook_resource_id=webhook_resource_id,
        webhook_token=webhook_token,
        webhook_expires_at=webhook_expires_at,
        sync_token=sync_token,
        created_at=created_at,
        updated_at=updated_at,
    )


def get_connection(connection_id: str) -> Optional[CalendarConnection]:
    with get_db_cursor() as cursor:
        cursor.execute(
            f"SELECT {_COLUMNS} FROM calendar_connections WHERE id = %s",
            (connection_id,),
        )
        row = cursor.fetchone()
        return _row_to_connection(row) if row else None


def get_connection_for_admin(admin_id: str) -> Optional[CalendarConnection]:
    with get_db_cursor() as cursor:
        cursor.execute(
            f"SELECT {_COLUMNS} FROM calendar_connections WHERE admin_id = %s",
            (admin_id,),
        )
        row = cursor.fetchone()
        return _row_to_connection(row) if row else None


def get_active_connection() -> Optional[CalendarConnection]:
    """Get the business's calendar connection (the most recently updated one)."""
    with get_db_cursor() as cursor:
        cursor.execute(
            f"""
            SELECT {_COLUMNS}
            FROM calendar_connections
            ORDER BY updated_at DESC
            LIMIT 1
            """
        )
        row = cursor.fetchone()
        return _row_to_connection(row) if row else None


def get_connection_by_channel(channel_id: str) -> Optional[CalendarConnection]:
    with get_db_cursor() as cursor:
        cursor.execute(
            f"SELECT {_COLUMNS} FROM calendar_connections WHERE webhook_channel_id = %s",
            (channel_id,),
        )
        row = cursor.fetchone()
        return _row_to_connection(row) if row else None


def upsert_connection(
    admin_id: str,
    calendar_email: str,
    calendar_id: str,
    access_token: str,
    refresh_token: str,
    token_expires_at: Optional[datetime],
    calendar_name: Optional[str] = None,
    changed_by: Optional[str] = None,
) -> CalendarConnection:
    """Create or replace the admin's connection.

    Reconnecting always lands in the ``connected`` state with the pause
    reason and failure counter cleared.
    """
    now = datetime.now(timezone.utc)
    with get_db_cursor() as cursor:
        cursor.execute(
            f"""
            INSERT INTO calendar_connections (
                id, admin_id, calendar_email, calendar_id, access_token,
                refresh_token, token_expires_at, calendar_name, is_primary_calendar,
                state, state_changed_by, created_at, updated_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, TRUE, 'connected', %s, %s, %s)
            ON CONFLICT (admin_id)
            DO UPDATE SET
                calendar_email = EXCLUDED.calendar_email,
                calendar_id = EXCLUDED.calendar_id,
                access_token = EXCLUDED.access_token,
                refresh_token = EXCLUDED.refresh_token,
                token_expires_at = EXCLUDED.token_expires_at,
                calendar_name = EXCLUDED.calendar_name,
                is_primary_calendar = TRUE,
                state = 'connected',
                pause_reason = NULL,
                paused_at = NULL,
                consecutive_failures = 0,
                sync_token = NULL,
                state_changed_by = EXCLUDED.state_changed_by,
                updated_at = EXCLUDED.updated_at
            RETURNING {_COLUMNS}
            """,
            (
                uuid4().hex,
                admin_id,
                calendar_email,
                calendar_id,
                encrypt_token(access_token),
                encrypt_token(refresh_token),
                token_expires_at,
                calendar_name,
                changed_by,
                now,
                now,
            ),
        )
        row = cursor.fetchone()
        if row is None:
            raise RuntimeError(f"Failed to upsert calendar connection for admin_id={admin_id}")
        connection = _row_to_connection(row)

    logger.info(
        f"Upserted calendar connection: connection_id={connection.id}, "
        f"admin_id={admin_id}, calendar_id={calendar_id}"
    )
    return connection


def delete_connection(connection_id: str) -> bool:
    with get_db_cursor() as cursor:
        cursor.execute(
            "DELETE FROM calendar_connections WHERE id = %s",
            (connection_id,),
        )
        deleted = cursor.rowcount > 0
    logger.info(f"Deleted calendar connection: connection_id={connection_id}, deleted={deleted}")
    return deleted


def update_tokens(
    connection_id: str,
    access_token: str,
    token_expires_at: Optional[datetime],
    refresh_token: Optional[str] = None,
) -> None:
    """Persist a refreshed access token (and a rotated refresh token, if any)."""
    with get_db_cursor() as cursor:
        cursor.execute(
            """
            UPDATE calendar_connections
            SET access_token = %s,
                token_expires_at = %s,
                refresh_token = COALESCE(%s, refresh_token),
                updated_at = %s
            WHERE id = %s
            """,
            (
                encrypt_token(access_token),
                token_expires_at,
                encrypt_token(refresh_token),
                datetime.now(timezone.utc),
                connection_id,
            ),
        )


def update_calendar(
    connection_id: str,
    calendar_id: str,
    calendar_name: Optional[str],
    is_primary_calendar: bool,
) -> Optional[CalendarConnection]:
    """Point the connection at another calendar.

    The incremental sync token belongs to the old calendar, so it is cleared.
    """
    with get_db_cursor() as cursor:
        cursor.execute(
            f"""
            UPDATE calendar_connections
            SET calendar_id = %s,
                calendar_name = %s,
                is_primary_calendar = %s,
                sync_token = NULL,
                updated_at = %s
            WHERE id = %s
            RETURNING {_COLUMNS}
            """,
            (
                calendar_id,
                calendar_name,
                is_primary_calendar,
                datetime.now(timezone.utc),
                connection_id,
            ),
        )
        row = cursor.fetchone()
        return _row_to_connection(row) if row else None


def update_state(
    connection_id: str,
    state: ConnectionState,
    changed_by: str,
    pause_reason: Optional[str] = None,
    paused_at: Optional[datetime] = None,
    reset_failures: bool = False,
) -> Optional[CalendarConnection]:
    """Transition the connection's lifecycle state, recording who caused it."""
    with get_db_cursor() as cursor:
        cursor.execute(
            f"""
            UPDATE calendar_connections
            SET state = %s,
                pause_reason = %s,
                paused_at = %s,
                state_changed_by = %s,
                consecutive_failures = CASE WHEN %s THEN 0 ELSE consecutive_failures END,
                updated_at = %s
            WHERE id = %s
            RETURNING {_COLUMNS}
            """,
            (
                state,
                pause_reason,
                paused_at,
                changed_by,
                reset_failures,
                datetime.now(timezone.utc),
                connection_id,
            ),
        )
        row = cursor.fetchone()
        return _row_to_connection(row) if row else None


def record_success(connection_id: str, synced_at: datetime) -> None:
    with get_db_cursor() as cursor:
        cursor.execute(
            """
            UPDATE calendar_connections
            SET last_sync_at = %s,
                consecutive_failures = 0,
                updated_at = %s
            WHERE id = %s
            """,
            (synced_at, synced_at, connection_id),
        )


def increment_failures(connection_id: str) -> int:
    """Atomically bump the consecutive-failure counter and return the new value."""
    with get_db_cursor() as cursor:
        cursor.execute(
            """
            UPDATE calendar_connections
            SET consecutive_failures = consecutive_failures + 1,
                updated_at = %s
            WHERE id = %s
            RETURNING consecutive_failures
            """,
            (datetime.now(timezone.utc), connection_id),
        )
        row = cursor.fetchone()
        return row[0] if row else 0


def update_webhook(
    connection_id: str,
    channel_id: Optional[str],
    resource_id: Optional[str],
    token: Optional[str],
    expires_at: Optional[datetime],
) -> None:
    with get_db_cursor() as cursor:
        cursor.execute(
            """
            UPDATE calendar_connections
            SET webhook_channel_id = %s,
                webhook_resource_id = %s,
                webhook_token = %s,
                webhook_expires_at = %s,
                updated_at = %s
            WHERE id = %s
            """,
            (
                channel_id,
                resource_id,
                token,
                expires_at,
                datetime.now(timezone.utc),
                connection_id,
            ),
        )


def update_sync_token(connection_id: str, sync_token: Optional[str]) -> None:
    with get_db_cursor() as cursor:
        cursor.execute(
            """
            UPDATE calendar_connections
            SET sync_token = %s, updated_at = %s
            WHERE id = %s
            """,
            (sync_token, datetime.now(timezone.utc), connection_id),
        )


def list_expiring_webhooks(before: datetime) -> list[CalendarConnection]:
    """Connections whose webhook channel expires before ``before``."""
    with get_db_cursor() as cursor:
        cursor.execute(
            f"""
            SELECT {_COLUMNS}
            FROM calendar_connections
            WHERE webhook_channel_id IS NOT NULL
              AND webhook_expires_at IS NOT NULL
              AND webhook_expires_at <= %s
              AND state <> 'error'
            ORDER BY webhook_expires_at
            """,
            (before,),
        )
        return [_row_to_connection(row) for row in cursor.fetchall()]
