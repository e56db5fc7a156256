"""Database operations for the fingerprint / appointment / event mapping index."""

import logging
from datetime import datetime, timezone
from typing import Optional

from grooming.models.calendar import EventMapping
from .connection import get_db_cursor

logger = logging.getLogger(__name__)

_COLUMNS = """
    fingerprint, external_event_id, connection_id, appointment_id,
    sync_direction, last_synced_at
"""


def _row_to_mapping(row: tuple) -> EventMapping:
    (
        fingerprint,
        external_event_id,
        connection_id,
        appointment_id,
        sync_direction,
        last_synced_at,
    ) = row
    return EventMapping(
        fingerprint=fingerprint,
        external_event_id=external_event_id,
        connection_id=connection_id,
        appointment_id=appointment_id,
        sync_direction=sync_direction,
        last_synced_at=last_synced_at,
    )


def _get_one(column: str, value: str) -> Optional[EventMapping]:
    with get_db_cursor() as cursor:
        cursor.execute(
            f"SELECT {_COLUMNS} FROM calendar_event_mappings WHERE {column} = %s",
            (value,),
        )
        row = cursor.fetchone()
        return _row_to_mapping(row) if row else None


def get_by_fingerprint(fingerprint: str) -> Optional[EventMapping]:
    return _get_one("fingerprint", fingerprint)


def get_by_appointment(appointment_id: str) -> Optional[EventMapping]:
    return _get_one("appointment_id", appointment_id)


def get_by_event(external_event_id: str) -> Optional[EventMapping]:
    return _get_one("external_event_id", external_event_id)


def insert_mapping(mapping: EventMapping) -> bool:
    """Insert a mapping unless any unique key (fingerprint, event, appointment) is taken.

    Returns:
        True if this call inserted the row, False if another writer got there first.
    """
    with get_db_cursor() as cursor:
        cursor.execute(
            """
            INSERT INTO calendar_event_mappings (
                fingerprint, external_event_id, connection_id, appointment_id,
                sync_direction, last_synced_at, created_at, updated_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, NOW(), NOW())
            ON CONFLICT DO NOTHING
            """,
            (
                mapping.fingerprint,
                mapping.external_event_id,
                mapping.connection_id,
                mapping.appointment_id,
                mapping.sync_direction,
                mapping.last_synced_at or datetime.now(timezone.utc),
            ),
        )
        inserted = cursor.rowcount == 1

    logger.debug(
        f"Insert event mapping: fingerprint={mapping.fingerprint[:12]}, "
        f"external_event_id={mapping.external_event_id}, "
        f"appointment_id={mapping.appointment_id}, inserted={inserted}"
    )
    return inserted


def touch_mapping(
    external_event_id: str,
    synced_at: datetime,
    fingerprint: Optional[str] = None,
    appointment_id: Optional[str] = None,
) -> bool:
    """Mark a mapping as synced, optionally moving it to a new fingerprint.

    The fingerprint only moves if no other mapping already holds it.
    """
    with get_db_cursor() as cursor:
        cursor.execute(
            """
            UPDATE calendar_event_mappings m
            SET last_synced_at = %s,
                appointment_id = COALESCE(%s, m.appointment_id),
                fingerprint = CASE
                    WHEN %s::text IS NULL THEN m.fingerprint
                    WHEN EXISTS (
                        SELECT 1 FROM calendar_event_mappings o
                        WHERE o.fingerprint = %s AND o.external_event_id <> m.external_event_id
                    ) THEN m.fingerprint
                    ELSE %s
                END,
                updated_at = NOW()
            WHERE m.external_event_id = %s
            """,
            (
                synced_at,
                appointment_id,
                fingerprint,
                fingerprint,
                fingerprint,
                external_event_id,
            ),
        )
        return cursor.rowcount > 0


def delete_by_appointment(appointment_id: str) -> bool:
    with get_db_cursor() as cursor:
        cursor.execute(
            "DELETE FROM calendar_event_mappings WHERE appointment_id = %s",
            (appointment_id,),
        )
        return cursor.rowcount > 0


def delete_by_event(external_event_id: str) -> bool:
    with get_db_cursor() as cursor:
        cursor.execute(
            "DELETE FROM calendar_event_mappings WHERE external_event_id = %s",
            (external_event_id,),
        )
        return cursor.rowcount > 0
