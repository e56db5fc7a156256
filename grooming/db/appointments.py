"""Read/write gateway into the booking system's appointment tables.

The booking subsystem owns these tables. The sync engine reads appointments
to build calendar events and only writes in narrow cases: applying a time
change made in the calendar, staging unmatched calendar events for staff
review, and creating the appointment when staff confirm a staged event.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from grooming.models.appointment import Addon, Appointment, Customer, Pet, Service
from grooming.models.calendar import ImportCandidate, ImportStatus, StagedImport
from .connection import get_db_cursor

logger = logging.getLogger(__name__)


def get_appointment_for_sync(appointment_id: str) -> Optional[Appointment]:
    """Load an appointment with its customer, pet, service and add-ons."""
    with get_db_cursor() as cursor:
        cursor.execute(
            """
            SELECT a.id, a.scheduled_at, a.duration_minutes, a.status, a.notes,
                   a.updated_at,
                   c.id, c.first_name, c.last_name, c.email, c.phone,
                   p.id, p.name, p.size,
                   s.id, s.name, s.duration_minutes
            FROM appointments a
            JOIN customers c ON c.id = a.customer_id
            LEFT JOIN pets p ON p.id = a.pet_id
            LEFT JOIN services s ON s.id = a.service_id
            WHERE a.id = %s
            """,
            (appointment_id,),
        )
        row = cursor.fetchone()
        if row is None:
            return None

        cursor.execute(
            """
            SELECT ad.name, COALESCE(ad.duration_minutes, 0)
            FROM appointment_addons aa
            JOIN addons ad ON ad.id = aa.addon_id
            WHERE aa.appointment_id = %s
            ORDER BY ad.name
            """,
            (appointment_id,),
        )
        addon_rows = cursor.fetchall()

    (
        appt_id,
        scheduled_at,
        duration_minutes,
        status,
        notes,
        updated_at,
        customer_id,
        first_name,
        last_name,
        email,
        phone,
        pet_id,
        pet_name,
        pet_size,
        service_id,
        service_name,
        service_duration,
    ) = row

    if scheduled_at.tzinfo is None:
        scheduled_at = scheduled_at.replace(tzinfo=timezone.utc)

    return Appointment(
        id=appt_id,
        customer=Customer(
            id=customer_id,
            first_name=first_name or "",
            last_name=last_name or "",
            email=email,
            phone=phone,
        ),
        pet=Pet(id=pet_id, name=pet_name, size=pet_size) if pet_id else None,
        service=(
            Service(id=service_id, name=service_name, duration_minutes=service_duration)
            if service_id
            else None
        ),
        addons=[Addon(name=name, duration_minutes=minutes) for name, minutes in addon_rows],
        scheduled_at=scheduled_at,
        duration_minutes=duration_minutes,
        status=status or "pending",
        notes=notes,
        updated_at=updated_at,
    )


def apply_external_change(
    appointment_id: str, scheduled_at: datetime, duration_minutes: int
) -> bool:
    """Move an appointment to the time staff set in the calendar.

    Cancelled and no-show appointments are never touched.
    """
    with get_db_cursor() as cursor:
        cursor.execute(
            """
            UPDATE appointments
            SET scheduled_at = %s,
                duration_minutes = %s,
                updated_at = %s
            WHERE id = %s
              AND status NOT IN ('cancelled', 'no_show')
            """,
            (scheduled_at, duration_minutes, datetime.now(timezone.utc), appointment_id),
        )
        updated = cursor.rowcount > 0

    logger.info(
        f"Applied calendar change to appointment: appointment_id={appointment_id}, "
        f"scheduled_at={scheduled_at.isoformat()}, updated={updated}"
    )
    return updated


def stage_import(connection_id: str, candidate: ImportCandidate) -> bool:
    """Stage an unmatched calendar event for staff to turn into a booking.

    Idempotent per external event id: re-staging refreshes the details.
    """
    duration = candidate.end - candidate.start
    with get_db_cursor() as cursor:
        cursor.execute(
            """
            INSERT INTO calendar_import_candidates (
                external_event_id, connection_id, summary, starts_at, ends_at,
                all_day, customer_name, customer_email, customer_phone,
                pet_name, service_name, notes, status, created_at, updated_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, 'pending', NOW(), NOW())
            ON CONFLICT (external_event_id)
            DO UPDATE SET
                summary = EXCLUDED.summary,
                starts_at = EXCLUDED.starts_at,
                ends_at = EXCLUDED.ends_at,
                all_day = EXCLUDED.all_day,
                customer_name = EXCLUDED.customer_name,
                customer_email = EXCLUDED.customer_email,
                customer_phone = EXCLUDED.customer_phone,
                pet_name = EXCLUDED.pet_name,
                service_name = EXCLUDED.service_name,
                notes = EXCLUDED.notes,
                updated_at = NOW()
            WHERE calendar_import_candidates.status = 'pending'
            """,
            (
                candidate.external_event_id,
                connection_id,
                candidate.summary,
                candidate.start,
                candidate.end,
                candidate.all_day,
                candidate.customer_name,
                candidate.customer_email,
                candidate.customer_phone,
                candidate.pet_name,
                candidate.service_name,
                candidate.notes,
            ),
        )
        staged = cursor.rowcount > 0

    logger.info(
        f"Staged calendar import candidate: external_event_id={candidate.external_event_id}, "
        f"start={candidate.start.isoformat()}, duration_minutes={int(duration / timedelta(minutes=1))}, "
        f"staged={staged}"
    )
    return staged


def discard_import(external_event_id: str) -> bool:
    """Withdraw a pending candidate whose calendar event was deleted."""
    with get_db_cursor() as cursor:
        cursor.execute(
            """
            DELETE FROM calendar_import_candidates
            WHERE external_event_id = %s AND status = 'pending'
            """,
            (external_event_id,),
        )
        return cursor.rowcount > 0



_IMPORT_COLUMNS = """
    external_event_id, connection_id, summary, starts_at, ends_at, all_day,
    customer_name, customer_email, customer_phone, pet_name, service_name,
    notes, status, appointment_id, reviewed_by, reviewed_at, created_at
"""


def _row_to_import(row: tuple) -> StagedImport:
    (
        external_event_id,
        connection_id,
        summary,
        starts_at,
        ends_at,
        all_day,
        customer_name,
        customer_email,
        customer_phone,
        pet_name,
        service_name,
        notes,
        status,
        appointment_id,
        reviewed_by,
        reviewed_at,
        created_at,
    ) = row
    return StagedImport(
        external_event_id=external_event_id,
        connection_id=connection_id,
        summary=summary,
        starts_at=starts_at,
        ends_at=ends_at,
        all_day=all_day,
        customer_name=customer_name,
        customer_email=customer_email,
        customer_phone=customer_phone,
        pet_name=pet_name,
        service_name=service_name,
        notes=notes,
        status=status,
        appointment_id=appointment_id,
        reviewed_by=reviewed_by,
        reviewed_at=reviewed_at,
        created_at=created_at,
    )


def list_imports(status: Optional[ImportStatus] = "pending") -> list[StagedImport]:
    """Staged candidates, soonest first. ``status=None`` lists every candidate."""
    with get_db_cursor() as cursor:
        if status is None:
            cursor.execute(
                f"SELECT {_IMPORT_COLUMNS} FROM calendar_import_candidates ORDER BY starts_at"
            )
        else:
            cursor.execute(
                f"""
                SELECT {_IMPORT_COLUMNS}
                FROM calendar_import_candidates
                WHERE status = %s
                ORDER BY starts_at
                """,
                (status,),
            )
        return [_row_to_import(row) for row in cursor.fetchall()]


def get_import(external_event_id: str) -> Optional[StagedImport]:
    with get_db_cursor() as cursor:
        cursor.execute(
            f"""
            SELECT {_IMPORT_COLUMNS}
            FROM calendar_import_candidates
            WHERE external_event_id = %s
            """,
            (external_event_id,),
        )
        row = cursor.fetchone()
        return _row_to_import(row) if row else None


def create_appointment_from_import(
    external_event_id: str,
    customer_id: str,
    pet_id: Optional[str],
    service_id: Optional[str],
    reviewed_by: str,
) -> Optional[str]:
    """Turn a pending candidate into a confirmed appointment.

    Both writes happen in one transaction. Returns the new appointment id, or
    None if the candidate is not pending (already reviewed or withdrawn).
    """
    now = datetime.now(timezone.utc)
    with get_db_cursor() as cursor:
        cursor.execute(
            """
            SELECT starts_at, ends_at, notes
            FROM calendar_import_candidates
            WHERE external_event_id = %s AND status = 'pending'
            FOR UPDATE
            """,
            (external_event_id,),
        )
        row = cursor.fetchone()
        if row is None:
            return None
        starts_at, ends_at, notes = row

        cursor.execute(
            """
            INSERT INTO appointments (
                customer_id, pet_id, service_id, scheduled_at, duration_minutes,
                status, notes, created_at, updated_at
            )
            VALUES (%s, %s, %s, %s, %s, 'confirmed', %s, %s, %s)
            RETURNING id
            """,
            (
                customer_id,
                pet_id,
                service_id,
                starts_at,
                int((ends_at - starts_at) / timedelta(minutes=1)),
                notes,
                now,
                now,
            ),
        )
        created = cursor.fetchone()
        if created is None:
            raise RuntimeError(
                f"Failed to create appointment from import: external_event_id={external_event_id}"
            )
        appointment_id = str(created[0])

        cursor.execute(
            """
            UPDATE calendar_import_candidates
            SET status = 'accepted',
                appointment_id = %s,
                reviewed_by = %s,
                reviewed_at = %s,
                updated_at = %s
            WHERE external_event_id = %s
            """,
            (appointment_id, reviewed_by, now, now, external_event_id),
        )

    logger.info(
        f"Created appointment from calendar import: external_event_id={external_event_id}, "
        f"appointment_id={appointment_id}, reviewed_by={reviewed_by}"
    )
    return appointment_id


def dismiss_import(external_event_id: str, reviewed_by: str) -> bool:
    """Mark a pending candidate as not a booking. It stays staged so rescans skip it."""
    now = datetime.now(timezone.utc)
    with get_db_cursor() as cursor:
        cursor.execute(
            """
            UPDATE calendar_import_candidates
            SET status = 'dismissed',
                reviewed_by = %s,
                reviewed_at = %s,
                updated_at = %s
            WHERE external_event_id = %s AND status = 'pending'
            """,
            (reviewed_by, now, now, external_event_id),
        )
        dismissed = cursor.rowcount > 0
    logger.info(
        f"Dismissed calendar import: external_event_id={external_event_id}, "
        f"reviewed_by={reviewed_by}, dismissed={dismissed}"
    )
    return dismissed
