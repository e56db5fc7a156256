"""Sync executor: performs exactly one attempt of one sync job.

``execute`` never raises. Every failure comes back as a classified
``SyncResult``; retry, escalation and logging are the orchestrator's job.
Follow-up work discovered during an attempt (scan fan-out, conflict
pushes, recreating deleted events) is returned as ``follow_ups``.
"""

import logging
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from grooming.db import appointments as appointments_db
from grooming.db import sync_settings as settings_db
from grooming.integrations.google.calendar_client import (
    GoogleCalendarClient,
    GoogleCalendarError,
)
from grooming.models.appointment import Appointment
from grooming.models.calendar import CalendarConnection
from grooming.models.sync import SyncJob, SyncResult, utc_now
from grooming.utils.timezone import ensure_utc
from .connections import ConnectionStore
from .duplicates import DuplicateResolver
from .errors import AppointmentNotFound, CalendarSyncError, TerminalResource, classify_exception
from .mapper import EVENT_SOURCE, EventMapper

logger = logging.getLogger(__name__)

# How far back a full listing looks when there is no incremental sync token.
FULL_SCAN_LOOKBACK = timedelta(days=7)

ClientFactory = Callable[[CalendarConnection], GoogleCalendarClient]


def _is_gone(error: GoogleCalendarError) -> bool:
    return error.status_code in (404, 410)


class SyncExecutor:
    def __init__(
        self,
        client_factory: ClientFactory,
        mapper: EventMapper,
        resolver: DuplicateResolver,
        connections: ConnectionStore,
        bookings=appointments_db,
        settings_repo=settings_db,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.client_factory = client_factory
        self.mapper = mapper
        self.resolver = resolver
        self.connections = connections
        self.bookings = bookings
        self.settings_repo = settings_repo
        self.clock = clock

    def execute(self, job: SyncJob) -> SyncResult:
        started = time.monotonic()
        try:
            connection = self.connections.require(job.connection_id)
            handler = {
                "push_create": self._push,
                "push_update": self._push,
                "push_delete": self._push_delete,
                "import_scan": self._import_scan,
                "import_create": self._import_create,
                "import_update": self._import_update,
            }[job.operation]
            result = handler(job, connection)
        except Exception as exc:
            error = classify_exception(exc)
            logger.warning(
                f"Sync attempt failed: job_id={job.id}, operation={job.operation}, "
                f"appointment_id={job.appointment_id}, error_class={error.error_class}, "
                f"error_code={error.code}, error={error.message}"
            )
            result = SyncResult(
                success=False,
                operation=job.operation,
                appointment_id=job.appointment_id,
                external_event_id=job.external_event_id,
                error=error,
                message=error.user_message,
            )
        result.duration_ms = int((time.monotonic() - started) * 1000)
        return result

    def probe(self, connection: CalendarConnection) -> Optional[CalendarSyncError]:
        """Cheap read against the calendar. Returns the classified error, if any."""
        try:
            self.client_factory(connection).get_calendar()
        except Exception as exc:
            return classify_exception(exc)
        return None

    def _load_appointment(self, appointment_id: Optional[str]) -> Appointment:
        if appointment_id is None:
            raise TerminalResource("Push job has no appointment id", code="INVALID_JOB")
        appointment = self.bookings.get_appointment_for_sync(appointment_id)
        if appointment is None:
            raise AppointmentNotFound(f"Appointment {appointment_id} not found")
        return appointment

    def _push(self, job: SyncJob, connection: CalendarConnection) -> SyncResult:
        appointment = self._load_appointment(job.appointment_id)
        if appointment.is_cancelled:
            # Status changed to cancelled/no-show since the job was queued.
            result = self._push_delete(job, connection)
            result.tags.append("converted-to-delete")
            return result

        payload = self.mapper.to_external_event(appointment)
        self.mapper.validate_payload(payload)
        body = payload.to_api()
        client = self.client_factory(connection)

        resolution = self.resolver.resolve_push(appointment, connection.calendar_id)
        if resolution.action == "update" and resolution.external_event_id is not None:
            event_id = resolution.external_event_id
            try:
                client.update_event(event_id, body)
            except GoogleCalendarError as e:
                if _is_gone(e):
                    raise TerminalResource(
                        f"Calendar event {event_id} no longer exists",
                        code=f"HTTP_{e.status_code}",
                        status_code=e.status_code,
                        user_message=(
                            "The calendar event was deleted in Google Calendar. "
                            "Use resync to recreate it."
                        ),
                    ) from e
                raise
            self.resolver.touch(
                event_id, fingerprint=resolution.fingerprint, appointment_id=appointment.id
            )
            tags = ["duplicate-prevented"] if job.operation == "push_create" else []
            return SyncResult(
                success=True,
                operation="push_update",
                appointment_id=appointment.id,
                external_event_id=event_id,
                message=f"Updated calendar event {event_id}",
                tags=tags,
            )

        created = client.create_event(body)
        event_id = created["id"]
        winner = self.resolver.register(
            resolution.fingerprint, event_id, connection.id, appointment_id=appointment.id
        )
        if winner != event_id:
            # A concurrent push registered first; keep its event, drop ours.
            client.delete_event(event_id)
            client.update_event(winner, body)
            self.resolver.touch(winner, appointment_id=appointment.id)
            return SyncResult(
                success=True,
                operation="push_update",
                appointment_id=appointment.id,
                external_event_id=winner,
                message=f"Adopted existing calendar event {winner}",
                tags=["duplicate-prevented", "race-lost"],
            )

        return SyncResult(
            success=True,
            operation="push_create",
            appointment_id=appointment.id,
            external_event_id=event_id,
            message=f"Created calendar event {event_id}",
        )

    def _push_delete(self, job: SyncJob, connection: CalendarConnection) -> SyncResult:
        mapping = (
            self.resolver.mapping_for_appointment(job.appointment_id)
            if job.appointment_id
            else None
        )
        event_id = mapping.external_event_id if mapping else job.external_event_id
        if event_id is None:
            return SyncResult(
                success=True,
                operation="push_delete",
                appointment_id=job.appointment_id,
                skipped=True,
                message="No calendar event to delete",
            )

        deleted = self.client_factory(connection).delete_event(event_id)
        # Release only after the event is confirmed gone.
        if mapping is not None:
            self.resolver.release(mapping.appointment_id)
        else:
            self.resolver.release_event(event_id)

        return SyncResult(
            success=True,
            operation="push_delete",
            appointment_id=job.appointment_id,
            external_event_id=event_id,
            message=(
                f"Deleted calendar event {event_id}"
                if deleted
                else f"Calendar event {event_id} was already deleted"
            ),
            tags=[] if deleted else ["already-deleted"],
        )

    def _import_scan(self, job: SyncJob, connection: CalendarConnection) -> SyncResult:
        client = self.client_factory(connection)
        time_min = self.clock() - FULL_SCAN_LOOKBACK
        try:
            listing = client.list_events(
                sync_token=connection.sync_token,
                time_min=None if connection.sync_token else time_min,
            )
        except GoogleCalendarError as e:
            if e.status_code != 410 or not connection.sync_token:
                raise
            logger.info(
                f"Sync token expired, falling back to full listing: "
                f"connection_id={connection.id}"
            )
            self.connections.update_sync_token(connection.id, None)
            listing = client.list_events(time_min=time_min)

        follow_ups = []
        for event in listing.items:
            event_id = event.get("id")
            if not event_id:
                continue
            mapping = self.resolver.mapping_for_event(event_id)
            if mapping is not None:
                follow_ups.append(
                    SyncJob(
                        operation="import_update",
                        connection_id=connection.id,
                        appointment_id=mapping.appointment_id,
                        external_event_id=event_id,
                        trigger="import_scan",
                    )
                )
            elif event.get("status") == "cancelled":
                self.bookings.discard_import(event_id)
            else:
                follow_ups.append(
                    SyncJob(
                        operation="import_create",
                        connection_id=connection.id,
                        external_event_id=event_id,
                        trigger="import_scan",
                    )
                )

        if listing.next_sync_token:
            self.connections.update_sync_token(connection.id, listing.next_sync_token)

        return SyncResult(
            success=True,
            operation="import_scan",
            message=f"Scanned {len(listing.items)} changed events",
            follow_ups=follow_ups,
        )

    def _fetch_event(
        self, client: GoogleCalendarClient, event_id: str
    ) -> dict[str, Any]:
        try:
            return client.get_event(event_id)
        except GoogleCalendarError as e:
            if _is_gone(e):
                return {"id": event_id, "status": "cancelled"}
            raise

    def _import_create(self, job: SyncJob, connection: CalendarConnection) -> SyncResult:
        event_id = job.external_event_id
        if event_id is None:
            raise TerminalResource("Import job has no event id", code="INVALID_JOB")

        settings = self.settings_repo.get_settings(connection.id)
        if not settings.imports:
            return SyncResult(
                success=True,
                operation="import_create",
                external_event_id=event_id,
                skipped=True,
                message=f"Sync direction {settings.sync_direction} does not import",
            )

        event = self._fetch_event(self.client_factory(connection), event_id)
        if event.get("status") == "cancelled":
            self.bookings.discard_import(event_id)
            return SyncResult(
                success=True,
                operation="import_create",
                external_event_id=event_id,
                skipped=True,
                message="Event was deleted before it could be imported",
            )

        candidate = self.mapper.from_external_event(event)

        # An event we created whose mapping was lost: relink instead of staging.
        if (
            candidate.appointment_id
            and (event.get("extendedProperties") or {}).get("private", {}).get("source")
            == EVENT_SOURCE
        ):
            appointment = self.bookings.get_appointment_for_sync(candidate.appointment_id)
            if appointment is not None:
                fingerprint = self.resolver.fingerprint_for_appointment(
                    appointment, connection.calendar_id
                )
                self.resolver.register(
                    fingerprint, event_id, connection.id, appointment_id=appointment.id
                )
                return SyncResult(
                    success=True,
                    operation="import_create",
                    appointment_id=appointment.id,
                    external_event_id=event_id,
                    message=f"Relinked calendar event to appointment {appointment.id}",
                    tags=["relinked"],
                )

        resolution = self.resolver.resolve_import(candidate, connection.calendar_id)
        if resolution.kind == "mapped":
            return SyncResult(
                success=True,
                operation="import_create",
                external_event_id=event_id,
                skipped=True,
                message="Event is already mapped",
            )
        if resolution.kind == "possible_duplicate":
            existing = resolution.mapping
            return SyncResult(
                success=True,
                operation="import_create",
                appointment_id=existing.appointment_id if existing else None,
                external_event_id=event_id,
                skipped=True,
                message=(
                    f"Event matches existing booking "
                    f"{existing.appointment_id if existing else 'unknown'}; needs review"
                ),
                tags=["possible-duplicate"],
            )

        self.bookings.stage_import(connection.id, candidate)
        self.resolver.register(
            resolution.fingerprint, event_id, connection.id, direction="import"
        )
        return SyncResult(
            success=True,
            operation="import_create",
            external_event_id=event_id,
            message=f"Staged calendar event {event_id} for import",
            tags=["staged"],
        )

    def _import_update(self, job: SyncJob, connection: CalendarConnection) -> SyncResult:
        event_id = job.external_event_id
        if event_id is None:
            raise TerminalResource("Import job has no event id", code="INVALID_JOB")

        mapping = self.resolver.mapping_for_event(event_id)
        if mapping is None:
            return SyncResult(
                success=True,
                operation="import_update",
                external_event_id=event_id,
                skipped=True,
                message="Event is no longer mapped",
            )

        settings = self.settings_repo.get_settings(connection.id)
        event = self._fetch_event(self.client_factory(connection), event_id)
        appointment = (
            self.bookings.get_appointment_for_sync(mapping.appointment_id)
            if mapping.appointment_id
            else None
        )

        def result(message: str, tags: list[str], follow_ups=None, skipped=False) -> SyncResult:
            return SyncResult(
                success=True,
                operation="import_update",
                appointment_id=mapping.appointment_id,
                external_event_id=event_id,
                message=message,
                tags=tags,
                follow_ups=follow_ups or [],
                skipped=skipped,
            )

        def follow_up(operation) -> SyncJob:
            return SyncJob(
                operation=operation,
                connection_id=connection.id,
                appointment_id=mapping.appointment_id,
                external_event_id=event_id if operation == "push_delete" else None,
                trigger="follow_up",
                starts_at=appointment.scheduled_at if appointment else None,
            )

        if event.get("status") == "cancelled":
            self.resolver.release_event(event_id)
            if mapping.appointment_id is None:
                self.bookings.discard_import(event_id)
            if appointment is not None and not appointment.is_cancelled and settings.pushes:
                # The booking still exists, so the app wins and the event comes back.
                return result(
                    "Event deleted in calendar; recreating from appointment",
                    ["recreate"],
                    follow_ups=[follow_up("push_create")],
                )
            return result("Event deleted in calendar", ["calendar-deleted"])

        if mapping.appointment_id is None:
            return result("Event is not linked to an appointment", [], skipped=True)

        if appointment is None or appointment.is_cancelled:
            return result(
                "Appointment no longer active; removing calendar event",
                ["orphaned-event"],
                follow_ups=[follow_up("push_delete")],
            )

        candidate = self.mapper.from_external_event(event)
        new_start = ensure_utc(candidate.start)
        new_duration = int((candidate.end - candidate.start).total_seconds() // 60)
        if (
            new_start == ensure_utc(appointment.scheduled_at)
            and new_duration == appointment.total_duration_minutes()
        ):
            self.resolver.touch(event_id)
            return result("Calendar event matches appointment", [], skipped=True)

        app_changed = (
            appointment.updated_at is not None
            and mapping.last_synced_at is not None
            and ensure_utc(appointment.updated_at) > ensure_utc(mapping.last_synced_at)
        )
        if app_changed:
            if settings.pushes:
                return result(
                    "Appointment and calendar both changed; appointment wins",
                    ["conflict"],
                    follow_ups=[follow_up("push_update")],
                )
            return result(
                "Appointment and calendar both changed; calendar change not applied",
                ["conflict"],
                skipped=True,
            )

        self.bookings.apply_external_change(appointment.id, new_start, new_duration)
        moved = appointment.model_copy(update={"scheduled_at": new_start})
        self.resolver.touch(
            event_id,
            fingerprint=self.resolver.fingerprint_for_appointment(
                moved, connection.calendar_id
            ),
        )
        return result(
            f"Applied calendar time change to appointment {appointment.id}",
            ["calendar-change-applied"],
        )
