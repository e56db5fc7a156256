"""Staff review of calendar events staged for import."""

import logging
from datetime import datetime
from typing import Callable, Optional

from grooming.db import appointments as appointments_db
from grooming.models.calendar import ConfirmImportRequest, ImportStatus, StagedImport
from grooming.models.sync import SyncLogEntry, utc_now
from .connections import ConnectionStore
from .duplicates import DuplicateResolver
from .errors import ConnectionNotFound, ImportNotFound
from .history import SyncHistoryLog

logger = logging.getLogger(__name__)


class ImportReview:
    def __init__(
        self,
        connections: ConnectionStore,
        resolver: DuplicateResolver,
        history: SyncHistoryLog,
        bookings=appointments_db,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.connections = connections
        self.resolver = resolver
        self.history = history
        self.bookings = bookings
        self.clock = clock

    def list(self, status: Optional[ImportStatus] = "pending") -> list[StagedImport]:
        return self.bookings.list_imports(status)

    def confirm(
        self, external_event_id: str, request: ConfirmImportRequest, actor: str
    ) -> StagedImport:
        """Create the appointment for a staged event and link it to the event.

        Raises:
            ImportNotFound: if there is no pending candidate for the event.
        """
        connection = self.connections.get_active()
        if connection is None:
            raise ConnectionNotFound("No Google Calendar connection is configured")

        candidate = self.bookings.get_import(external_event_id)
        if candidate is None or candidate.status != "pending":
            raise ImportNotFound(f"No pending import for calendar event {external_event_id}")

        appointment_id = self.bookings.create_appointment_from_import(
            external_event_id,
            request.customer_id,
            request.pet_id,
            request.service_id,
            actor,
        )
        if appointment_id is None:
            raise ImportNotFound(f"No pending import for calendar event {external_event_id}")

        # The scan registered the event's fingerprint without an appointment.
        if self.resolver.mapping_for_event(external_event_id) is None:
            fingerprint = self.resolver.fingerprint_for_candidate(
                candidate.as_candidate(), connection.calendar_id
            )
            self.resolver.register(
                fingerprint,
                external_event_id,
                connection.id,
                appointment_id=appointment_id,
                direction="import",
            )
        else:
            self.resolver.touch(external_event_id, appointment_id=appointment_id)

        self.history.append(
            SyncLogEntry(
                created_at=self.clock(),
                connection_id=connection.id,
                appointment_id=appointment_id,
                external_event_id=external_event_id,
                operation="import_create",
                outcome="success",
                message=f"Created appointment {appointment_id} from calendar event by {actor}",
                tags=("import-confirmed",),
            )
        )
        logger.info(
            f"Calendar import confirmed: external_event_id={external_event_id}, "
            f"appointment_id={appointment_id}, actor={actor}"
        )
        return self.bookings.get_import(external_event_id) or candidate

    def dismiss(self, external_event_id: str, actor: str) -> None:
        """Mark a staged event as not a booking.

        Raises:
            ImportNotFound: if there is no pending candidate for the event.
        """
        if not self.bookings.dismiss_import(external_event_id, actor):
            raise ImportNotFound(f"No pending import for calendar event {external_event_id}")
        connection = self.connections.get_active()
        self.history.append(
            SyncLogEntry(
                created_at=self.clock(),
                connection_id=connection.id if connection else None,
                external_event_id=external_event_id,
                operation="import_create",
                outcome="skipped",
                message=f"Calendar event dismissed by {actor}",
                tags=("import-dismissed",),
            )
        )
        logger.info(f"Calendar import dismissed: external_event_id={external_event_id}, actor={actor}")
