"""Fingerprint-based duplicate detection.

A fingerprint identifies a real-world booking independently of which side
created it: who (customer, optionally pet), when (start time rounded down
to the configured granularity) and where (calendar id). The mapping table
holds at most one external event per fingerprint.
"""

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Literal, Optional

from grooming.db import event_mappings as mappings_db
from grooming.models.appointment import Appointment
from grooming.models.calendar import EventMapping, ImportCandidate, MappingDirection
from grooming.models.sync import utc_now
from grooming.utils.timezone import ensure_utc

logger = logging.getLogger(__name__)

ImportResolutionKind = Literal["mapped", "possible_duplicate", "new"]


def normalize_name(value: Optional[str]) -> str:
    return " ".join((value or "").lower().split())


@dataclass(frozen=True)
class FingerprintPolicy:
    """Which fields participate in the fingerprint and how coarse the time match is."""

    granularity_minutes: int = 15
    include_pet: bool = True

    def round_start(self, start: datetime) -> datetime:
        start = ensure_utc(start).replace(second=0, microsecond=0)
        overflow = (start.hour * 60 + start.minute) % self.granularity_minutes
        return start - timedelta(minutes=overflow)

    def compute(
        self,
        customer_name: Optional[str],
        pet_name: Optional[str],
        start: datetime,
        calendar_id: str,
    ) -> str:
        parts = [normalize_name(customer_name)]
        if self.include_pet:
            parts.append(normalize_name(pet_name))
        parts.append(self.round_start(start).isoformat())
        parts.append(calendar_id)
        return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class PushResolution:
    action: Literal["create", "update"]
    fingerprint: str
    external_event_id: Optional[str] = None
    mapping: Optional[EventMapping] = None


@dataclass(frozen=True)
class ImportResolution:
    kind: ImportResolutionKind
    fingerprint: str
    mapping: Optional[EventMapping] = None


class DuplicateResolver:
    def __init__(
        self,
        policy: FingerprintPolicy,
        repository=mappings_db,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.policy = policy
        self.repository = repository
        self.clock = clock

    def fingerprint_for_appointment(self, appointment: Appointment, calendar_id: str) -> str:
        return self.policy.compute(
            appointment.customer.full_name,
            appointment.pet.name if appointment.pet else None,
            appointment.scheduled_at,
            calendar_id,
        )

    def fingerprint_for_candidate(self, candidate: ImportCandidate, calendar_id: str) -> str:
        return self.policy.compute(
            candidate.customer_name,
            candidate.pet_name,
            candidate.start,
            calendar_id,
        )

    def find_existing(self, fingerprint: str) -> Optional[str]:
        mapping = self.repository.get_by_fingerprint(fingerprint)
        return mapping.external_event_id if mapping else None

    def mapping_for_appointment(self, appointment_id: str) -> Optional[EventMapping]:
        return self.repository.get_by_appointment(appointment_id)

    def mapping_for_event(self, external_event_id: str) -> Optional[EventMapping]:
        return self.repository.get_by_event(external_event_id)

    def register(
        self,
        fingerprint: str,
        external_event_id: str,
        connection_id: str,
        appointment_id: Optional[str] = None,
        direction: MappingDirection = "push",
    ) -> str:
        """Record the fingerprint → event link and return the winning event id.

        If another writer registered the same fingerprint (or appointment)
        first, its event id is returned and nothing is written.
        """
        inserted = self.repository.insert_mapping(
            EventMapping(
                fingerprint=fingerprint,
                external_event_id=external_event_id,
                connection_id=connection_id,
                appointment_id=appointment_id,
                sync_direction=direction,
                last_synced_at=self.clock(),
            )
        )
        if inserted:
            return external_event_id

        winner = self.repository.get_by_fingerprint(fingerprint)
        if winner is None and appointment_id is not None:
            winner = self.repository.get_by_appointment(appointment_id)
        if winner is None:
            winner = self.repository.get_by_event(external_event_id)
        if winner is None:
            raise RuntimeError(
                f"Mapping insert conflicted but no existing mapping found: "
                f"external_event_id={external_event_id}"
            )

        if winner.external_event_id != external_event_id:
            logger.warning(
                f"Lost fingerprint registration race: fingerprint={fingerprint[:12]}, "
                f"ours={external_event_id}, winner={winner.external_event_id}"
            )
        return winner.external_event_id

    def resolve_push(self, appointment: Appointment, calendar_id: str) -> PushResolution:
        """Decide whether pushing this appointment creates a new event or updates one."""
        fingerprint = self.fingerprint_for_appointment(appointment, calendar_id)

        mapping = self.repository.get_by_appointment(appointment.id)
        if mapping is not None:
            return PushResolution("update", fingerprint, mapping.external_event_id, mapping)

        mapping = self.repository.get_by_fingerprint(fingerprint)
        if mapping is not None:
            logger.info(
                f"Fingerprint hit turns create into update: appointment_id={appointment.id}, "
                f"external_event_id={mapping.external_event_id}"
            )
            return PushResolution("update", fingerprint, mapping.external_event_id, mapping)

        return PushResolution("create", fingerprint)

    def resolve_import(self, candidate: ImportCandidate, calendar_id: str) -> ImportResolution:
        """Classify an external event as already mapped, a possible duplicate, or new."""
        fingerprint = self.fingerprint_for_candidate(candidate, calendar_id)

        mapping = self.repository.get_by_event(candidate.external_event_id)
        if mapping is not None:
            return ImportResolution("mapped", fingerprint, mapping)

        mapping = self.repository.get_by_fingerprint(fingerprint)
        if mapping is not None:
            return ImportResolution("possible_duplicate", fingerprint, mapping)

        return ImportResolution("new", fingerprint)

    def touch(
        self,
        external_event_id: str,
        fingerprint: Optional[str] = None,
        appointment_id: Optional[str] = None,
    ) -> None:
        """Mark a mapping synced now, moving it to the appointment's current fingerprint."""
        self.repository.touch_mapping(
            external_event_id,
            self.clock(),
            fingerprint=fingerprint,
            appointment_id=appointment_id,
        )

    def release(self, appointment_id: str) -> bool:
        return self.repository.delete_by_appointment(appointment_id)

    def release_event(self, external_event_id: str) -> bool:
        return self.repository.delete_by_event(external_event_id)
