"""Translate appointments to Google Calendar events and back.

``to_external_event`` is pure: it reads nothing but the appointment and the
mapper's configuration, so retries of the same job send identical payloads.
"""

import logging
import re
from datetime import date, datetime, time, timedelta
from typing import Any, Optional

from grooming.models.appointment import Appointment
from grooming.models.calendar import (
    EventAttendee,
    EventDateTime,
    ExternalEventPayload,
    ImportCandidate,
)
from grooming.utils.timezone import ensure_utc, localize, to_business_zone
from .config import SyncConfig
from .errors import TerminalValidation

logger = logging.getLogger(__name__)

EVENT_SOURCE = "grooming-booking"
BUSINESS_NAME = "The Puppy Day"

EVENT_STATUS_BY_APPOINTMENT_STATUS = {
    "confirmed": "confirmed",
    "checked_in": "confirmed",
    "in_progress": "confirmed",
    "completed": "confirmed",
    "pending": "tentative",
    "cancelled": "cancelled",
    "no_show": "cancelled",
}

TITLE_PATTERN = re.compile(r"^(?P<service>.+?) - (?P<pet>.+?) \((?P<customer>.+)\)$")
FIELD_PATTERN = re.compile(
    r"^\**(?P<label>customer|client|owner|email|phone|pet|dog|size|service):\**\s*(?P<value>.+?)\s*$",
    re.IGNORECASE,
)
EMAIL_PATTERN = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
SERVICE_KEYWORDS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"basic\s+grooming",
        r"premium\s+grooming",
        r"deluxe\s+grooming",
        r"full\s+grooming",
        r"bath\s+(?:&|and)\s+brush",
        r"nail\s+trim",
        r"bath",
        r"grooming",
    )
]


def format_phone_number(phone: Optional[str]) -> str:
    """Format 10-digit numbers as (XXX) XXX-XXXX; leave anything else alone."""
    if not phone:
        return ""
    digits = re.sub(r"\D", "", phone)
    if len(digits) == 10:
        return f"({digits[:3]}) {digits[3:6]}-{digits[6:]}"
    return phone


class EventMapper:
    def __init__(self, business_timezone: str, location: Optional[str] = None):
        self.business_timezone = business_timezone
        self.location = location

    @classmethod
    def from_config(cls, config: SyncConfig) -> "EventMapper":
        return cls(config.business_timezone, config.business_location)

    def _event_time(self, value: datetime) -> EventDateTime:
        local = to_business_zone(value, self.business_timezone)
        return EventDateTime(
            date_time=local.isoformat(timespec="seconds"),
            time_zone=self.business_timezone,
        )

    def build_title(self, appointment: Appointment) -> str:
        customer = appointment.customer.full_name or "Customer"
        service = appointment.service.name if appointment.service else "Grooming Appointment"
        if appointment.pet is not None and appointment.pet.name:
            return f"{service} - {appointment.pet.name} ({customer})"
        return f"{service} ({customer})"

    def build_description(self, appointment: Appointment) -> str:
        customer = appointment.customer
        lines = [f"**Customer:** {customer.full_name}"]
        if customer.email:
            lines.append(f"**Email:** {customer.email}")
        if customer.phone:
            lines.append(f"**Phone:** {format_phone_number(customer.phone)}")

        if appointment.pet is not None:
            lines.append("")
            lines.append(f"**Pet:** {appointment.pet.name}")
            if appointment.pet.size:
                lines.append(f"**Size:** {appointment.pet.size}")

        lines.append("")
        if appointment.service is not None:
            lines.append(f"**Service:** {appointment.service.name}")
        lines.append(f"**Duration:** {appointment.total_duration_minutes()} minutes")

        if appointment.addons:
            lines.append("")
            lines.append("**Add-ons:**")
            for addon in appointment.addons:
                lines.append(f"- {addon.name} ({addon.duration_minutes} min)")

        if appointment.notes:
            lines.append("")
            lines.append("**Notes:**")
            lines.append(appointment.notes.strip())

        lines.append("")
        lines.append("---")
        lines.append(f"*Synced from {BUSINESS_NAME} appointment system*")
        return "\n".join(lines)

    def to_external_event(self, appointment: Appointment) -> ExternalEventPayload:
        start = ensure_utc(appointment.scheduled_at)
        end = start + timedelta(minutes=appointment.total_duration_minutes())

        attendees = []
        if appointment.customer.email:
            attendees.append(
                EventAttendee(
                    email=appointment.customer.email,
                    display_name=appointment.customer.full_name or None,
                )
            )

        return ExternalEventPayload(
            summary=self.build_title(appointment),
            description=self.build_description(appointment),
            location=self.location,
            start=self._event_time(start),
            end=self._event_time(end),
            status=EVENT_STATUS_BY_APPOINTMENT_STATUS.get(appointment.status, "tentative"),
            attendees=attendees,
            private_properties={"appointment_id": appointment.id, "source": EVENT_SOURCE},
        )

    def validate_payload(self, payload: ExternalEventPayload) -> None:
        """Reject payloads Google would refuse, before spending quota on them."""
        errors = []
        if not payload.summary.strip():
            errors.append("summary is empty")
        try:
            start = datetime.fromisoformat(payload.start.date_time)
            end = datetime.fromisoformat(payload.end.date_time)
            if end <= start:
                errors.append("end is not after start")
        except ValueError as e:
            errors.append(f"invalid event time: {e}")
        for attendee in payload.attendees:
            if not EMAIL_PATTERN.fullmatch(attendee.email):
                errors.append(f"invalid attendee email {attendee.email!r}")

        if errors:
            raise TerminalValidation(
                f"Mapped event payload is invalid: {'; '.join(errors)}",
                code="INVALID_PAYLOAD",
            )

    def _parse_event_time(self, value: dict[str, Any]) -> tuple[datetime, bool]:
        if value.get("dateTime"):
            raw = value["dateTime"].replace("Z", "+00:00")
            parsed = localize(
                datetime.fromisoformat(raw),
                value.get("timeZone") or self.business_timezone,
            )
            return to_business_zone(parsed, self.business_timezone), False
        if value.get("date"):
            day = date.fromisoformat(value["date"])
            return localize(datetime.combine(day, time.min), self.business_timezone), True
        raise TerminalValidation("Calendar event has no start or end time", code="INVALID_EVENT")

    def from_external_event(self, event: dict[str, Any]) -> ImportCandidate:
        """Translate a Google event resource into an import candidate."""
        event_id = event.get("id")
        if not event_id:
            raise TerminalValidation("Calendar event has no id", code="INVALID_EVENT")

        start, all_day = self._parse_event_time(event.get("start") or {})
        end, _ = self._parse_event_time(event.get("end") or event.get("start") or {})
        if end <= start:
            end = start + timedelta(days=1) if all_day else start + timedelta(minutes=60)

        summary = (event.get("summary") or "").strip()
        description = event.get("description") or ""
        fields = self._parse_description(description)

        customer_name = fields.get("customer")
        pet_name = fields.get("pet")
        service_name = fields.get("service")

        title_match = TITLE_PATTERN.match(summary)
        if title_match:
            service_name = service_name or title_match.group("service").strip()
            pet_name = pet_name or title_match.group("pet").strip()
            customer_name = customer_name or title_match.group("customer").strip()
        elif service_name is None:
            service_name = self._service_from_title(summary)

        customer_email = fields.get("email")
        attendees = event.get("attendees") or []
        if attendees:
            first = attendees[0]
            customer_email = customer_email or first.get("email")
            customer_name = customer_name or first.get("displayName")
        if customer_email is None:
            email_match = EMAIL_PATTERN.search(description)
            if email_match:
                customer_email = email_match.group(0)

        private = (event.get("extendedProperties") or {}).get("private") or {}
        updated = event.get("updated")

        return ImportCandidate(
            external_event_id=event_id,
            calendar_id=(event.get("organizer") or {}).get("email"),
            summary=summary,
            start=start,
            end=end,
            all_day=all_day,
            cancelled=event.get("status") == "cancelled",
            customer_name=customer_name,
            customer_email=customer_email,
            customer_phone=format_phone_number(fields.get("phone")) or None,
            pet_name=pet_name,
            service_name=service_name,
            notes=self._parse_notes(description),
            appointment_id=private.get("appointment_id"),
            external_updated_at=(
                datetime.fromisoformat(updated.replace("Z", "+00:00")) if updated else None
            ),
        )

    @staticmethod
    def _parse_description(description: str) -> dict[str, str]:
        aliases = {"client": "customer", "owner": "customer", "dog": "pet"}
        fields: dict[str, str] = {}
        for line in description.splitlines():
            match = FIELD_PATTERN.match(line.strip())
            if match:
                label = match.group("label").lower()
                fields.setdefault(aliases.get(label, label), match.group("value"))
        return fields

    @staticmethod
    def _parse_notes(description: str) -> Optional[str]:
        lines = description.splitlines()
        for index, line in enumerate(lines):
            if line.strip().strip("*").rstrip(":").lower() == "notes":
                notes = []
                for note_line in lines[index + 1 :]:
                    if not note_line.strip() or note_line.strip() == "---":
                        break
                    notes.append(note_line)
                return "\n".join(notes).strip() or None
        return None

    @staticmethod
    def _service_from_title(title: str) -> Optional[str]:
        for pattern in SERVICE_KEYWORDS:
            match = pattern.search(title)
            if match:
                return " ".join(word.capitalize() for word in match.group(0).split())
        return None
