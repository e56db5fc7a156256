"""Models for the Google Calendar connection, settings and event payloads."""

import json
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from .appointment import AppointmentStatus, NEVER_SYNC_STATUSES

ConnectionState = Literal["connected", "error", "paused"]
SyncDirection = Literal["push_only", "import_only", "bidirectional"]
MappingDirection = Literal["push", "import"]

# Refresh the access token when it expires within this margin.
TOKEN_REFRESH_MARGIN = timedelta(minutes=5)


@dataclass
class CalendarConnection:
    """An OAuth-authorized connection from an admin account to one Google calendar.

    The access/refresh tokens are owned by this record. They are only changed
    by connect/disconnect and by the token refresh path.
    """

    id: str
    admin_id: str
    calendar_email: str
    calendar_id: str
    access_token: str
    refresh_token: str | None
    state: ConnectionState = "connected"
    calendar_name: str | None = None
    is_primary_calendar: bool = True
    token_expires_at: datetime | None = None
    last_sync_at: datetime | None = None
    pause_reason: str | None = None
    paused_at: datetime | None = None
    state_changed_by: str | None = None
    consecutive_failures: int = 0
    webhook_channel_id: str | None = None
    webhook_resource_id: str | None = None
    webhook_token: str | None = None
    webhook_expires_at: datetime | None = None
    sync_token: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_paused(self) -> bool:
        return self.state == "paused"

    @property
    def admits_automatic_jobs(self) -> bool:
        return self.state == "connected"

    def needs_token_refresh(self, now: datetime | None = None) -> bool:
        """Check if the access token is expired or about to expire.

        Returns False when the expiry is unknown; a 401 will trigger a refresh.
        """
        if self.token_expires_at is None:
            return False

        expires_at = self.token_expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)

        now = now or datetime.now(timezone.utc)
        return expires_at <= now + TOKEN_REFRESH_MARGIN

    def status(self) -> "ConnectionStatus":
        return ConnectionStatus(
            connection_id=self.id,
            state=self.state,
            calendar_email=self.calendar_email,
            calendar_id=self.calendar_id,
            calendar_name=self.calendar_name,
            last_sync_at=self.last_sync_at,
            pause_reason=self.pause_reason,
            paused_at=self.paused_at,
            state_changed_by=self.state_changed_by,
            consecutive_failures=self.consecutive_failures,
            webhook_expires_at=self.webhook_expires_at,
        )


class ConnectionStatus(BaseModel):
    """Public view of a connection; never includes credentials."""

    connection_id: str
    state: ConnectionState
    calendar_email: str
    calendar_id: str
    calendar_name: Optional[str] = None
    last_sync_at: Optional[datetime] = None
    pause_reason: Optional[str] = None
    paused_at: Optional[datetime] = None
    state_changed_by: Optional[str] = None
    consecutive_failures: int = 0
    webhook_expires_at: Optional[datetime] = None


class CalendarSummary(BaseModel):
    """An entry from the account's calendar list."""

    id: str
    name: str
    primary: bool = False
    access_role: Optional[str] = None


class SelectCalendarRequest(BaseModel):
    calendar_id: str
    calendar_name: Optional[str] = None


DEFAULT_SYNC_STATUSES: list[AppointmentStatus] = [
    "confirmed",
    "checked_in",
    "in_progress",
    "completed",
]


class SyncSettings(BaseModel):
    """Per-connection sync settings, changed only by an explicit admin action."""

    auto_sync_enabled: bool = True
    sync_direction: SyncDirection = "push_only"
    sync_statuses: list[AppointmentStatus] = Field(
        default_factory=lambda: list(DEFAULT_SYNC_STATUSES)
    )
    sync_past_appointments: bool = False
    notify_on_success: bool = False
    notify_on_failure: bool = True

    @field_validator("sync_statuses")
    @classmethod
    def validate_sync_statuses(
        cls, statuses: list[AppointmentStatus]
    ) -> list[AppointmentStatus]:
        never = sorted(set(statuses) & NEVER_SYNC_STATUSES)
        if never:
            raise ValueError(
                f"Statuses {', '.join(never)} can never be synced to the calendar"
            )
        if not statuses:
            raise ValueError("At least one sync status must be selected")
        # Keep a stable order without duplicates
        return list(dict.fromkeys(statuses))

    @property
    def pushes(self) -> bool:
        return self.sync_direction in ("push_only", "bidirectional")

    @property
    def imports(self) -> bool:
        return self.sync_direction in ("import_only", "bidirectional")


class EventDateTime(BaseModel):
    date_time: str
    time_zone: str

    def to_api(self) -> dict[str, str]:
        return {"dateTime": self.date_time, "timeZone": self.time_zone}


class EventAttendee(BaseModel):
    email: str
    display_name: Optional[str] = None

    def to_api(self) -> dict[str, str]:
        data = {"email": self.email}
        if self.display_name:
            data["displayName"] = self.display_name
        return data


class ExternalEventPayload(BaseModel):
    """The body sent to the Google Calendar events API for an appointment."""

    summary: str
    description: str
    location: Optional[str] = None
    start: EventDateTime
    end: EventDateTime
    status: Literal["confirmed", "tentative", "cancelled"] = "confirmed"
    attendees: list[EventAttendee] = Field(default_factory=list)
    private_properties: dict[str, str] = Field(default_factory=dict)

    def to_api(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "summary": self.summary,
            "description": self.description,
            "start": self.start.to_api(),
            "end": self.end.to_api(),
            "status": self.status,
        }
        if self.location:
            body["location"] = self.location
        if self.attendees:
            body["attendees"] = [attendee.to_api() for attendee in self.attendees]
        if self.private_properties:
            body["extendedProperties"] = {"private": dict(self.private_properties)}
        return body

    def canonical_json(self) -> str:
        """Serialize with sorted keys so identical payloads compare byte-for-byte."""
        return json.dumps(self.to_api(), sort_keys=True, separators=(",", ":"))


class ImportCandidate(BaseModel):
    """An external calendar event translated into booking terms."""

    external_event_id: str
    calendar_id: Optional[str] = None
    summary: str = ""
    start: datetime
    end: datetime
    all_day: bool = False
    cancelled: bool = False
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    pet_name: Optional[str] = None
    service_name: Optional[str] = None
    notes: Optional[str] = None
    appointment_id: Optional[str] = Field(
        default=None, description="Appointment id stamped on events we created"
    )
    external_updated_at: Optional[datetime] = None


ImportStatus = Literal["pending", "accepted", "dismissed"]


class StagedImport(BaseModel):
    """A staged calendar event as staff see it in the import review list."""

    external_event_id: str
    connection_id: str
    summary: str = ""
    starts_at: datetime
    ends_at: datetime
    all_day: bool = False
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    pet_name: Optional[str] = None
    service_name: Optional[str] = None
    notes: Optional[str] = None
    status: ImportStatus = "pending"
    appointment_id: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def as_candidate(self) -> ImportCandidate:
        return ImportCandidate(
            external_event_id=self.external_event_id,
            summary=self.summary,
            start=self.starts_at,
            end=self.ends_at,
            all_day=self.all_day,
            customer_name=self.customer_name,
            customer_email=self.customer_email,
            customer_phone=self.customer_phone,
            pet_name=self.pet_name,
            service_name=self.service_name,
            notes=self.notes,
        )


class ConfirmImportRequest(BaseModel):
    """Which booking records a confirmed import becomes."""

    customer_id: str
    pet_id: Optional[str] = None
    service_id: Optional[str] = None


@dataclass
class EventMapping:
    """Link between an external event, its fingerprint and (optionally) an appointment."""

    fingerprint: str
    external_event_id: str
    connection_id: str
    appointment_id: str | None = None
    sync_direction: MappingDirection = "push"
    last_synced_at: datetime | None = None
