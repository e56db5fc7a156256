"""Appointment records as the sync engine sees them.

These are read-only projections of the booking system's tables (customers,
pets, services, add-ons). The booking subsystem owns the real schema; the
sync engine only needs enough to build a calendar event and a fingerprint.
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

AppointmentStatus = Literal[
    "pending",
    "confirmed",
    "checked_in",
    "in_progress",
    "completed",
    "cancelled",
    "no_show",
]

# Appointments in these statuses never get (or keep) a calendar event.
NEVER_SYNC_STATUSES: frozenset[str] = frozenset({"cancelled", "no_show"})

DEFAULT_DURATION_MINUTES = 60


class Customer(BaseModel):
    """The customer who booked the appointment."""

    id: str
    first_name: str
    last_name: str
    email: Optional[str] = None
    phone: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Pet(BaseModel):
    id: str
    name: str
    size: Optional[str] = None


class Service(BaseModel):
    id: str
    name: str
    duration_minutes: int


class Addon(BaseModel):
    name: str
    duration_minutes: int = 0


class Appointment(BaseModel):
    """An appointment with the related records needed to build an event."""

    id: str
    customer: Customer
    pet: Optional[Pet] = None
    service: Optional[Service] = None
    addons: list[Addon] = Field(default_factory=list)
    scheduled_at: datetime = Field(description="Appointment start time")
    duration_minutes: Optional[int] = Field(
        default=None, description="Explicit duration when no service is attached"
    )
    status: AppointmentStatus = "pending"
    notes: Optional[str] = None
    updated_at: Optional[datetime] = None

    @property
    def is_cancelled(self) -> bool:
        return self.status in NEVER_SYNC_STATUSES

    def total_duration_minutes(self) -> int:
        """Service duration plus add-ons, falling back to the explicit duration."""
        if self.service is not None and self.service.duration_minutes > 0:
            total = self.service.duration_minutes
        elif self.duration_minutes:
            total = self.duration_minutes
        else:
            total = DEFAULT_DURATION_MINUTES
        return total + sum(addon.duration_minutes for addon in self.addons)
