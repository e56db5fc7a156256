"""Rules deciding whether an appointment change should be pushed to the calendar."""

from dataclasses import dataclass
from datetime import datetime

from grooming.models.appointment import Appointment, NEVER_SYNC_STATUSES
from grooming.models.calendar import SyncSettings
from grooming.utils.timezone import ensure_utc


@dataclass(frozen=True)
class SyncDecision:
    should_sync: bool
    reason: str


def should_sync_appointment(
    appointment: Appointment,
    settings: SyncSettings,
    now: datetime,
    force: bool = False,
) -> SyncDecision:
    """Decide whether a create/update should produce a push job.

    ``force`` (manual batch sync) bypasses the automatic-sync
    switch, the direction and the past-appointment rule, but never the
    cancelled/no-show rule.
    """
    if appointment.status in NEVER_SYNC_STATUSES:
        return SyncDecision(False, f"Status {appointment.status} is never synced")

    if force:
        return SyncDecision(True, "Manual sync requested")

    if not settings.auto_sync_enabled:
        return SyncDecision(False, "Auto-sync is disabled")

    if not settings.pushes:
        return SyncDecision(False, f"Sync direction {settings.sync_direction} does not push")

    if appointment.status not in settings.sync_statuses:
        return SyncDecision(
            False, f"Status {appointment.status} is not in the configured sync statuses"
        )

    if not settings.sync_past_appointments and ensure_utc(appointment.scheduled_at) < now:
        return SyncDecision(False, "Past appointments are not synced")

    return SyncDecision(True, "Appointment meets sync criteria")
