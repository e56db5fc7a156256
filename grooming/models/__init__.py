from .appointment import (
    Appointment,
    AppointmentStatus,
    Customer,
    Pet,
    Service,
    Addon,
    NEVER_SYNC_STATUSES,
)
from .calendar import (
    CalendarConnection,
    ConnectionState,
    ConnectionStatus,
    CalendarSummary,
    SyncSettings,
    SyncDirection,
    ExternalEventPayload,
    ImportCandidate,
    EventMapping,
)
from .sync import (
    SyncJob,
    SyncResult,
    SyncOperation,
    JobStatus,
    ErrorClass,
    SyncLogEntry,
    SyncLogFilters,
    SyncLogPage,
    QuotaSnapshot,
    Severity,
    SyncStatusResponse,
)
from .user import User, Role

__all__ = [
    "Appointment",
    "AppointmentStatus",
    "Customer",
    "Pet",
    "Service",
    "Addon",
    "NEVER_SYNC_STATUSES",
    "CalendarConnection",
    "ConnectionState",
    "ConnectionStatus",
    "CalendarSummary",
    "SyncSettings",
    "SyncDirection",
    "ExternalEventPayload",
    "ImportCandidate",
    "EventMapping",
    "SyncJob",
    "SyncResult",
    "SyncOperation",
    "JobStatus",
    "ErrorClass",
    "SyncLogEntry",
    "SyncLogFilters",
    "SyncLogPage",
    "QuotaSnapshot",
    "Severity",
    "SyncStatusResponse",
    "User",
    "Role",
]
