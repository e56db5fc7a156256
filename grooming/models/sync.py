"""Models for sync jobs, results, audit entries and quota state."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from .calendar import ConnectionStatus

if TYPE_CHECKING:
    from grooming.sync.errors import CalendarSyncError

SyncOperation = Literal[
    "push_create",
    "push_update",
    "push_delete",
    "import_create",
    "import_update",
    "import_scan",
]
PUSH_OPERATIONS: frozenset[str] = frozenset({"push_create", "push_update", "push_delete"})

JobStatus = Literal[
    "queued", "running", "succeeded", "failed_retryable", "failed_terminal"
]
SyncTrigger = Literal[
    "appointment_created",
    "appointment_updated",
    "appointment_cancelled",
    "webhook",
    "import_scan",
    "follow_up",
    "manual",
    "retry",
    "resync",
    "batch",
]
ErrorClass = Literal[
    "retryable_transient",
    "terminal_credential",
    "terminal_resource",
    "terminal_validation",
]
SyncOutcome = Literal["success", "failure", "skipped"]
# Connection lifecycle events share the audit log with job outcomes.
LogOperation = Literal[
    "push_create",
    "push_update",
    "push_delete",
    "import_create",
    "import_update",
    "import_scan",
    "pause",
    "resume",
    "connect",
    "disconnect",
    "webhook_renewal",
]
Severity = Literal["ok", "warning", "high", "critical"]
AppointmentEventType = Literal["created", "updated", "cancelled"]
# Result of trying to move a stored job from queued to running.
ClaimOutcome = Literal["claimed", "busy", "early", "gone"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SyncJob:
    """A unit of sync work. Live jobs are stored in calendar_sync_jobs."""

    operation: SyncOperation
    connection_id: str
    appointment_id: str | None = None
    external_event_id: str | None = None
    trigger: SyncTrigger = "manual"
    automatic: bool = True
    starts_at: datetime | None = None
    id: str = field(default_factory=lambda: uuid4().hex)
    attempts: int = 0
    status: JobStatus = "queued"
    next_retry_at: datetime | None = None
    last_error: str | None = None
    error_class: ErrorClass | None = None
    # Held back while the connection is paused or in error.
    parked: bool = False
    created_at: datetime = field(default_factory=utc_now)

    @property
    def is_push(self) -> bool:
        return self.operation in PUSH_OPERATIONS

    @property
    def serialization_key(self) -> str:
        """Jobs sharing a key never run concurrently."""
        if self.appointment_id:
            return f"appointment:{self.appointment_id}"
        if self.external_event_id:
            return f"event:{self.external_event_id}"
        return f"job:{self.id}"

    def view(self) -> "SyncJobView":
        return SyncJobView(
            id=self.id,
            operation=self.operation,
            appointment_id=self.appointment_id,
            external_event_id=self.external_event_id,
            trigger=self.trigger,
            status=self.status,
            attempts=self.attempts,
            next_retry_at=self.next_retry_at,
            last_error=self.last_error,
            error_class=self.error_class,
            created_at=self.created_at,
        )


@dataclass
class SyncResult:
    """Outcome of a single execution attempt."""

    success: bool
    operation: SyncOperation
    appointment_id: str | None = None
    external_event_id: str | None = None
    error: Optional["CalendarSyncError"] = None
    message: str = ""
    skipped: bool = False
    tags: list[str] = field(default_factory=list)
    follow_ups: list[SyncJob] = field(default_factory=list)
    duration_ms: int | None = None

    @property
    def retryable(self) -> bool:
        return self.error is not None and self.error.retryable

    @property
    def error_class(self) -> ErrorClass | None:
        return self.error.error_class if self.error is not None else None

    @property
    def outcome(self) -> SyncOutcome:
        if not self.success:
            return "failure"
        return "skipped" if self.skipped else "success"


class SyncJobView(BaseModel):
    """Serializable view of a live or failed job."""

    id: str
    operation: SyncOperation
    appointment_id: Optional[str] = None
    external_event_id: Optional[str] = None
    trigger: SyncTrigger
    status: JobStatus
    attempts: int
    next_retry_at: Optional[datetime] = None
    last_error: Optional[str] = None
    error_class: Optional[ErrorClass] = None
    created_at: datetime


class SyncLogEntry(BaseModel, frozen=True):
    """Immutable audit record of one sync attempt or connection event."""

    id: Optional[int] = None
    created_at: datetime = Field(default_factory=utc_now)
    connection_id: Optional[str] = None
    job_id: Optional[str] = None
    appointment_id: Optional[str] = None
    external_event_id: Optional[str] = None
    operation: LogOperation
    outcome: SyncOutcome
    error_class: Optional[ErrorClass] = None
    error_code: Optional[str] = None
    message: str = ""
    retry_count: int = 0
    tags: tuple[str, ...] = ()
    duration_ms: Optional[int] = None


class SyncLogFilters(BaseModel):
    connection_id: Optional[str] = None
    appointment_id: Optional[str] = None
    operation: Optional[LogOperation] = None
    outcome: Optional[SyncOutcome] = None
    error_class: Optional[ErrorClass] = None
    tag: Optional[str] = None
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    limit: int = Field(default=50, ge=1, le=200)
    offset: int = Field(default=0, ge=0)


class SyncLogPage(BaseModel):
    entries: list[SyncLogEntry]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.entries) < self.total


class QuotaSnapshot(BaseModel):
    """Usage of the provider's API quota in the current window."""

    used: int
    limit: int
    percentage: float
    severity: Severity
    window_started_at: datetime
    resets_at: datetime
    message: Optional[str] = None


class SyncStatusResponse(BaseModel):
    """Everything the admin surface needs to render the sync panel."""

    connected: bool
    connection: Optional[ConnectionStatus] = None
    paused: bool = False
    pause_reason: Optional[str] = None
    quota: QuotaSnapshot
    recent_failures: list[SyncLogEntry] = Field(default_factory=list)
    failed_jobs: list[SyncJobView] = Field(default_factory=list)
    queue_depth: int = 0
    in_flight: int = 0
    parked: int = 0


class AppointmentSyncRequest(BaseModel):
    appointment_id: str


class BatchSyncRequest(BaseModel):
    appointment_ids: list[str] = Field(min_length=1, max_length=500)


class PauseSyncRequest(BaseModel):
    reason: str = Field(default="Paused by admin", max_length=500)


class AppointmentEvent(BaseModel):
    """Lifecycle notification from the booking subsystem."""

    appointment_id: str
    event: AppointmentEventType


class SyncActionResponse(BaseModel):
    success: bool
    message: str
    job_ids: list[str] = Field(default_factory=list)
