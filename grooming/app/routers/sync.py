"""Calendar sync administration routes."""

import logging
from datetime import datetime

from fastapi import APIRouter, HTTPException, Depends, Query, status

from grooming.app.auth import require_admin, require_staff
from grooming.app.dependencies import get_orchestrator, get_sync_engine
from grooming.models.calendar import (
    ConfirmImportRequest,
    ImportStatus,
    StagedImport,
    SyncSettings,
)
from grooming.models.sync import (
    AppointmentEvent,
    AppointmentSyncRequest,
    BatchSyncRequest,
    ErrorClass,
    LogOperation,
    PauseSyncRequest,
    QuotaSnapshot,
    SyncActionResponse,
    SyncLogFilters,
    SyncLogPage,
    SyncOutcome,
    SyncStatusResponse,
)
from grooming.models.user import User
from grooming.sync.engine import SyncEngine
from grooming.sync.errors import (
    AppointmentNotFound,
    ConnectionNotFound,
    ImportNotFound,
    StillFailing,
)
from grooming.sync.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/calendar", tags=["calendar"])


def _actor(user: User) -> str:
    return f"admin:{user.id}"


@router.get("/sync-status", response_model=SyncStatusResponse)
def get_sync_status(
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
    _user: User = Depends(require_staff),
) -> SyncStatusResponse:
    """Connection state, quota usage, recent failures and queue depth."""
    return orchestrator.status()


@router.get("/quota", response_model=QuotaSnapshot)
def get_quota(
    engine: SyncEngine = Depends(get_sync_engine),
    _user: User = Depends(require_staff),
) -> QuotaSnapshot:
    return engine.governor.get_snapshot()


@router.post("/retry-sync", response_model=SyncActionResponse)
def retry_sync(
    request: AppointmentSyncRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
    _user: User = Depends(require_admin),
) -> SyncActionResponse:
    """Retry the last failed sync for an appointment with a fresh attempt budget."""
    try:
        job = orchestrator.retry_sync(request.appointment_id)
    except ConnectionNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return SyncActionResponse(
        success=True,
        message=f"Retry queued for appointment {request.appointment_id}",
        job_ids=[job.id],
    )


@router.post("/resync", response_model=SyncActionResponse)
def resync_appointment(
    request: AppointmentSyncRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
    _user: User = Depends(require_admin),
) -> SyncActionResponse:
    """Delete the appointment's calendar event and create it again."""
    try:
        job = orchestrator.resync(request.appointment_id)
    except (ConnectionNotFound, AppointmentNotFound) as e:
        raise HTTPException(status_code=404, detail=str(e))
    return SyncActionResponse(
        success=True,
        message=f"Resync queued for appointment {request.appointment_id}",
        job_ids=[job.id],
    )


@router.post("/batch-sync", response_model=SyncActionResponse)
def batch_sync(
    request: BatchSyncRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
    _user: User = Depends(require_admin),
) -> SyncActionResponse:
    try:
        jobs = orchestrator.enqueue_batch(request.appointment_ids)
    except ConnectionNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    skipped = len(request.appointment_ids) - len(jobs)
    message = f"Queued {len(jobs)} appointment(s) for sync"
    if skipped:
        message += f"; {skipped} not found"
    return SyncActionResponse(success=True, message=message, job_ids=[job.id for job in jobs])


@router.post("/pause-sync", response_model=SyncActionResponse)
def pause_sync(
    request: PauseSyncRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
    user: User = Depends(require_admin),
) -> SyncActionResponse:
    try:
        orchestrator.pause(request.reason, actor=_actor(user))
    except ConnectionNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return SyncActionResponse(success=True, message="Calendar sync paused")


@router.post("/resume-sync", response_model=SyncActionResponse)
def resume_sync(
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
    user: User = Depends(require_admin),
) -> SyncActionResponse:
    """Resume a paused connection.

    Raises:
        HTTPException 409 if the calendar still cannot be reached; the
        connection is paused again.
    """
    try:
        orchestrator.resume(actor=_actor(user))
    except ConnectionNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except StillFailing as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return SyncActionResponse(success=True, message="Calendar sync resumed")


@router.get("/settings", response_model=SyncSettings)
def get_settings(
    engine: SyncEngine = Depends(get_sync_engine),
    _user: User = Depends(require_staff),
) -> SyncSettings:
    try:
        return engine.get_settings()
    except ConnectionNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/settings", response_model=SyncSettings)
def update_settings(
    settings: SyncSettings,
    engine: SyncEngine = Depends(get_sync_engine),
    user: User = Depends(require_admin),
) -> SyncSettings:
    """Replace the sync settings. Invalid settings are rejected with 422 by validation."""
    try:
        return engine.update_settings(settings, actor=_actor(user))
    except ConnectionNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/sync-history", response_model=SyncLogPage)
def get_sync_history(
    appointment_id: str | None = None,
    operation: LogOperation | None = None,
    outcome: SyncOutcome | None = None,
    error_class: ErrorClass | None = None,
    tag: str | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    engine: SyncEngine = Depends(get_sync_engine),
    _user: User = Depends(require_staff),
) -> SyncLogPage:
    """Page through the sync audit log, newest first."""
    connection = engine.connections.get_active()
    filters = SyncLogFilters(
        connection_id=connection.id if connection else None,
        appointment_id=appointment_id,
        operation=operation,
        outcome=outcome,
        error_class=error_class,
        tag=tag,
        since=since,
        until=until,
        limit=limit,
        offset=offset,
    )
    return engine.history.query(filters)


@router.post(
    "/appointment-events",
    response_model=SyncActionResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def appointment_event(
    event: AppointmentEvent,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
    _user: User = Depends(require_staff),
) -> SyncActionResponse:
    """Notify the sync engine of a booking change. Never fails the caller."""
    try:
        jobs = orchestrator.on_appointment_event(event.appointment_id, event.event)
    except Exception as e:
        logger.exception(
            f"Failed to enqueue appointment event: appointment_id={event.appointment_id}, "
            f"event={event.event}, exception_type={type(e).__name__}, error={e}"
        )
        return SyncActionResponse(success=False, message="Sync could not be scheduled")
    return SyncActionResponse(
        success=True,
        message=f"{len(jobs)} sync job(s) queued",
        job_ids=[job.id for job in jobs],
    )


@router.get("/imports", response_model=list[StagedImport])
def list_imports(
    import_status: ImportStatus = Query(default="pending", alias="status"),
    engine: SyncEngine = Depends(get_sync_engine),
    _user: User = Depends(require_staff),
) -> list[StagedImport]:
    """Calendar events staged for review, soonest first."""
    return engine.imports.list(import_status)


@router.post("/imports/{external_event_id}/confirm", response_model=StagedImport)
def confirm_import(
    external_event_id: str,
    request: ConfirmImportRequest,
    engine: SyncEngine = Depends(get_sync_engine),
    user: User = Depends(require_admin),
) -> StagedImport:
    """Create an appointment from a staged calendar event."""
    try:
        return engine.imports.confirm(external_event_id, request, actor=_actor(user))
    except (ConnectionNotFound, ImportNotFound) as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/imports/{external_event_id}/dismiss", response_model=SyncActionResponse)
def dismiss_import(
    external_event_id: str,
    engine: SyncEngine = Depends(get_sync_engine),
    user: User = Depends(require_admin),
) -> SyncActionResponse:
    try:
        engine.imports.dismiss(external_event_id, actor=_actor(user))
    except ImportNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return SyncActionResponse(success=True, message=f"Calendar event {external_event_id} dismissed")
