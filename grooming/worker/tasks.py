"""Celery tasks that run stored sync jobs and the periodic maintenance pass."""

import logging
from typing import Optional

from celery.signals import worker_ready, worker_shutdown

from grooming.sync.engine import SyncEngine, build_sync_engine
from .celery_app import PROCESS_SYNC_JOB, RUN_SYNC_MAINTENANCE, celery_app, dispatch_sync_job

logger = logging.getLogger(__name__)

_engine: Optional[SyncEngine] = None


def get_engine() -> SyncEngine:
    """Build the engine once per worker process."""
    global _engine
    if _engine is None:
        _engine = build_sync_engine(dispatch=dispatch_sync_job)
    return _engine


@celery_app.task(bind=True, name=PROCESS_SYNC_JOB, max_retries=None)
def process_sync_job(self, job_id: str) -> dict[str, str]:
    engine = get_engine()
    outcome = engine.orchestrator.run_job(job_id)
    if outcome == "busy":
        # Another job for the same appointment is running; try again shortly.
        raise self.retry(countdown=engine.config.busy_retry_seconds)
    return {"job_id": job_id, "outcome": outcome}


@celery_app.task(name=RUN_SYNC_MAINTENANCE)
def run_sync_maintenance() -> dict[str, int]:
    return get_engine().maintenance.run_once()


@worker_ready.connect
def worker_ready_handler(sender=None, **kwargs):
    logger.info(
        f"Calendar sync worker ready: tasks={sorted(t for t in celery_app.tasks if t.startswith('grooming.'))}"
    )


@worker_shutdown.connect
def worker_shutdown_handler(sender=None, **kwargs):
    logger.info("Calendar sync worker shutting down")
