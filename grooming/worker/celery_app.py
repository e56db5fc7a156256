"""Celery application for the calendar sync workers.

Sync jobs live in calendar_sync_jobs; the broker only carries their ids.
Run a worker with ``celery -A grooming.worker.celery_app worker -Q calendar-sync``
and the maintenance schedule with ``celery -A grooming.worker.celery_app beat``.
"""

# This file loads env variables and must thus be imported before anything else.
from grooming.app import env_loader  # noqa: F401

import logging
import os
from datetime import datetime
from typing import Optional

from celery import Celery
from kombu.exceptions import OperationalError as BrokerError

from grooming.sync.config import SyncConfig

logger = logging.getLogger(__name__)

SYNC_QUEUE = "calendar-sync"
PROCESS_SYNC_JOB = "grooming.worker.tasks.process_sync_job"
RUN_SYNC_MAINTENANCE = "grooming.worker.tasks.run_sync_maintenance"

sync_config = SyncConfig.from_env()

celery_app = Celery(
    "grooming_calendar_sync",
    broker=os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/1"),
    include=["grooming.worker.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # A job is only acknowledged once it has been settled in the job store.
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    worker_concurrency=sync_config.worker_count,
    task_ignore_result=True,
    task_routes={"grooming.worker.tasks.*": {"queue": SYNC_QUEUE}},
    broker_connection_retry_on_startup=True,
)

celery_app.conf.beat_schedule = {
    "calendar-sync-maintenance": {
        "task": RUN_SYNC_MAINTENANCE,
        "schedule": float(sync_config.maintenance_interval_seconds),
    },
}


def dispatch_sync_job(job_id: str, eta: Optional[datetime] = None) -> bool:
    """Send a job id to the workers. Returns False if the broker is unreachable."""
    try:
        celery_app.send_task(PROCESS_SYNC_JOB, args=[job_id], eta=eta, queue=SYNC_QUEUE)
    except BrokerError as e:
        logger.error(
            f"Failed to dispatch sync job: job_id={job_id}, "
            f"exception_type={type(e).__name__}, error={e}"
        )
        return False
    return True
