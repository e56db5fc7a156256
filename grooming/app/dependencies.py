import logging

from fastapi import HTTPException, Request

from grooming.sync.engine import SyncEngine
from grooming.sync.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)


def get_sync_engine(request: Request) -> SyncEngine:
    engine = getattr(request.app.state, "sync_engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Calendar sync is not running")
    return engine


def get_orchestrator(request: Request) -> SyncOrchestrator:
    return get_sync_engine(request).orchestrator
