"""Inbound Google Calendar push notifications."""

import logging

from fastapi import APIRouter, Depends, Header

from grooming.app.dependencies import get_orchestrator
from grooming.app.models import WebhookAck
from grooming.sync.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/calendar", tags=["calendar"])


@router.post("/webhook", response_model=WebhookAck)
def calendar_webhook(
    x_goog_channel_id: str | None = Header(None),
    x_goog_resource_id: str | None = Header(None),
    x_goog_resource_state: str | None = Header(None),
    x_goog_channel_token: str | None = Header(None),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> WebhookAck:
    """Acknowledge a notification and queue an import scan.

    Google retries anything that is not a 2xx, so unknown or unauthenticated
    notifications are acknowledged and ignored rather than rejected.
    """
    if not x_goog_channel_id or not x_goog_resource_state:
        logger.warning("Webhook missing channel headers")
        return WebhookAck(status="ignored")

    job = orchestrator.on_webhook_notification(
        x_goog_channel_id,
        x_goog_resource_id,
        x_goog_resource_state,
        x_goog_channel_token,
    )
    if job is None:
        return WebhookAck(status="ignored")
    return WebhookAck(status="accepted", job_id=job.id)
