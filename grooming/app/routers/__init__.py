from .calendar_connection import router as calendar_connection_router
from .sync import router as sync_router
from .webhooks import router as webhook_router

__all__ = [
    "calendar_connection_router",
    "sync_router",
    "webhook_router",
]
