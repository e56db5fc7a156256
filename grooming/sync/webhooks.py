"""Google Calendar push-notification channels.

Channels expire (Google caps the TTL at about a week), so the maintenance
loop renews any channel that expires within the renewal threshold.
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional
from uuid import uuid4

import httpx

from grooming.integrations.google.calendar_client import GoogleCalendarError
from grooming.models.calendar import CalendarConnection
from grooming.models.sync import utc_now
from .config import SyncConfig
from .connections import ConnectionStore
from .executor import ClientFactory
from .history import SyncHistoryLog

logger = logging.getLogger(__name__)


def _parse_expiration(channel: dict[str, Any], fallback: datetime) -> datetime:
    """Google reports channel expiration as epoch milliseconds in a string."""
    raw = channel.get("expiration")
    if not raw:
        return fallback
    return datetime.fromtimestamp(int(raw) / 1000, tz=timezone.utc)


class WebhookManager:
    def __init__(
        self,
        connections: ConnectionStore,
        history: SyncHistoryLog,
        client_factory: ClientFactory,
        config: SyncConfig,
        address: str,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.connections = connections
        self.history = history
        self.client_factory = client_factory
        self.config = config
        self.address = address
        self.clock = clock

    def register(self, connection: CalendarConnection) -> datetime:
        """Open a new watch channel for the connection's calendar. Returns its expiry."""
        channel_id = uuid4().hex
        token = secrets.token_urlsafe(32)
        client = self.client_factory(connection)
        channel = client.watch_events(
            channel_id, self.address, token, self.config.webhook_ttl_seconds
        )
        expires_at = _parse_expiration(
            channel, self.clock() + timedelta(seconds=self.config.webhook_ttl_seconds)
        )
        self.connections.update_webhook(
            connection.id, channel_id, channel.get("resourceId"), token, expires_at
        )
        connection.webhook_channel_id = channel_id
        connection.webhook_resource_id = channel.get("resourceId")
        connection.webhook_token = token
        connection.webhook_expires_at = expires_at
        return expires_at

    def renew(self, connection: CalendarConnection) -> datetime:
        old_channel_id = connection.webhook_channel_id
        old_resource_id = connection.webhook_resource_id
        expires_at = self.register(connection)
        if old_channel_id and old_resource_id:
            self._stop_channel(connection, old_channel_id, old_resource_id)
        self.history.record_event(
            connection.id,
            "webhook_renewal",
            f"Webhook channel renewed until {expires_at.isoformat()}",
        )
        return expires_at

    def renew_expiring(self, now: Optional[datetime] = None) -> int:
        """Renew every channel expiring within the threshold. Returns how many were renewed."""
        now = now or self.clock()
        threshold = now + timedelta(hours=self.config.webhook_renewal_threshold_hours)
        renewed = 0
        for connection in self.connections.list_expiring_webhooks(threshold):
            try:
                self.renew(connection)
                renewed += 1
            except (GoogleCalendarError, httpx.HTTPError) as e:
                logger.error(
                    f"Webhook renewal failed: connection_id={connection.id}, "
                    f"exception_type={type(e).__name__}, error={e}"
                )
                self.history.record_event(
                    connection.id,
                    "webhook_renewal",
                    f"Webhook renewal failed: {e}",
                    outcome="failure",
                    error_code=type(e).__name__,
                )
        return renewed

    def stop(self, connection: CalendarConnection) -> None:
        if connection.webhook_channel_id and connection.webhook_resource_id:
            self._stop_channel(
                connection, connection.webhook_channel_id, connection.webhook_resource_id
            )
        self.connections.update_webhook(connection.id, None, None, None, None)

    def _stop_channel(
        self, connection: CalendarConnection, channel_id: str, resource_id: str
    ) -> None:
        # The old channel expires on its own; failing to stop it early is harmless.
        try:
            self.client_factory(connection).stop_channel(channel_id, resource_id)
        except (GoogleCalendarError, httpx.HTTPError) as e:
            logger.warning(
                f"Failed to stop webhook channel: channel_id={channel_id}, "
                f"exception_type={type(e).__name__}, error={e}"
            )
