"""Connection store: the business's single Google Calendar connection.

Every state transition (connect, pause, resume, error, disconnect) records
who or what caused it and lands in the sync history.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Optional

import httpx

from grooming.db import calendar_connections as connections_db
from grooming.integrations.google import auth as google_auth
from grooming.integrations.google.auth import GoogleToken
from grooming.integrations.google.calendar_client import GoogleCalendarError
from grooming.models.calendar import CalendarConnection, ConnectionStatus
from grooming.models.sync import utc_now
from .errors import ConnectionNotFound, InvalidCredential
from .history import SyncHistoryLog

logger = logging.getLogger(__name__)


class ConnectionStore:
    def __init__(
        self,
        history: SyncHistoryLog,
        repository=connections_db,
        verifier: Callable[[str], dict[str, Any]] = google_auth.fetch_primary_calendar,
        revoker: Callable[[str], bool] = google_auth.revoke_token,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.history = history
        self.repository = repository
        self.verifier = verifier
        self.revoker = revoker
        self.clock = clock

    def connect(self, admin_id: str, token: GoogleToken, actor: str) -> CalendarConnection:
        """Store a freshly authorized credential as the admin's connection.

        Raises:
            InvalidCredential: if there is no refresh token or Google rejects
                the access token.
        """
        if not token.refresh_token:
            raise InvalidCredential(
                "Google did not return a refresh token. Revoke access at "
                "https://myaccount.google.com/permissions and connect again."
            )

        try:
            calendar = self.verifier(token.access_token)
        except GoogleCalendarError as e:
            if e.status_code in (400, 401, 403):
                logger.warning(
                    f"Google rejected new credential: admin_id={admin_id}, "
                    f"status_code={e.status_code}, reason={e.reason}"
                )
                raise InvalidCredential(f"Google rejected the credential: {e.message}") from e
            raise

        calendar_email = calendar.get("id", "")
        connection = self.repository.upsert_connection(
            admin_id=admin_id,
            calendar_email=calendar_email,
            calendar_id=calendar_email or "primary",
            access_token=token.access_token,
            refresh_token=token.refresh_token,
            token_expires_at=token.expires_at_datetime(),
            calendar_name=calendar.get("summary"),
            changed_by=actor,
        )
        self.history.record_event(
            connection.id, "connect", f"Connected Google Calendar {calendar_email} by {actor}"
        )
        logger.info(
            f"Calendar connected: connection_id={connection.id}, admin_id={admin_id}, "
            f"calendar_email={calendar_email}"
        )
        return connection

    def disconnect(self, connection_id: str, actor: str) -> None:
        connection = self.require(connection_id)
        try:
            self.revoker(connection.refresh_token or connection.access_token)
        except httpx.HTTPError as e:
            logger.warning(
                f"Failed to revoke token on disconnect: connection_id={connection_id}, "
                f"exception_type={type(e).__name__}, error={e}"
            )
        self.repository.delete_connection(connection_id)
        self.history.record_event(
            connection_id, "disconnect", f"Disconnected Google Calendar by {actor}"
        )
        logger.info(f"Calendar disconnected: connection_id={connection_id}, actor={actor}")

    def get(self, connection_id: str) -> Optional[CalendarConnection]:
        return self.repository.get_connection(connection_id)

    def require(self, connection_id: str) -> CalendarConnection:
        connection = self.repository.get_connection(connection_id)
        if connection is None:
            raise ConnectionNotFound(f"Calendar connection {connection_id} not found")
        return connection

    def get_active(self) -> Optional[CalendarConnection]:
        return self.repository.get_active_connection()

    def get_by_channel(self, channel_id: str) -> Optional[CalendarConnection]:
        return self.repository.get_connection_by_channel(channel_id)

    def get_status(self, connection_id: str) -> ConnectionStatus:
        return self.require(connection_id).status()

    def update_tokens(
        self,
        connection_id: str,
        access_token: str,
        expires_at: Optional[datetime],
        refresh_token: Optional[str] = None,
    ) -> None:
        """Token refresh path; the only writer of credentials besides connect."""
        self.repository.update_tokens(connection_id, access_token, expires_at, refresh_token)

    def select_calendar(
        self,
        connection_id: str,
        calendar_id: str,
        calendar_name: Optional[str],
        is_primary: bool,
    ) -> CalendarConnection:
        connection = self.repository.update_calendar(
            connection_id, calendar_id, calendar_name, is_primary
        )
        if connection is None:
            raise ConnectionNotFound(f"Calendar connection {connection_id} not found")
        logger.info(
            f"Selected calendar: connection_id={connection_id}, calendar_id={calendar_id}"
        )
        return connection

    def mark_error(self, connection_id: str, reason: str, actor: str) -> Optional[CalendarConnection]:
        connection = self.repository.update_state(
            connection_id, "error", changed_by=actor, pause_reason=reason
        )
        self.history.record_event(
            connection_id, "pause", reason, outcome="failure", tags=("credential-error",)
        )
        logger.error(
            f"Calendar connection moved to error: connection_id={connection_id}, "
            f"reason={reason}, actor={actor}"
        )
        return connection

    def pause(
        self,
        connection_id: str,
        reason: str,
        actor: str,
        tags: tuple[str, ...] = (),
    ) -> CalendarConnection:
        connection = self.repository.update_state(
            connection_id,
            "paused",
            changed_by=actor,
            pause_reason=reason,
            paused_at=self.clock(),
        )
        if connection is None:
            raise ConnectionNotFound(f"Calendar connection {connection_id} not found")
        self.history.record_event(connection_id, "pause", reason, tags=tags)
        logger.warning(
            f"Calendar sync paused: connection_id={connection_id}, actor={actor}, reason={reason}"
        )
        return connection

    def resume(self, connection_id: str, actor: str) -> CalendarConnection:
        connection = self.repository.update_state(
            connection_id, "connected", changed_by=actor, reset_failures=True
        )
        if connection is None:
            raise ConnectionNotFound(f"Calendar connection {connection_id} not found")
        self.history.record_event(connection_id, "resume", f"Sync resumed by {actor}")
        logger.info(f"Calendar sync resumed: connection_id={connection_id}, actor={actor}")
        return connection

    def record_success(self, connection_id: str) -> None:
        self.repository.record_success(connection_id, self.clock())

    def record_failure(self, connection_id: str) -> int:
        return self.repository.increment_failures(connection_id)

    def update_webhook(
        self,
        connection_id: str,
        channel_id: Optional[str],
        resource_id: Optional[str],
        token: Optional[str],
        expires_at: Optional[datetime],
    ) -> None:
        self.repository.update_webhook(connection_id, channel_id, resource_id, token, expires_at)

    def update_sync_token(self, connection_id: str, sync_token: Optional[str]) -> None:
        self.repository.update_sync_token(connection_id, sync_token)

    def list_expiring_webhooks(self, before: datetime) -> list[CalendarConnection]:
        return self.repository.list_expiring_webhooks(before)
