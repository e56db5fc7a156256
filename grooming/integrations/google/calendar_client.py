"""Google Calendar API client used by the sync engine."""

import os
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional
from urllib.parse import quote

import httpx

from grooming.models.calendar import CalendarConnection

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"

# (connection_id, access_token, expires_at, refresh_token)
TokenRefreshCallback = Callable[[str, str, Optional[datetime], Optional[str]], None]


class GoogleCalendarError(Exception):
    """A non-2xx response from the Google Calendar API."""

    def __init__(
        self,
        status_code: int,
        message: str,
        reason: str | None = None,
        retry_after: float | None = None,
    ):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message
        self.reason = reason
        self.retry_after = retry_after

    @classmethod
    def from_response(cls, response: httpx.Response) -> "GoogleCalendarError":
        message = response.text[:500]
        reason = None
        try:
            error = response.json().get("error", {})
        except ValueError:
            error = {}
        if isinstance(error, dict):
            message = error.get("message", message)
            errors = error.get("errors") or []
            if errors and isinstance(errors[0], dict):
                reason = errors[0].get("reason")

        retry_after = None
        raw_retry_after = response.headers.get("Retry-After")
        if raw_retry_after and raw_retry_after.isdigit():
            retry_after = float(raw_retry_after)

        return cls(response.status_code, message, reason=reason, retry_after=retry_after)


class GoogleCredentialError(Exception):
    """The access token could not be refreshed.

    ``transient`` is False when the refresh token is missing, expired or
    revoked and the admin has to reconnect.
    """

    def __init__(self, message: str, transient: bool = False):
        super().__init__(message)
        self.transient = transient


@dataclass
class EventListing:
    items: list[Dict[str, Any]] = field(default_factory=list)
    next_sync_token: str | None = None


class GoogleCalendarClient:
    """Client for the Google Calendar API, bound to one calendar connection.

    Every outgoing API request is reported to ``call_recorder`` so the quota
    ledger sees it. Refreshed tokens are handed to ``on_token_refresh`` for
    persistence; this is the only place credentials change outside of
    connect/disconnect.
    """

    def __init__(
        self,
        connection: CalendarConnection,
        on_token_refresh: TokenRefreshCallback | None = None,
        call_recorder: Callable[[], Any] | None = None,
        timeout: float = 10.0,
    ):
        self.connection = connection
        self.calendar_id = connection.calendar_id or "primary"
        self.client_id = os.getenv("GOOGLE_CLIENT_ID", "")
        self.client_secret = os.getenv("GOOGLE_CLIENT_SECRET", "")
        self.on_token_refresh = on_token_refresh
        self.call_recorder = call_recorder
        self.timeout = timeout
        self.base_url = CALENDAR_API_BASE_URL

    @property
    def _calendar_url(self) -> str:
        return f"{self.base_url}/calendars/{quote(self.calendar_id, safe='')}"

    def _get_headers(self) -> Dict[str, str]:
        """Get headers for API requests."""
        return {
            "Authorization": f"Bearer {self.connection.access_token}",
            "Content-Type": "application/json",
        }

    def _refresh_access_token(self) -> None:
        """Refresh the access token using the refresh token.

        Raises:
            GoogleCredentialError: if there is no refresh token, the refresh
                token is revoked/expired (invalid_grant), or Google refused
                the refresh for another reason (transient).
        """
        if not self.connection.refresh_token:
            raise GoogleCredentialError(
                "No refresh token available. Re-authorization required."
            )

        with httpx.Client(timeout=self.timeout) as client:
            response = client.post(
                GOOGLE_TOKEN_URL,
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "refresh_token": self.connection.refresh_token,
                    "grant_type": "refresh_token",
                },
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )

        if response.status_code != 200:
            error_data: Dict[str, Any] = {}
            try:
                error_data = response.json()
            except ValueError as json_error:
                logger.warning(
                    f"Failed to parse token refresh error response as JSON: "
                    f"exception_type={type(json_error).__name__}, error={json_error}, "
                    f"raw_response={response.text[:500]}"
                )

            if response.status_code in (400, 401) and error_data.get("error") in (
                "invalid_grant",
                "unauthorized_client",
            ):
                logger.error(
                    f"Refresh token has been expired or revoked. "
                    f"Re-authorization required. connection_id={self.connection.id}, "
                    f"status_code={response.status_code}, "
                    f"error_code={error_data.get('error')}, "
                    f"error_description={error_data.get('error_description', 'N/A')}"
                )
                raise GoogleCredentialError(
                    "Refresh token expired or revoked. Re-authorization required."
                )

            logger.error(
                f"Failed to refresh token: connection_id={self.connection.id}, "
                f"status_code={response.status_code}, error_data={error_data}"
            )
            raise GoogleCredentialError(
                f"Token refresh failed with status {response.status_code}",
                transient=True,
            )

        token_data = response.json()
        expires_at = None
        if "expires_in" in token_data:
            expires_at = datetime.now(timezone.utc) + timedelta(
                seconds=token_data["expires_in"]
            )
        # Google may return a new refresh token
        new_refresh_token = token_data.get("refresh_token")

        self.connection.access_token = token_data["access_token"]
        self.connection.token_expires_at = expires_at
        if new_refresh_token:
            self.connection.refresh_token = new_refresh_token
            logger.info(
                f"Google provided a new refresh token: connection_id={self.connection.id}"
            )

        if self.on_token_refresh is not None:
            try:
                self.on_token_refresh(
                    self.connection.id,
                    self.connection.access_token,
                    expires_at,
                    new_refresh_token,
                )
            except Exception as db_error:
                logger.exception(
                    f"Failed to persist refreshed token: connection_id={self.connection.id}, "
                    f"exception_type={type(db_error).__name__}, error={db_error}"
                )
                logger.warning(
                    "Token refreshed in memory but not persisted - may need to refresh again on restart"
                )
        logger.info(
            f"Refreshed Google access token: connection_id={self.connection.id}"
        )

    def _send(self, client: httpx.Client, method: str, url: str, **kwargs) -> httpx.Response:
        if self.call_recorder is not None:
            self.call_recorder()
        kwargs["headers"] = {**kwargs.get("headers", {}), **self._get_headers()}
        return client.request(method, url, **kwargs)

    def _make_request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Make an API request, refreshing the token when expired or on a 401.

        Raises:
            GoogleCalendarError: for any non-2xx response.
            GoogleCredentialError: if the token cannot be refreshed.
            httpx.TransportError: on network failures and timeouts.
        """
        if self.connection.needs_token_refresh():
            logger.info(
                f"Access token expired or about to expire, refreshing proactively: "
                f"connection_id={self.connection.id}"
            )
            self._refresh_access_token()

        with httpx.Client(timeout=self.timeout) as client:
            response = self._send(client, method, url, **kwargs)

            # If unauthorized, refresh the token and retry once
            if response.status_code == 401 and self.connection.refresh_token:
                logger.warning(
                    f"Received 401 Unauthorized for {method} request to {url}, "
                    f"attempting token refresh and retry"
                )
                self._refresh_access_token()
                response = self._send(client, method, url, **kwargs)
                logger.info(
                    f"Retried {method} request to {url} after token refresh, "
                    f"status_code={response.status_code}"
                )

        if response.status_code >= 400:
            error = GoogleCalendarError.from_response(response)
            logger.warning(
                f"Google Calendar request failed: method={method}, url={url}, "
                f"status_code={error.status_code}, reason={error.reason}, "
                f"message={error.message}"
            )
            raise error
        return response

    def create_event(self, event: Dict[str, Any]) -> Dict[str, Any]:
        """Create an event on the connected calendar and return it."""
        response = self._make_request("POST", f"{self._calendar_url}/events", json=event)
        created = response.json()
        logger.info(
            f"Created calendar event: event_id={created.get('id')}, "
            f"calendar_id={self.calendar_id}"
        )
        return created

    def update_event(self, event_id: str, event: Dict[str, Any]) -> Dict[str, Any]:
        """Patch an existing event and return the updated resource."""
        response = self._make_request(
            "PATCH", f"{self._calendar_url}/events/{quote(event_id, safe='')}", json=event
        )
        logger.info(
            f"Updated calendar event: event_id={event_id}, calendar_id={self.calendar_id}"
        )
        return response.json()

    def delete_event(self, event_id: str) -> bool:
        """Delete an event.

        Returns:
            True if the event was deleted, False if it was already gone.
        """
        try:
            self._make_request(
                "DELETE", f"{self._calendar_url}/events/{quote(event_id, safe='')}"
            )
        except GoogleCalendarError as e:
            if e.status_code in (404, 410):
                logger.info(
                    f"Calendar event already deleted: event_id={event_id}, "
                    f"calendar_id={self.calendar_id}, status_code={e.status_code}"
                )
                return False
            raise
        logger.info(
            f"Deleted calendar event: event_id={event_id}, calendar_id={self.calendar_id}"
        )
        return True

    def get_event(self, event_id: str) -> Dict[str, Any]:
        response = self._make_request(
            "GET", f"{self._calendar_url}/events/{quote(event_id, safe='')}"
        )
        return response.json()

    def list_events(
        self,
        sync_token: str | None = None,
        time_min: datetime | None = None,
    ) -> EventListing:
        """List events changed since ``sync_token``, following every page.

        Without a sync token this is a full listing starting at ``time_min``.
        A 410 response means the sync token expired; the caller must retry
        without it.
        """
        params: Dict[str, Any] = {"singleEvents": "true", "showDeleted": "true"}
        if sync_token:
            params["syncToken"] = sync_token
        elif time_min is not None:
            params["timeMin"] = time_min.astimezone(timezone.utc).isoformat()

        listing = EventListing()
        while True:
            response = self._make_request(
                "GET", f"{self._calendar_url}/events", params=params
            )
            data = response.json()
            listing.items.extend(data.get("items", []))
            page_token = data.get("nextPageToken")
            if not page_token:
                listing.next_sync_token = data.get("nextSyncToken")
                break
            params["pageToken"] = page_token

        logger.info(
            f"Listed calendar events: calendar_id={self.calendar_id}, "
            f"count={len(listing.items)}, incremental={sync_token is not None}"
        )
        return listing

    def list_calendars(self) -> list[Dict[str, Any]]:
        """Calendars the account can write to."""
        response = self._make_request(
            "GET",
            f"{self.base_url}/users/me/calendarList",
            params={"minAccessRole": "writer"},
        )
        return response.json().get("items", [])

    def get_calendar(self) -> Dict[str, Any]:
        response = self._make_request("GET", self._calendar_url)
        return response.json()

    def watch_events(
        self, channel_id: str, address: str, token: str, ttl_seconds: int
    ) -> Dict[str, Any]:
        """Subscribe a push-notification channel to the calendar's events."""
        response = self._make_request(
            "POST",
            f"{self._calendar_url}/events/watch",
            json={
                "id": channel_id,
                "type": "web_hook",
                "address": address,
                "token": token,
                "params": {"ttl": str(ttl_seconds)},
            },
        )
        channel = response.json()
        logger.info(
            f"Registered calendar watch channel: channel_id={channel_id}, "
            f"resource_id={channel.get('resourceId')}, expiration={channel.get('expiration')}"
        )
        return channel

    def stop_channel(self, channel_id: str, resource_id: str) -> None:
        self._make_request(
            "POST",
            f"{self.base_url}/channels/stop",
            json={"id": channel_id, "resourceId": resource_id},
        )
        logger.info(f"Stopped calendar watch channel: channel_id={channel_id}")
