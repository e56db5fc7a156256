"""Google OAuth functions for connecting a business calendar."""

import os
from urllib.parse import urlencode
from datetime import datetime, timedelta, timezone
from typing import Any
import logging

import httpx
from fastapi import HTTPException
from pydantic import BaseModel

from .calendar_client import CALENDAR_API_BASE_URL, GOOGLE_TOKEN_URL, GoogleCalendarError

PUBLIC_API_BASE_URL = os.environ["PUBLIC_API_BASE_URL"]
GOOGLE_CLIENT_ID = os.environ["GOOGLE_CLIENT_ID"]
GOOGLE_CLIENT_SECRET = os.environ["GOOGLE_CLIENT_SECRET"]

GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"
CALENDAR_SCOPES = (
    "https://www.googleapis.com/auth/calendar "
    "https://www.googleapis.com/auth/userinfo.email"
)

logger = logging.getLogger(__name__)


def callback_redirect_uri() -> str:
    return f"{PUBLIC_API_BASE_URL}/calendar/connection/callback"


class GoogleToken(BaseModel):
    """An OAuth token for the Google API."""

    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None
    token_type: str = "Bearer"
    scope: str | None = None

    def expires_at_datetime(self) -> datetime | None:
        """Convert expires_in to a datetime."""
        if self.expires_in is None:
            return None
        return datetime.now(timezone.utc) + timedelta(seconds=self.expires_in)


async def exchange_code_for_token(code: str) -> GoogleToken:
    """Exchange a Google authorization code for an access token.

    Raises:
        HTTPException: If OAuth is not configured (503) or the exchange fails (502)
    """
    if not GOOGLE_CLIENT_ID or not GOOGLE_CLIENT_SECRET:
        raise HTTPException(
            status_code=503,
            detail="Google OAuth not configured. Missing GOOGLE_CLIENT_ID or GOOGLE_CLIENT_SECRET",
        )

    async with httpx.AsyncClient(timeout=10) as client:
        response = await client.post(
            GOOGLE_TOKEN_URL,
            data={
                "client_id": GOOGLE_CLIENT_ID,
                "client_secret": GOOGLE_CLIENT_SECRET,
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": callback_redirect_uri(),
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )

    if response.status_code != 200:
        error_text = response.text
        logger.error(
            f"Failed to exchange Google code: {response.status_code} - {error_text}"
        )
        raise HTTPException(
            status_code=502,
            detail=f"Failed to exchange Google code (status {response.status_code}): {error_text}",
        )

    token_data = response.json()
    return GoogleToken(
        access_token=token_data["access_token"],
        refresh_token=token_data.get("refresh_token"),
        expires_in=token_data.get("expires_in"),
        token_type=token_data.get("token_type", "Bearer"),
        scope=token_data.get("scope"),
    )


def build_oauth_authorize_url(redirect_uri: str, state: str | None = None) -> str:
    """Build the Google OAuth authorization URL.

    Raises:
        ValueError: If GOOGLE_CLIENT_ID is not configured
    """
    if not GOOGLE_CLIENT_ID:
        raise ValueError("GOOGLE_CLIENT_ID environment variable is not set")

    params = {
        "client_id": GOOGLE_CLIENT_ID,
        "redirect_uri": redirect_uri,
        "scope": CALENDAR_SCOPES,
        "response_type": "code",
        "access_type": "offline",  # Required to get refresh token
        "prompt": "consent",  # Force consent screen to ensure refresh token
    }
    if state is not None:
        params["state"] = state

    return f"https://accounts.google.com/o/oauth2/v2/auth?{urlencode(params)}"


def fetch_primary_calendar(access_token: str, timeout: float = 10.0) -> dict[str, Any]:
    """Fetch the account's primary calendar to verify a freshly issued token.

    The primary calendar's id is the account email.

    Raises:
        GoogleCalendarError: If Google rejects the token or the request fails
    """
    with httpx.Client(timeout=timeout) as client:
        response = client.get(
            f"{CALENDAR_API_BASE_URL}/calendars/primary",
            headers={"Authorization": f"Bearer {access_token}"},
        )
    if response.status_code != 200:
        raise GoogleCalendarError.from_response(response)
    return response.json()


def revoke_token(token: str, timeout: float = 10.0) -> bool:
    """Revoke a token at Google. Returns False if Google refused."""
    with httpx.Client(timeout=timeout) as client:
        response = client.post(
            GOOGLE_REVOKE_URL,
            data={"token": token},
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
    if response.status_code != 200:
        logger.warning(
            f"Failed to revoke Google token: status_code={response.status_code}, "
            f"response_text={response.text[:200]}"
        )
        return False
    return True
