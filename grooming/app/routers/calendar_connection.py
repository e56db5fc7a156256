"""Google Calendar connection management."""

import os
import logging
from urllib.parse import urlencode

from fastapi import APIRouter, HTTPException, Depends, status
from fastapi.responses import RedirectResponse

from grooming.app.auth import require_admin, require_staff
from grooming.app.dependencies import get_sync_engine
from grooming.app.models import AuthorizeResponse, ConnectionResponse
from grooming.app.oauth import create_oauth_state, decode_oauth_state
from grooming.integrations.google import auth as google_auth
from grooming.integrations.google.calendar_client import GoogleCalendarError
from grooming.models.calendar import (
    CalendarSummary,
    ConnectionStatus,
    SelectCalendarRequest,
)
from grooming.models.user import User
from grooming.sync.engine import SyncEngine
from grooming.sync.errors import ConnectionNotFound, InvalidCredential

PUBLIC_DASHBOARD_BASE_URL = os.environ["PUBLIC_DASHBOARD_BASE_URL"]

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/calendar/connection", tags=["calendar"])


def _dashboard_redirect(**params: str) -> RedirectResponse:
    return RedirectResponse(
        f"{PUBLIC_DASHBOARD_BASE_URL}/admin/settings/calendar?{urlencode(params)}"
    )


@router.get("", response_model=ConnectionResponse)
def get_connection(
    engine: SyncEngine = Depends(get_sync_engine),
    _user: User = Depends(require_staff),
) -> ConnectionResponse:
    connection = engine.connections.get_active()
    if connection is None:
        return ConnectionResponse(connected=False)
    return ConnectionResponse(connected=True, connection=connection.status())


@router.get("/authorize", response_model=AuthorizeResponse)
def authorize_connection(user: User = Depends(require_admin)) -> AuthorizeResponse:
    """Build the Google consent URL for connecting the business calendar.

    The admin's id is signed into the ``state`` parameter so the callback
    knows who authorized the connection.
    """
    url = google_auth.build_oauth_authorize_url(
        redirect_uri=google_auth.callback_redirect_uri(),
        state=create_oauth_state(str(user.id)),
    )
    return AuthorizeResponse(authorization_url=url)


@router.get("/callback")
async def connection_callback(
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    engine: SyncEngine = Depends(get_sync_engine),
) -> RedirectResponse:
    """Google OAuth callback endpoint."""
    if error:
        logger.error(f"Google OAuth error: {error}")
        return _dashboard_redirect(error=error)

    if code is None:
        raise HTTPException(status_code=400, detail="No code provided")

    admin_id = decode_oauth_state(state) if state else None
    if admin_id is None:
        raise HTTPException(status_code=400, detail="Invalid or expired OAuth state")

    token = await google_auth.exchange_code_for_token(code)
    try:
        engine.connect(admin_id, token, actor=f"admin:{admin_id}")
    except InvalidCredential as e:
        logger.warning(f"Calendar connection rejected: admin_id={admin_id}, error={e}")
        return _dashboard_redirect(error=str(e))

    return _dashboard_redirect(connected="true")


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
def delete_connection(
    engine: SyncEngine = Depends(get_sync_engine),
    user: User = Depends(require_admin),
) -> None:
    try:
        engine.disconnect(actor=f"admin:{user.id}")
    except ConnectionNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/calendars", response_model=list[CalendarSummary])
def list_calendars(
    engine: SyncEngine = Depends(get_sync_engine),
    _user: User = Depends(require_admin),
) -> list[CalendarSummary]:
    """List the writable calendars on the connected account."""
    try:
        return engine.list_calendars()
    except ConnectionNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except GoogleCalendarError as e:
        logger.error(f"Failed to list calendars: status_code={e.status_code}, error={e.message}")
        raise HTTPException(status_code=502, detail=f"Google Calendar error: {e.message}")


@router.put("/calendar", response_model=ConnectionStatus)
def select_calendar(
    request: SelectCalendarRequest,
    engine: SyncEngine = Depends(get_sync_engine),
    _user: User = Depends(require_admin),
) -> ConnectionStatus:
    try:
        connection = engine.select_calendar(request.calendar_id, request.calendar_name)
    except ConnectionNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return connection.status()
