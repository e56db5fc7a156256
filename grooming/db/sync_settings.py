"""Database operations for per-connection sync settings."""

import json
import logging
from datetime import datetime, timezone

from grooming.models.calendar import SyncSettings
from .connection import get_db_cursor

logger = logging.getLogger(__name__)


def get_settings(connection_id: str) -> SyncSettings:
    """Get the connection's sync settings, or the defaults if none are stored."""
    with get_db_cursor() as cursor:
        cursor.execute(
            """
            SELECT settings
            FROM calendar_sync_settings
            WHERE connection_id = %s
            """,
            (connection_id,),
        )
        row = cursor.fetchone()
    if row is None:
        return SyncSettings()
    raw = row[0]
    data = raw if isinstance(raw, dict) else json.loads(raw or "{}")
    return SyncSettings.model_validate(data)


def save_settings(connection_id: str, settings: SyncSettings) -> SyncSettings:
    now = datetime.now(timezone.utc)
    with get_db_cursor() as cursor:
        cursor.execute(
            """
            INSERT INTO calendar_sync_settings (connection_id, settings, updated_at)
            VALUES (%s, %s::jsonb, %s)
            ON CONFLICT (connection_id)
            DO UPDATE SET
                settings = EXCLUDED.settings,
                updated_at = EXCLUDED.updated_at
            """,
            (connection_id, settings.model_dump_json(), now),
        )
    logger.info(
        f"Saved sync settings: connection_id={connection_id}, "
        f"direction={settings.sync_direction}, auto_sync={settings.auto_sync_enabled}"
    )
    return settings
