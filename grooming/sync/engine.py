"""Wiring for the calendar sync engine.

``build_sync_engine`` assembles the components against the real database and
Google client. Tests build the same components against in-memory fakes.
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from grooming.db import sync_settings as settings_db
from grooming.integrations.google.auth import GoogleToken
from grooming.integrations.google.calendar_client import (
    GoogleCalendarClient,
    GoogleCalendarError,
)
from grooming.models.calendar import CalendarConnection, CalendarSummary, SyncSettings
from .config import SyncConfig
from .connections import ConnectionStore
from .duplicates import DuplicateResolver, FingerprintPolicy
from .errors import ConnectionNotFound
from .executor import ClientFactory, SyncExecutor
from .history import SyncHistoryLog
from .imports import ImportReview
from .maintenance import SyncMaintenance
from .mapper import EventMapper
from .orchestrator import SyncOrchestrator
from .queue import Dispatcher, JobQueue
from .quota import QuotaGovernor
from .webhooks import WebhookManager

logger = logging.getLogger(__name__)


def webhook_address() -> str:
    return f"{os.environ['PUBLIC_API_BASE_URL']}/calendar/webhook"


@dataclass
class SyncEngine:
    config: SyncConfig
    connections: ConnectionStore
    history: SyncHistoryLog
    governor: QuotaGovernor
    resolver: DuplicateResolver
    orchestrator: SyncOrchestrator
    webhooks: WebhookManager
    maintenance: SyncMaintenance
    imports: ImportReview
    client_factory: ClientFactory
    settings_repo: Any = settings_db

    def connect(self, admin_id: str, token: GoogleToken, actor: str) -> CalendarConnection:
        connection = self.connections.connect(admin_id, token, actor)
        self._open_channel(connection)
        self.orchestrator.on_connected(connection)
        return connection

    def disconnect(self, actor: str) -> None:
        connection = self._require_connection()
        self.webhooks.stop(connection)
        self.connections.disconnect(connection.id, actor)

    def list_calendars(self) -> list[CalendarSummary]:
        connection = self._require_connection()
        items = self.client_factory(connection).list_calendars()
        return [
            CalendarSummary(
                id=item["id"],
                name=item.get("summaryOverride") or item.get("summary") or item["id"],
                primary=bool(item.get("primary", False)),
                access_role=item.get("accessRole"),
            )
            for item in items
        ]

    def select_calendar(
        self, calendar_id: str, calendar_name: Optional[str] = None
    ) -> CalendarConnection:
        connection = self._require_connection()
        self.webhooks.stop(connection)
        is_primary = calendar_id in ("primary", connection.calendar_email)
        connection = self.connections.select_calendar(
            connection.id, calendar_id, calendar_name, is_primary
        )
        self._open_channel(connection)
        return connection

    def get_settings(self) -> SyncSettings:
        connection = self._require_connection()
        return self.settings_repo.get_settings(connection.id)

    def update_settings(self, settings: SyncSettings, actor: str) -> SyncSettings:
        connection = self._require_connection()
        saved = self.settings_repo.save_settings(connection.id, settings)
        logger.info(
            f"Sync settings updated: connection_id={connection.id}, actor={actor}, "
            f"sync_direction={saved.sync_direction}, auto_sync_enabled={saved.auto_sync_enabled}"
        )
        return saved

    def _open_channel(self, connection: CalendarConnection) -> None:
        try:
            self.webhooks.register(connection)
        except (GoogleCalendarError, httpx.HTTPError) as e:
            # Imports still happen on the next renewal or manual scan.
            logger.error(
                f"Failed to register webhook channel: connection_id={connection.id}, "
                f"exception_type={type(e).__name__}, error={e}"
            )

    def _require_connection(self) -> CalendarConnection:
        connection = self.connections.get_active()
        if connection is None:
            raise ConnectionNotFound("No Google Calendar connection is configured")
        return connection


def build_sync_engine(
    config: Optional[SyncConfig] = None, dispatch: Optional[Dispatcher] = None
) -> SyncEngine:
    config = config or SyncConfig.from_env()
    logger.info(f"Building calendar sync engine: config={config.as_dict()}")
    if dispatch is None:
        from grooming.worker.celery_app import dispatch_sync_job

        dispatch = dispatch_sync_job

    history = SyncHistoryLog()
    connections = ConnectionStore(history)
    governor = QuotaGovernor(config)
    queue = JobQueue(dispatch=dispatch)

    def client_factory(connection: CalendarConnection) -> GoogleCalendarClient:
        return GoogleCalendarClient(
            connection,
            on_token_refresh=connections.update_tokens,
            call_recorder=governor.record_call,
            timeout=config.request_timeout_seconds,
        )

    resolver = DuplicateResolver(
        FingerprintPolicy(granularity_minutes=config.fingerprint_granularity_minutes)
    )
    executor = SyncExecutor(client_factory, EventMapper.from_config(config), resolver, connections)
    orchestrator = SyncOrchestrator(
        executor, connections, history, governor, resolver, config, queue=queue
    )
    webhooks = WebhookManager(connections, history, client_factory, config, webhook_address())
    maintenance = SyncMaintenance(webhooks, history, governor, queue, config)

    return SyncEngine(
        config=config,
        connections=connections,
        history=history,
        governor=governor,
        resolver=resolver,
        orchestrator=orchestrator,
        webhooks=webhooks,
        maintenance=maintenance,
        imports=ImportReview(connections, resolver, history),
        client_factory=client_factory,
    )
