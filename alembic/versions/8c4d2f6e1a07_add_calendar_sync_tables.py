"""Add calendar connection, settings and event mapping tables

Revision ID: 8c4d2f6e1a07
Revises: 3b7e1c2a9d41
Create Date: 2026-10-19 09:30:41.552018+00:00

"""

from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = "8c4d2f6e1a07"
down_revision: Union[str, Sequence[str], None] = "3b7e1c2a9d41"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.execute("""
        CREATE TABLE calendar_connections (
            id VARCHAR(64) PRIMARY KEY,
            admin_id VARCHAR(64) NOT NULL,
            calendar_email TEXT NOT NULL,
            calendar_id TEXT NOT NULL,
            calendar_name TEXT,
            is_primary_calendar BOOLEAN NOT NULL DEFAULT TRUE,
            access_token TEXT NOT NULL,
            refresh_token TEXT,
            token_expires_at TIMESTAMPTZ,
            state VARCHAR(20) NOT NULL DEFAULT 'connected' CHECK (state IN ('connected', 'error', 'paused')),
            pause_reason TEXT,
            paused_at TIMESTAMPTZ,
            state_changed_by TEXT,
            consecutive_failures INTEGER NOT NULL DEFAULT 0,
            last_sync_at TIMESTAMPTZ,
            webhook_channel_id VARCHAR(64),
            webhook_resource_id TEXT,
            webhook_token TEXT,
            webhook_expires_at TIMESTAMPTZ,
            sync_token TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_calendar_connections_admin_id UNIQUE (admin_id)
        );

        CREATE INDEX idx_calendar_connections_webhook_channel_id
            ON calendar_connections(webhook_channel_id);
        CREATE INDEX idx_calendar_connections_webhook_expires_at
            ON calendar_connections(webhook_expires_at);

        CREATE TABLE calendar_sync_settings (
            connection_id VARCHAR(64) PRIMARY KEY,
            settings JSONB NOT NULL DEFAULT '{}'::jsonb,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT fk_calendar_sync_settings_connection_id FOREIGN KEY (connection_id)
                REFERENCES calendar_connections(id) ON DELETE CASCADE
        );

        CREATE TABLE calendar_event_mappings (
            fingerprint VARCHAR(64) NOT NULL,
            external_event_id VARCHAR(1024) NOT NULL,
            connection_id VARCHAR(64) NOT NULL,
            appointment_id VARCHAR(64),
            sync_direction VARCHAR(10) NOT NULL DEFAULT 'push' CHECK (sync_direction IN ('push', 'import')),
            last_synced_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT fk_calendar_event_mappings_connection_id FOREIGN KEY (connection_id)
                REFERENCES calendar_connections(id) ON DELETE CASCADE,
            CONSTRAINT uq_calendar_event_mappings_fingerprint UNIQUE (fingerprint),
            CONSTRAINT uq_calendar_event_mappings_external_event_id UNIQUE (external_event_id),
            CONSTRAINT uq_calendar_event_mappings_appointment_id UNIQUE (appointment_id)
        );

        CREATE INDEX idx_calendar_event_mappings_connection_id
            ON calendar_event_mappings(connection_id);
    """)


def downgrade() -> None:
    """Downgrade schema."""
    op.execute("""
        DROP TABLE IF EXISTS calendar_event_mappings CASCADE;
        DROP TABLE IF EXISTS calendar_sync_settings CASCADE;
        DROP TABLE IF EXISTS calendar_connections CASCADE;
    """)
