"""Add sync audit log, API quota ledger and import candidate tables

Revision ID: e51a9b03c7f2
Revises: 8c4d2f6e1a07
Create Date: 2026-10-19 10:04:17.902331+00:00

"""

from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = "e51a9b03c7f2"
down_revision: Union[str, Sequence[str], None] = "8c4d2f6e1a07"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.execute("""
        -- Audit entries outlive their connection, so no foreign key here.
        CREATE TABLE calendar_sync_log (
            id BIGSERIAL PRIMARY KEY,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            connection_id VARCHAR(64),
            job_id VARCHAR(64),
            appointment_id VARCHAR(64),
            external_event_id VARCHAR(1024),
            operation VARCHAR(32) NOT NULL,
            outcome VARCHAR(10) NOT NULL CHECK (outcome IN ('success', 'failure', 'skipped')),
            error_class VARCHAR(32),
            error_code VARCHAR(64),
            message TEXT NOT NULL DEFAULT '',
            retry_count INTEGER NOT NULL DEFAULT 0,
            tags TEXT[] NOT NULL DEFAULT '{}',
            duration_ms INTEGER
        );

        CREATE INDEX idx_calendar_sync_log_created_at ON calendar_sync_log(created_at DESC);
        CREATE INDEX idx_calendar_sync_log_connection_id ON calendar_sync_log(connection_id);
        CREATE INDEX idx_calendar_sync_log_appointment_id ON calendar_sync_log(appointment_id);
        CREATE INDEX idx_calendar_sync_log_outcome ON calendar_sync_log(outcome);
        CREATE INDEX idx_calendar_sync_log_tags ON calendar_sync_log USING GIN (tags);

        CREATE TABLE calendar_api_quota (
            window_start TIMESTAMPTZ PRIMARY KEY,
            call_count INTEGER NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );

        CREATE TABLE calendar_import_candidates (
            id SERIAL PRIMARY KEY,
            external_event_id VARCHAR(1024) NOT NULL,
            connection_id VARCHAR(64) NOT NULL,
            summary TEXT NOT NULL DEFAULT '',
            starts_at TIMESTAMPTZ NOT NULL,
            ends_at TIMESTAMPTZ NOT NULL,
            all_day BOOLEAN NOT NULL DEFAULT FALSE,
            customer_name TEXT,
            customer_email TEXT,
            customer_phone TEXT,
            pet_name TEXT,
            service_name TEXT,
            notes TEXT,
            status VARCHAR(20) NOT NULL DEFAULT 'pending' CHECK (status IN ('pending', 'accepted', 'dismissed')),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT fk_calendar_import_candidates_connection_id FOREIGN KEY (connection_id)
                REFERENCES calendar_connections(id) ON DELETE CASCADE,
            CONSTRAINT uq_calendar_import_candidates_external_event_id UNIQUE (external_event_id)
        );

        CREATE INDEX idx_calendar_import_candidates_status ON calendar_import_candidates(status);
    """)


def downgrade() -> None:
    """Downgrade schema."""
    op.execute("""
        DROP TABLE IF EXISTS calendar_import_candidates CASCADE;
        DROP TABLE IF EXISTS calendar_api_quota CASCADE;
        DROP TABLE IF EXISTS calendar_sync_log CASCADE;
    """)
