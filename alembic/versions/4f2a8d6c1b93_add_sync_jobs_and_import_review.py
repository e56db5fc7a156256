"""Add the sync job store and import review columns

Revision ID: 4f2a8d6c1b93
Revises: e51a9b03c7f2
Create Date: 2026-10-19 14:31:52.118406+00:00

"""

from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = "4f2a8d6c1b93"
down_revision: Union[str, Sequence[str], None] = "e51a9b03c7f2"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.execute("""
        CREATE TABLE calendar_sync_jobs (
            id VARCHAR(64) PRIMARY KEY,
            connection_id VARCHAR(64) NOT NULL,
            appointment_id VARCHAR(64),
            external_event_id VARCHAR(1024),
            operation VARCHAR(32) NOT NULL,
            trigger VARCHAR(32) NOT NULL,
            automatic BOOLEAN NOT NULL DEFAULT TRUE,
            starts_at TIMESTAMPTZ,
            serialization_key VARCHAR(1100) NOT NULL,
            status VARCHAR(20) NOT NULL DEFAULT 'queued' CHECK (status IN ('queued', 'running', 'failed_terminal')),
            parked BOOLEAN NOT NULL DEFAULT FALSE,
            attempts INTEGER NOT NULL DEFAULT 0,
            next_retry_at TIMESTAMPTZ,
            last_error TEXT,
            error_class VARCHAR(32),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            enqueued_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT fk_calendar_sync_jobs_connection_id FOREIGN KEY (connection_id)
                REFERENCES calendar_connections(id) ON DELETE CASCADE
        );

        -- At most one running job per appointment (or external event).
        CREATE UNIQUE INDEX uq_calendar_sync_jobs_running_key
            ON calendar_sync_jobs(serialization_key) WHERE status = 'running';
        CREATE INDEX idx_calendar_sync_jobs_due
            ON calendar_sync_jobs(status, parked, next_retry_at);
        CREATE INDEX idx_calendar_sync_jobs_appointment_id ON calendar_sync_jobs(appointment_id);

        ALTER TABLE calendar_import_candidates
            ADD COLUMN appointment_id VARCHAR(64),
            ADD COLUMN reviewed_by VARCHAR(255),
            ADD COLUMN reviewed_at TIMESTAMPTZ;
    """)


def downgrade() -> None:
    """Downgrade schema."""
    op.execute("""
        ALTER TABLE calendar_import_candidates
            DROP COLUMN IF EXISTS reviewed_at,
            DROP COLUMN IF EXISTS reviewed_by,
            DROP COLUMN IF EXISTS appointment_id;

        DROP TABLE IF EXISTS calendar_sync_jobs CASCADE;
    """)
