import os
from contextlib import contextmanager
from typing import Iterator

import psycopg


def get_database_url() -> str:
    """Get the database URL from environment variables."""
    return os.environ["DATABASE_URL"]


def get_sqlalchemy_database_url() -> str:
    """Get the database URL formatted for SQLAlchemy (used by Alembic).

    Converts postgresql:// to postgresql+psycopg:// so psycopg3 is used
    instead of psycopg2.
    """
    url = get_database_url()
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


@contextmanager
def get_db_connection() -> Iterator[psycopg.Connection]:
    """Get a database connection context manager.

    Explicitly closes the connection when the block exits.
    """
    conn = psycopg.connect(get_database_url())
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def get_db_cursor() -> Iterator[psycopg.Cursor]:
    """Get a database cursor context manager.

    Commits the transaction on successful completion, or rolls back on exception.
    """
    with get_db_connection() as conn:
        with conn.cursor() as cursor:
            try:
                yield cursor
                conn.commit()
            except Exception:
                conn.rollback()
                raise
