"""Database operations for staff accounts."""

import logging
from typing import Optional
from uuid import UUID

from grooming.models.user import User, Role
from .connection import get_db_cursor

logger = logging.getLogger(__name__)

_COLUMNS = "id, idp_user_id, email, username, role, created_at, updated_at"


def get_user_by_idp_id(idp_user_id: UUID) -> Optional[User]:
    """Get a user by their identity provider user ID (sub claim)."""
    with get_db_cursor() as cursor:
        cursor.execute(
            f"SELECT {_COLUMNS} FROM users WHERE idp_user_id = %s",
            (str(idp_user_id),),
        )
        row = cursor.fetchone()
        return _row_to_user(row) if row else None


def create_user(
    idp_user_id: UUID,
    email: Optional[str],
    username: Optional[str],
    role: Role = "staff",
) -> User:
    """Create a new user record. New accounts start as staff."""
    logger.info(
        f"Creating new user with idp_user_id={idp_user_id}, username={username}"
    )
    with get_db_cursor() as cursor:
        cursor.execute(
            f"""
            INSERT INTO users (idp_user_id, email, username, role)
            VALUES (%s, %s, %s, %s)
            RETURNING {_COLUMNS}
            """,
            (str(idp_user_id), email, username, role),
        )
        user = _row_to_user(cursor.fetchone())
    logger.info(f"Created user id={user.id} for idp_user_id={idp_user_id}")
    return user


def update_user_profile(
    idp_user_id: UUID,
    email: Optional[str],
    username: Optional[str],
) -> Optional[User]:
    """Refresh the cached email/username from the identity provider."""
    with get_db_cursor() as cursor:
        cursor.execute(
            f"""
            UPDATE users
            SET email = %s, username = %s, updated_at = NOW()
            WHERE idp_user_id = %s
            RETURNING {_COLUMNS}
            """,
            (email, username, str(idp_user_id)),
        )
        row = cursor.fetchone()
        return _row_to_user(row) if row else None


def get_or_create_user(
    idp_user_id: UUID,
    email: Optional[str],
    username: Optional[str],
) -> User:
    """Get an existing user (refreshing their profile) or create a staff account."""
    existing_user = get_user_by_idp_id(idp_user_id)

    if existing_user:
        if existing_user.email != email or existing_user.username != username:
            logger.debug(f"Updating profile for user {idp_user_id}")
            updated_user = update_user_profile(idp_user_id, email, username)
            if updated_user:
                return updated_user
        return existing_user

    return create_user(idp_user_id, email, username)


def _row_to_user(row) -> User:
    id, idp_user_id, email, username, role, created_at, updated_at = row
    return User(
        id=id,
        idp_user_id=idp_user_id,
        email=email,
        username=username,
        role=role,
        created_at=created_at,
        updated_at=updated_at,
    )
