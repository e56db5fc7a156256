"""User model for application-level user management."""

from __future__ import annotations
from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel


Role = Literal["staff", "admin"]


class User(BaseModel):
    """Application user with role-based access control.

    Users are created automatically on first login via the identity provider.
    Groomers and front-desk staff get the 'staff' role; only admins may change
    calendar connections and sync settings.
    """

    id: UUID
    idp_user_id: UUID
    email: str | None
    username: str | None
    role: Role
    created_at: datetime
    updated_at: datetime

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"
