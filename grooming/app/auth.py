"""OAuth authentication and role-based authorization."""

from .oauth import (
    get_current_user,
    require_staff,
    require_admin,
)

# Export for use in routers
__all__ = [
    "get_current_user",
    "require_staff",
    "require_admin",
]
