"""SQLAlchemy models registered on the shared metadata."""

from __future__ import annotations

from .refresh_token import RefreshToken, RevokedTokenFamily
from .role import Role, user_roles
from .user import User

__all__ = ["RefreshToken", "RevokedTokenFamily", "Role", "User", "user_roles"]
