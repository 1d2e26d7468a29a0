"""Repository package exposing persistence-layer access for the account models."""

from __future__ import annotations

from merkur_auth.repositories.base import BaseRepository
from merkur_auth.repositories.role import RoleRepository
from merkur_auth.repositories.user import UserRepository, normalize_email

__all__ = [
    "BaseRepository",
    "RoleRepository",
    "UserRepository",
    "normalize_email",
]
