"""Convenience exports for application schemas."""

from __future__ import annotations

from .auth import (
    AuthResponseSchema,
    LoginSchema,
    RefreshTokenSchema,
    RegisterSchema,
    UserSchema,
)

__all__ = [
    "AuthResponseSchema",
    "LoginSchema",
    "RefreshTokenSchema",
    "RegisterSchema",
    "UserSchema",
]
