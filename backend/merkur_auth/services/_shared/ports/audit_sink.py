from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol


class AuditAction:
    """Action names emitted by the auth flows (``auth.{action}.{status}``)."""

    LOGIN_SUCCESS = "auth.login.success"
    LOGIN_FAILED = "auth.login.failed"
    REGISTER_SUCCESS = "auth.register.success"
    REFRESH_SUCCESS = "auth.refresh.success"
    REFRESH_FAILED = "auth.refresh.failed"
    LOGOUT_SUCCESS = "auth.logout.success"
    LOGOUT_ALL_SUCCESS = "auth.logout_all.success"


@dataclass(frozen=True, slots=True)
class AuthEvent:
    """
    One audit record.

    :ivar action: One of :class:`AuditAction`.
    :ivar reason: Internal failure detail (never sent to clients).
    """

    action: str
    user_id: int | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    reason: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


class AuditSink(Protocol):
    """Consumer of auth events. Delivery is fire-and-forget for the caller."""

    def emit(self, event: AuthEvent) -> None: ...
