# merkur_auth/services/auth/dto.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from merkur_auth.services._shared.ports.account_directory import Account

# ---------------------------- Input DTOs ---------------------------------- #


@dataclass(frozen=True, slots=True)
class RegisterIn:
    """
    Input DTO for registration.

    :param email: User email (normalized by the service).
    :type email: str
    :param password: Raw password (checked against the policy, then hashed).
    :type password: str
    """

    email: str
    password: str
    first_name: str | None = None
    last_name: str | None = None
    company_name: str | None = None


@dataclass(frozen=True, slots=True)
class LoginIn:
    """
    Input DTO for login.

    :param email: User email.
    :type email: str
    :param password: Raw password (to be verified).
    :type password: str
    """

    email: str
    password: str


@dataclass(frozen=True, slots=True)
class ClientInfo:
    """Request origin recorded on refresh records and audit events."""

    ip_address: str | None = None
    user_agent: str | None = None


# --------------------------- Output DTOs ---------------------------------- #


@dataclass(frozen=True, slots=True)
class TokenPair:
    """
    Output DTO with access and refresh tokens.

    :param access_token: Encoded access JWT.
    :type access_token: str
    :param refresh_token: Encoded refresh JWT.
    :type refresh_token: str
    :param expires_in: Access-token lifetime in seconds.
    :type expires_in: int
    """

    access_token: str
    refresh_token: str
    expires_in: int


@dataclass(frozen=True, slots=True)
class UserOut:
    """Public view of the authenticated account."""

    id: int
    email: str
    first_name: str | None
    last_name: str | None
    company_name: str | None
    roles: tuple[str, ...]

    @classmethod
    def from_account(cls, account: Account) -> UserOut:
        return cls(
            id=account.principal.user_id,
            email=account.principal.email,
            first_name=account.profile.first_name,
            last_name=account.profile.last_name,
            company_name=account.profile.company_name,
            roles=tuple(sorted(account.principal.roles)),
        )


@dataclass(frozen=True, slots=True)
class AuthSession:
    tokens: TokenPair
    user: UserOut


class AuthErrorKind(str, Enum):
    """Client-visible failure categories. Values double as API error codes."""

    DUPLICATE_EMAIL = "duplicate_email"
    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_INACTIVE = "account_inactive"
    INVALID_REFRESH_TOKEN = "invalid_refresh_token"
    VALIDATION_ERROR = "validation_error"
    TRANSIENT_FAILURE = "transient_failure"


@dataclass(frozen=True, slots=True)
class AuthOutcome:
    """
    Result of an orchestrator operation.

    Exactly one of ``session``/``error`` is set for register, login and
    refresh; logout-style operations succeed with neither.

    :param violations: Password-policy messages for ``VALIDATION_ERROR``.
    """

    session: AuthSession | None = None
    user: UserOut | None = None
    error: AuthErrorKind | None = None
    violations: tuple[str, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, session: AuthSession | None = None) -> AuthOutcome:
        return cls(session=session, user=session.user if session else None)

    @classmethod
    def found(cls, user: UserOut) -> AuthOutcome:
        return cls(user=user)

    @classmethod
    def failure(cls, error: AuthErrorKind, violations: tuple[str, ...] = ()) -> AuthOutcome:
        return cls(error=error, violations=violations)
