from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Protocol


class TokenKind(str, Enum):
    """Token purpose; each kind is signed with its own secret."""

    ACCESS = "access"
    REFRESH = "refresh"


class TokenFailure(Enum):
    """Why a token was rejected. Both values are rejections."""

    EXPIRED = "expired"
    INVALID = "invalid"


@dataclass(frozen=True, slots=True)
class IdentityClaims:
    """
    Identity carried by both token kinds.

    :ivar sub: User id as a string.
    :ivar email: Normalized account email.
    :ivar roles: Role names granted to the account.
    """

    sub: str
    email: str
    roles: tuple[str, ...] = ()

    @classmethod
    def of(cls, *, user_id: int | str, email: str, roles: Iterable[str]) -> IdentityClaims:
        return cls(sub=str(user_id), email=email, roles=tuple(sorted(roles)))


@dataclass(frozen=True, slots=True)
class TokenClaims:
    """
    Decoded, verified claims of a token.

    :ivar iat: Issued-at (seconds since epoch).
    :ivar exp: Expiry (seconds since epoch).
    :ivar jti: Unique token id.
    :ivar type: ``"access"`` or ``"refresh"``.
    """

    sub: str
    email: str
    roles: tuple[str, ...]
    iat: int
    exp: int
    jti: str
    type: str

    @property
    def identity(self) -> IdentityClaims:
        return IdentityClaims(sub=self.sub, email=self.email, roles=self.roles)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> TokenClaims:
        """Build claims from a decoded JWT payload.

        :raises KeyError: If a required claim is missing.
        :raises TypeError: If ``roles`` is not a list of strings.
        """
        roles = payload.get("roles") or []
        if not isinstance(roles, list | tuple) or not all(isinstance(r, str) for r in roles):
            raise TypeError("roles claim must be a list of strings")
        return cls(
            sub=str(payload["sub"]),
            email=str(payload["email"]),
            roles=tuple(roles),
            iat=int(payload["iat"]),
            exp=int(payload["exp"]),
            jti=str(payload["jti"]),
            type=str(payload["type"]),
        )


@dataclass(frozen=True, slots=True)
class TokenVerification:
    """Result of :meth:`TokenIssuer.verify`: claims on success, a failure otherwise."""

    claims: TokenClaims | None = None
    failure: TokenFailure | None = None

    @property
    def ok(self) -> bool:
        return self.claims is not None

    @classmethod
    def success(cls, claims: TokenClaims) -> TokenVerification:
        return cls(claims=claims)

    @classmethod
    def rejected(cls, failure: TokenFailure) -> TokenVerification:
        return cls(failure=failure)


class TokenIssuer(Protocol):
    """
    Signs and verifies access/refresh JWTs.

    Access and refresh tokens MUST be signed with distinct secrets so that a
    token of one kind never verifies as the other.
    """

    access_ttl: timedelta
    refresh_ttl: timedelta

    def issue_access_token(self, claims: IdentityClaims, ttl: timedelta | None = None) -> str:
        """Return a signed access token."""

    def issue_refresh_token(self, claims: IdentityClaims, ttl: timedelta | None = None) -> str:
        """Return a signed refresh token."""

    def verify(self, token: str, kind: TokenKind) -> TokenVerification:
        """Check signature, expiry and ``type`` against the secret for ``kind``."""
