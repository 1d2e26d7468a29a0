# comments in English; reST docstrings
from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import uuid4

import jwt

from merkur_auth.core.config import parse_duration
from merkur_auth.services._shared.ports.token_issuer import (
    IdentityClaims,
    TokenClaims,
    TokenFailure,
    TokenIssuer,
    TokenKind,
    TokenVerification,
)

_REQUIRED_CLAIMS = ["sub", "email", "iat", "exp", "jti", "type"]


class PyJWTTokenIssuer(TokenIssuer):
    """
    HS256 JWT issuer with one secret per token kind.

    Access tokens stay compatible with flask-jwt-extended (``sub`` identity,
    ``type="access"``) when ``JWT_SECRET_KEY`` equals the access secret, so
    protected routes can use ``@jwt_required()`` directly.

    :param access_secret: Key for access tokens.
    :param refresh_secret: Key for refresh tokens. MUST differ from ``access_secret``.
    :param clock: Returns the current aware UTC time (injectable for tests).
    :raises ValueError: If a secret is empty or both secrets are equal.
    """

    def __init__(
        self,
        *,
        access_secret: str,
        refresh_secret: str,
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=7),
        algorithm: str = "HS256",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if not access_secret or not refresh_secret:
            raise ValueError("Both access and refresh secrets are required.")
        if access_secret == refresh_secret:
            raise ValueError("Access and refresh secrets must be distinct.")
        self._secrets = {TokenKind.ACCESS: access_secret, TokenKind.REFRESH: refresh_secret}
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self.algorithm = algorithm
        self._clock = clock or (lambda: datetime.now(UTC))

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> PyJWTTokenIssuer:
        return cls(
            access_secret=config["JWT_ACCESS_SECRET"],
            refresh_secret=config["JWT_REFRESH_SECRET"],
            access_ttl=parse_duration(config.get("JWT_ACCESS_TTL", "15m")),
            refresh_ttl=parse_duration(config.get("JWT_REFRESH_TTL", "7d")),
            algorithm=config.get("JWT_ALGORITHM", "HS256"),
        )

    # ------------------------------------------------------------------ #
    # Issue
    # ------------------------------------------------------------------ #

    def issue_access_token(self, claims: IdentityClaims, ttl: timedelta | None = None) -> str:
        return self._encode(claims, TokenKind.ACCESS, ttl or self.access_ttl)

    def issue_refresh_token(self, claims: IdentityClaims, ttl: timedelta | None = None) -> str:
        return self._encode(claims, TokenKind.REFRESH, ttl or self.refresh_ttl)

    def _encode(self, claims: IdentityClaims, kind: TokenKind, ttl: timedelta) -> str:
        now = self._clock()
        payload = {
            "sub": claims.sub,
            "email": claims.email,
            "roles": list(claims.roles),
            "iat": int(now.timestamp()),
            "exp": int((now + ttl).timestamp()),
            # Unique per token so two tokens minted in the same second differ
            "jti": uuid4().hex,
            "type": kind.value,
        }
        return jwt.encode(payload, self._secrets[kind], algorithm=self.algorithm)

    # ------------------------------------------------------------------ #
    # Verify
    # ------------------------------------------------------------------ #

    def verify(self, token: str, kind: TokenKind) -> TokenVerification:
        """
        Decode ``token`` with the secret for ``kind``.

        Signature and expiry are checked together; a token of the other kind
        fails on signature (different secret) or, failing that, on ``type``.
        """
        try:
            payload = jwt.decode(
                token,
                self._secrets[kind],
                algorithms=[self.algorithm],
                options={"require": _REQUIRED_CLAIMS},
            )
        except jwt.ExpiredSignatureError:
            return TokenVerification.rejected(TokenFailure.EXPIRED)
        except jwt.InvalidTokenError:
            return TokenVerification.rejected(TokenFailure.INVALID)

        if payload.get("type") != kind.value:
            return TokenVerification.rejected(TokenFailure.INVALID)
        try:
            return TokenVerification.success(TokenClaims.from_payload(payload))
        except (KeyError, TypeError, ValueError):
            return TokenVerification.rejected(TokenFailure.INVALID)
