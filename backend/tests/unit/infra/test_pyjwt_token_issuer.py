"""Tests for the PyJWT token issuer (distinct access/refresh secrets)."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import jwt
import pytest

from merkur_auth.infra.jwt.pyjwt_token_issuer import PyJWTTokenIssuer
from merkur_auth.services._shared.ports.token_issuer import (
    IdentityClaims,
    TokenFailure,
    TokenKind,
)

ACCESS = "access-secret-0123456789abcdef-xyz"
REFRESH = "refresh-secret-0123456789abcdef-xyz"


@pytest.fixture()
def issuer() -> PyJWTTokenIssuer:
    return PyJWTTokenIssuer(access_secret=ACCESS, refresh_secret=REFRESH)


@pytest.fixture()
def identity() -> IdentityClaims:
    return IdentityClaims.of(user_id=7, email="alice@example.com", roles={"user", "admin"})


def test_identity_roles_are_sorted(identity):
    assert identity.sub == "7"
    assert identity.roles == ("admin", "user")


def test_access_token_round_trip(issuer, identity):
    token = issuer.issue_access_token(identity)
    result = issuer.verify(token, TokenKind.ACCESS)
    assert result.ok
    assert result.claims.identity == identity
    assert result.claims.type == "access"
    assert result.claims.exp - result.claims.iat == 15 * 60


def test_refresh_token_lifetime(issuer, identity):
    token = issuer.issue_refresh_token(identity)
    claims = issuer.verify(token, TokenKind.REFRESH).claims
    assert claims is not None
    assert claims.exp - claims.iat == 7 * 24 * 3600


def test_tokens_minted_together_are_distinct(issuer, identity):
    assert issuer.issue_refresh_token(identity) != issuer.issue_refresh_token(identity)


def test_token_of_one_kind_never_verifies_as_the_other(issuer, identity):
    access = issuer.issue_access_token(identity)
    refresh = issuer.issue_refresh_token(identity)
    assert issuer.verify(access, TokenKind.REFRESH).failure is TokenFailure.INVALID
    assert issuer.verify(refresh, TokenKind.ACCESS).failure is TokenFailure.INVALID


def test_wrong_type_claim_with_right_secret_is_invalid(issuer, identity):
    now = int(datetime.now(UTC).timestamp())
    forged = jwt.encode(
        {
            "sub": "7",
            "email": "alice@example.com",
            "roles": [],
            "iat": now,
            "exp": now + 60,
            "jti": "x",
            "type": "access",
        },
        REFRESH,
        algorithm="HS256",
    )
    assert issuer.verify(forged, TokenKind.REFRESH).failure is TokenFailure.INVALID


def test_expired_token_is_reported_as_expired(identity):
    past = datetime.now(UTC) - timedelta(hours=1)
    issuer = PyJWTTokenIssuer(access_secret=ACCESS, refresh_secret=REFRESH, clock=lambda: past)
    token = issuer.issue_access_token(identity)
    assert issuer.verify(token, TokenKind.ACCESS).failure is TokenFailure.EXPIRED


def test_tampered_token_is_invalid(issuer, identity):
    token = issuer.issue_access_token(identity)
    header, payload, signature = token.split(".")
    tampered = ".".join([header, payload, signature[::-1]])
    assert issuer.verify(tampered, TokenKind.ACCESS).failure is TokenFailure.INVALID
    assert issuer.verify("not.a.jwt", TokenKind.ACCESS).failure is TokenFailure.INVALID


def test_missing_claim_is_invalid(issuer):
    now = int(datetime.now(UTC).timestamp())
    token = jwt.encode({"sub": "7", "iat": now, "exp": now + 60}, ACCESS, algorithm="HS256")
    assert issuer.verify(token, TokenKind.ACCESS).failure is TokenFailure.INVALID


def test_custom_ttl(issuer, identity):
    token = issuer.issue_access_token(identity, ttl=timedelta(seconds=30))
    claims = issuer.verify(token, TokenKind.ACCESS).claims
    assert claims.exp - claims.iat == 30


@pytest.mark.parametrize(("access", "refresh"), [("", REFRESH), (ACCESS, ""), (ACCESS, ACCESS)])
def test_constructor_rejects_missing_or_shared_secrets(access, refresh):
    with pytest.raises(ValueError):
        PyJWTTokenIssuer(access_secret=access, refresh_secret=refresh)


def test_from_config_parses_durations():
    issuer = PyJWTTokenIssuer.from_config(
        {
            "JWT_ACCESS_SECRET": ACCESS,
            "JWT_REFRESH_SECRET": REFRESH,
            "JWT_ACCESS_TTL": "5m",
            "JWT_REFRESH_TTL": "1d",
        }
    )
    assert issuer.access_ttl == timedelta(minutes=5)
    assert issuer.refresh_ttl == timedelta(days=1)
