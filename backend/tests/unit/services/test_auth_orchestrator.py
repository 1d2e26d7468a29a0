"""
AuthOrchestrator wired to in-memory collaborators.

Covers the full session lineage (register -> login -> refresh -> logout),
reuse detection, concurrent rotation, account status and transient storage
failures.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime, timedelta

import pytest

from merkur_auth.infra.crypto.argon2_credential_store import Argon2CredentialStore
from merkur_auth.infra.jwt.pyjwt_token_issuer import PyJWTTokenIssuer
from merkur_auth.services._shared.errors import StorageUnavailableError
from merkur_auth.services._shared.ports.account_directory import InMemoryAccountDirectory
from merkur_auth.services._shared.ports.audit_sink import AuditAction
from merkur_auth.services._shared.ports.refresh_token_registry import (
    InMemoryRefreshTokenRegistry,
    RevokeReason,
)
from merkur_auth.services._shared.ports.token_issuer import IdentityClaims, TokenKind
from merkur_auth.services.auth.dto import AuthErrorKind, ClientInfo, LoginIn, RegisterIn
from merkur_auth.services.auth.service import AuthOrchestrator

PASSWORD = "Secur3P@ss!!"
CLIENT = ClientInfo(ip_address="203.0.113.9", user_agent="pytest/1.0")


class RecordingSink:
    def __init__(self):
        self.events = []

    def emit(self, event):
        self.events.append(event)

    def actions(self):
        return [e.action for e in self.events]


class BrokenSink:
    def emit(self, event):
        raise RuntimeError("audit backend down")


class UnavailableRegistry(InMemoryRefreshTokenRegistry):
    """Registry whose rotation path times out."""

    def consume_and_rotate(self, raw_token, *, now=None):
        raise StorageUnavailableError("sql", "consume_and_rotate")

    def sweep_expired(self, before):
        raise StorageUnavailableError("sql", "sweep_expired")


@pytest.fixture(scope="module")
def credentials():
    return Argon2CredentialStore(time_cost=1, memory_cost=8192, parallelism=1)


@pytest.fixture()
def tokens():
    return PyJWTTokenIssuer(
        access_secret="unit-access-secret-0123456789",
        refresh_secret="unit-refresh-secret-0123456789",
    )


@pytest.fixture()
def audit():
    return RecordingSink()


@pytest.fixture()
def accounts():
    return InMemoryAccountDirectory()


@pytest.fixture()
def registry():
    return InMemoryRefreshTokenRegistry()


@pytest.fixture()
def auth(accounts, credentials, tokens, registry, audit):
    return AuthOrchestrator(
        accounts=accounts,
        credentials=credentials,
        tokens=tokens,
        registry=registry,
        audit=audit,
    )


def _register(auth, email="alice@example.com"):
    outcome = auth.register(
        RegisterIn(email=email, password=PASSWORD, first_name="Alice", company_name="ACME"),
        CLIENT,
    )
    assert outcome.ok, outcome.error
    return outcome


# ------------------------------ Register ----------------------------------- #
def test_register_issues_session_and_persists_hash(auth, accounts, registry, tokens, audit):
    outcome = _register(auth, "  Alice@Example.COM ")
    session = outcome.session

    assert session.user.email == "alice@example.com"
    assert session.user.roles == ("user",)
    assert session.user.company_name == "ACME"
    assert session.tokens.expires_in == 900

    account = accounts.find_by_email("alice@example.com")
    assert account.password_hash.startswith("$argon2id$")
    assert PASSWORD not in account.password_hash

    access = tokens.verify(session.tokens.access_token, TokenKind.ACCESS).claims
    assert access.sub == str(account.user_id)
    assert access.roles == ("user",)

    record = registry.get(session.tokens.refresh_token)
    assert record is not None and record.revoked is False
    assert record.ip_address == CLIENT.ip_address
    assert audit.actions() == [AuditAction.REGISTER_SUCCESS]


def test_register_duplicate_email(auth):
    _register(auth)
    outcome = auth.register(RegisterIn(email="ALICE@example.com", password=PASSWORD))
    assert outcome.error is AuthErrorKind.DUPLICATE_EMAIL


def test_register_rejects_weak_password(auth, accounts):
    outcome = auth.register(RegisterIn(email="weak@example.com", password="password"))

    assert outcome.error is AuthErrorKind.VALIDATION_ERROR
    assert outcome.violations
    assert accounts.find_by_email("weak@example.com") is None


def test_register_uses_configured_role(accounts, credentials, tokens, registry, audit):
    auth = AuthOrchestrator(
        accounts=accounts,
        credentials=credentials,
        tokens=tokens,
        registry=registry,
        audit=audit,
        default_role="readonly",
    )
    assert _register(auth).session.user.roles == ("readonly",)


# ------------------------------- Login ------------------------------------- #
def test_login_success_stamps_last_login(auth, accounts, audit):
    _register(auth)
    outcome = auth.login(LoginIn(email="ALICE@example.com", password=PASSWORD), CLIENT)

    assert outcome.ok
    assert accounts.find_by_email("alice@example.com").last_login_at is not None
    assert audit.actions()[-1] == AuditAction.LOGIN_SUCCESS


def test_login_unknown_email_and_wrong_password_are_indistinguishable(auth, audit):
    _register(auth)
    unknown = auth.login(LoginIn(email="nobody@example.com", password=PASSWORD), CLIENT)
    wrong = auth.login(LoginIn(email="alice@example.com", password="Wr0ng-P@ssword"), CLIENT)

    assert unknown == wrong
    assert unknown.error is AuthErrorKind.INVALID_CREDENTIALS
    reasons = [e.reason for e in audit.events if e.action == AuditAction.LOGIN_FAILED]
    assert reasons == ["unknown_email", "bad_password"]


def test_login_inactive_account(auth, accounts):
    user_id = _register(auth).session.user.id
    accounts.set_active(user_id, False)

    outcome = auth.login(LoginIn(email="alice@example.com", password=PASSWORD))
    assert outcome.error is AuthErrorKind.ACCOUNT_INACTIVE


def test_login_inactive_with_wrong_password_does_not_reveal_status(auth, accounts):
    user_id = _register(auth).session.user.id
    accounts.set_active(user_id, False)

    outcome = auth.login(LoginIn(email="alice@example.com", password="Wr0ng-P@ssword"))
    assert outcome.error is AuthErrorKind.INVALID_CREDENTIALS


def test_login_upgrades_outdated_hash(auth, accounts):
    user_id = _register(auth).session.user.id
    legacy = Argon2CredentialStore(time_cost=2, memory_cost=8192, parallelism=1).hash(PASSWORD)
    accounts.update_password_hash(user_id, legacy)

    assert auth.login(LoginIn(email="alice@example.com", password=PASSWORD)).ok
    upgraded = accounts.get(user_id).password_hash
    assert upgraded != legacy
    assert "t=1" in upgraded


# ------------------------------ Refresh ------------------------------------ #
def test_refresh_rotates_within_family(auth, registry, audit):
    first = _register(auth).session.tokens

    outcome = auth.refresh(first.refresh_token, CLIENT)
    assert outcome.ok
    second = outcome.session.tokens
    assert second.refresh_token != first.refresh_token

    old = registry.get(first.refresh_token)
    new = registry.get(second.refresh_token)
    assert old.revoked and old.revoke_reason == RevokeReason.ROTATED
    assert new.revoked is False
    assert new.family_id == old.family_id
    assert audit.actions()[-1] == AuditAction.REFRESH_SUCCESS


def test_refresh_reuse_revokes_family(auth, registry, audit):
    first = _register(auth).session.tokens
    second = auth.refresh(first.refresh_token).session.tokens

    replay = auth.refresh(first.refresh_token, CLIENT)

    assert replay.error is AuthErrorKind.INVALID_REFRESH_TOKEN
    assert registry.get(second.refresh_token).revoke_reason == RevokeReason.REUSE_DETECTED
    assert auth.refresh(second.refresh_token).error is AuthErrorKind.INVALID_REFRESH_TOKEN
    failed = [e for e in audit.events if e.action == AuditAction.REFRESH_FAILED]
    assert failed[0].reason == "reuse_detected"


def test_refresh_reuse_without_family_revocation(accounts, credentials, tokens, registry, audit):
    auth = AuthOrchestrator(
        accounts=accounts,
        credentials=credentials,
        tokens=tokens,
        registry=registry,
        audit=audit,
        reuse_revokes_family=False,
    )
    first = _register(auth).session.tokens
    second = auth.refresh(first.refresh_token).session.tokens

    assert not auth.refresh(first.refresh_token).ok
    assert auth.refresh(second.refresh_token).ok


@pytest.mark.parametrize("garbage", ["", "not-a-jwt", "a.b.c"])
def test_refresh_rejects_garbage(auth, garbage):
    assert auth.refresh(garbage).error is AuthErrorKind.INVALID_REFRESH_TOKEN


def test_refresh_rejects_access_token(auth):
    session = _register(auth).session
    outcome = auth.refresh(session.tokens.access_token)
    assert outcome.error is AuthErrorKind.INVALID_REFRESH_TOKEN


def test_refresh_rejects_validly_signed_but_unregistered_token(auth, tokens):
    session = _register(auth).session

    stray = tokens.issue_refresh_token(
        IdentityClaims.of(user_id=session.user.id, email=session.user.email, roles=["user"])
    )
    assert auth.refresh(stray).error is AuthErrorKind.INVALID_REFRESH_TOKEN


def test_refresh_expired_record(accounts, credentials, tokens, registry, audit):
    clock = {"now": datetime.now(UTC)}
    auth = AuthOrchestrator(
        accounts=accounts,
        credentials=credentials,
        tokens=tokens,
        registry=registry,
        audit=audit,
        clock=lambda: clock["now"],
    )
    first = _register(auth).session.tokens
    clock["now"] += tokens.refresh_ttl + timedelta(seconds=1)

    assert auth.refresh(first.refresh_token).error is AuthErrorKind.INVALID_REFRESH_TOKEN
    assert registry.get(first.refresh_token).revoked is False


def test_refresh_for_deactivated_account(auth, accounts):
    session = _register(auth).session
    accounts.set_active(session.user.id, False)

    outcome = auth.refresh(session.tokens.refresh_token)
    assert outcome.error is AuthErrorKind.ACCOUNT_INACTIVE


# ------------------------------- Logout ------------------------------------ #
def test_logout_is_idempotent(auth, registry, audit):
    tokens = _register(auth).session.tokens

    assert auth.logout(tokens.refresh_token, CLIENT).ok
    assert auth.logout(tokens.refresh_token, CLIENT).ok
    assert auth.logout("never-issued").ok
    assert registry.get(tokens.refresh_token).revoke_reason == RevokeReason.LOGOUT
    assert auth.refresh(tokens.refresh_token).error is AuthErrorKind.INVALID_REFRESH_TOKEN
    assert audit.actions().count(AuditAction.LOGOUT_SUCCESS) == 3


def test_logout_all_revokes_every_session(auth, registry):
    first = _register(auth).session
    second = auth.login(LoginIn(email="alice@example.com", password=PASSWORD)).session

    assert auth.logout_all(first.user.id).ok
    for pair in (first.tokens, second.tokens):
        assert registry.get(pair.refresh_token).revoke_reason == RevokeReason.REVOKE_ALL


# ---------------------------- Introspection -------------------------------- #
def test_whoami(auth, accounts):
    user = _register(auth).session.user

    assert auth.whoami(user.id).user == user
    assert auth.whoami(12345).error is AuthErrorKind.INVALID_CREDENTIALS
    accounts.set_active(user.id, False)
    assert auth.whoami(user.id).error is AuthErrorKind.ACCOUNT_INACTIVE


def test_cleanup_expired(accounts, credentials, tokens, registry, audit):
    clock = {"now": datetime.now(UTC)}
    auth = AuthOrchestrator(
        accounts=accounts,
        credentials=credentials,
        tokens=tokens,
        registry=registry,
        audit=audit,
        clock=lambda: clock["now"],
    )
    _register(auth)
    assert auth.cleanup_expired() == 0

    clock["now"] += tokens.refresh_ttl + timedelta(minutes=1)
    assert auth.cleanup_expired() == 1


# ------------------------- Failure isolation ------------------------------- #
def test_audit_failures_never_change_the_decision(accounts, credentials, tokens, registry):
    auth = AuthOrchestrator(
        accounts=accounts,
        credentials=credentials,
        tokens=tokens,
        registry=registry,
        audit=BrokenSink(),
    )
    assert _register(auth).ok


def test_storage_timeout_is_transient_not_invalid(accounts, credentials, tokens, audit):
    auth = AuthOrchestrator(
        accounts=accounts,
        credentials=credentials,
        tokens=tokens,
        registry=UnavailableRegistry(),
        audit=audit,
    )
    session = _register(auth).session

    outcome = auth.refresh(session.tokens.refresh_token)
    assert outcome.error is AuthErrorKind.TRANSIENT_FAILURE
    with pytest.raises(StorageUnavailableError):
        auth.cleanup_expired()


# ----------------------------- Concurrency --------------------------------- #
WORKERS = 8


class TrackingRegistry(InMemoryRefreshTokenRegistry):
    """Remembers every raw token handed to ``create``, even refused ones."""

    def __init__(self):
        super().__init__()
        self.issued = []

    def create(self, *, raw_token, **kwargs):
        self.issued.append(raw_token)
        return super().create(raw_token=raw_token, **kwargs)


class GatedDirectory(InMemoryAccountDirectory):
    """Parks the next ``get`` until released, between consume and create."""

    def __init__(self):
        super().__init__()
        self.parked = threading.Event()
        self.release = threading.Event()
        self._armed = False

    def arm(self):
        self._armed = True

    def get(self, user_id):
        if self._armed:
            self._armed = False
            self.parked.set()
            self.release.wait(timeout=10)
        return super().get(user_id)


def _orchestrator(accounts, credentials, tokens, registry, audit, **kwargs):
    return AuthOrchestrator(
        accounts=accounts,
        credentials=credentials,
        tokens=tokens,
        registry=registry,
        audit=audit,
        **kwargs,
    )


def _refresh_concurrently(auth, raw):
    barrier = threading.Barrier(WORKERS)

    def attempt(_):
        barrier.wait(timeout=10)
        return auth.refresh(raw, CLIENT)

    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        return list(pool.map(attempt, range(WORKERS)))


def test_revocation_during_rotation_leaves_no_live_successor(credentials, tokens, audit):
    """A replay that revokes the family while a rotation is in flight wins."""
    accounts = GatedDirectory()
    registry = TrackingRegistry()
    auth = _orchestrator(accounts, credentials, tokens, registry, audit)
    stolen = _register(auth).session.tokens.refresh_token
    registered = list(registry.issued)

    accounts.arm()
    with ThreadPoolExecutor(max_workers=1) as pool:
        in_flight = pool.submit(auth.refresh, stolen, CLIENT)
        assert accounts.parked.wait(timeout=10)
        replay = auth.refresh(stolen, CLIENT)
        accounts.release.set()
        rotated = in_flight.result(timeout=10)

    assert replay.error is AuthErrorKind.INVALID_REFRESH_TOKEN
    assert rotated.error is AuthErrorKind.INVALID_REFRESH_TOKEN
    assert rotated.session is None
    successors = [raw for raw in registry.issued if raw not in registered]
    assert len(successors) == 1
    late = registry.get(successors[0])
    assert late is None or late.revoked
    reasons = [e.reason for e in audit.events if e.action == AuditAction.REFRESH_FAILED]
    assert reasons == ["reuse_detected", "family_revoked"]
    assert not auth.refresh(successors[0]).ok


def test_concurrent_refresh_has_a_single_winner(credentials, tokens, audit):
    registry = TrackingRegistry()
    auth = _orchestrator(
        InMemoryAccountDirectory(), credentials, tokens, registry, audit, reuse_revokes_family=False
    )
    raw = _register(auth).session.tokens.refresh_token

    outcomes = _refresh_concurrently(auth, raw)

    winners = [o for o in outcomes if o.ok]
    assert len(winners) == 1
    assert all(o.error is AuthErrorKind.INVALID_REFRESH_TOKEN for o in outcomes if not o.ok)
    assert registry.get(winners[0].session.tokens.refresh_token).revoked is False


def test_concurrent_refresh_with_reuse_response_retires_the_family(credentials, tokens, audit):
    """Losers read as replays, so the lineage ends fully revoked whoever wins."""
    registry = TrackingRegistry()
    auth = _orchestrator(InMemoryAccountDirectory(), credentials, tokens, registry, audit)
    raw = _register(auth).session.tokens.refresh_token

    outcomes = _refresh_concurrently(auth, raw)

    assert sum(o.ok for o in outcomes) <= 1
    assert all(o.error is AuthErrorKind.INVALID_REFRESH_TOKEN for o in outcomes if not o.ok)
    for issued in registry.issued:
        record = registry.get(issued)
        assert record is None or record.revoked
    for outcome in outcomes:
        if outcome.ok:
            assert not auth.refresh(outcome.session.tokens.refresh_token).ok


# ------------------------------ Scenario ----------------------------------- #
def test_full_session_lineage(accounts, credentials, tokens, registry, audit):
    """register -> login -> refresh -> logout; every retired token stays dead."""
    auth = AuthOrchestrator(
        accounts=accounts,
        credentials=credentials,
        tokens=tokens,
        registry=registry,
        audit=audit,
        enforce_password_policy=False,
    )
    password = "Secur3P@ss!"

    registered = auth.register(RegisterIn(email="alice@example.com", password=password))
    assert registered.ok
    login = auth.login(LoginIn(email="alice@example.com", password=password), CLIENT)
    assert login.ok
    refreshed = auth.refresh(login.session.tokens.refresh_token, CLIENT)
    assert refreshed.ok
    assert auth.logout(refreshed.session.tokens.refresh_token, CLIENT).ok

    for retired in (login.session.tokens, refreshed.session.tokens):
        assert auth.refresh(retired.refresh_token).error is AuthErrorKind.INVALID_REFRESH_TOKEN
    # The register-issued session was never touched
    assert auth.refresh(registered.session.tokens.refresh_token).ok
    assert audit.actions()[:4] == [
        AuditAction.REGISTER_SUCCESS,
        AuditAction.LOGIN_SUCCESS,
        AuditAction.REFRESH_SUCCESS,
        AuditAction.LOGOUT_SUCCESS,
    ]
