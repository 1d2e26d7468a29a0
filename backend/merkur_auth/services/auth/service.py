# merkur_auth/services/auth/service.py
from __future__ import annotations

import functools
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TypeVar

from merkur_auth.core.logger import log_event
from merkur_auth.repositories.user import normalize_email
from merkur_auth.services._shared.errors import (
    ConflictError,
    FamilyRevokedError,
    StorageUnavailableError,
)
from merkur_auth.services._shared.policies.password import password_policy_violations
from merkur_auth.services._shared.ports.account_directory import (
    Account,
    AccountDirectory,
    AccountProfile,
)
from merkur_auth.services._shared.ports.audit_sink import AuditAction, AuditSink, AuthEvent
from merkur_auth.services._shared.ports.credential_store import CredentialStore
from merkur_auth.services._shared.ports.refresh_token_registry import RefreshTokenRegistry
from merkur_auth.services._shared.ports.token_issuer import (
    IdentityClaims,
    TokenIssuer,
    TokenKind,
)
from merkur_auth.services.auth.dto import (
    AuthErrorKind,
    AuthOutcome,
    AuthSession,
    ClientInfo,
    LoginIn,
    RegisterIn,
    TokenPair,
    UserOut,
)

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., AuthOutcome])


def _transient_on_storage_failure(operation: str) -> Callable[[F], F]:
    """Turn :class:`StorageUnavailableError` into a ``TRANSIENT_FAILURE`` outcome."""

    def decorator(fn: F) -> F:
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            try:
                return fn(*args, **kwargs)
            except StorageUnavailableError as exc:
                log_event(
                    logger,
                    f"auth.{operation}.unavailable",
                    level=logging.ERROR,
                    reason=f"{exc.backend}:{exc.operation}",
                )
                return AuthOutcome.failure(AuthErrorKind.TRANSIENT_FAILURE)

        return wrapper  # type: ignore[return-value]

    return decorator


class AuthOrchestrator:
    """
    Authentication lifecycle (register / login / refresh / logout).

    Credentials are checked by a :class:`CredentialStore`, tokens signed by a
    :class:`TokenIssuer` and refresh tokens tracked by a
    :class:`RefreshTokenRegistry` whose atomic ``consume_and_rotate`` makes
    every refresh token single-use. Business failures come back as
    :class:`AuthOutcome` values; only the kind is ever shown to clients, the
    precise reason goes to logs and the audit sink.

    Session lineage: ``Anonymous -> Authenticated -> Rotated -> Revoked/Expired``.
    """

    def __init__(
        self,
        *,
        accounts: AccountDirectory,
        credentials: CredentialStore,
        tokens: TokenIssuer,
        registry: RefreshTokenRegistry,
        audit: AuditSink,
        default_role: str = "user",
        reuse_revokes_family: bool = True,
        enforce_password_policy: bool = True,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Wire the orchestrator with explicit collaborators.

        :param accounts: Account lookup/creation port.
        :param credentials: Password hashing/verification port.
        :param tokens: JWT issuing/verification port.
        :param registry: Refresh-token ledger with atomic rotation.
        :param audit: Fire-and-forget event consumer.
        :param default_role: Role granted on registration.
        :param reuse_revokes_family: Revoke the whole lineage when a rotated
            token is presented again.
        :param enforce_password_policy: Check password strength on register.
        :param clock: Returns the current aware UTC time.
        """
        self.accounts = accounts
        self.credentials = credentials
        self.tokens = tokens
        self.registry = registry
        self.audit = audit
        self.default_role = default_role
        self.reuse_revokes_family = reuse_revokes_family
        self.enforce_password_policy = enforce_password_policy
        self._clock = clock or (lambda: datetime.now(UTC))

    # ------------------------------------------------------------------ #
    # Register
    # ------------------------------------------------------------------ #

    @_transient_on_storage_failure("register")
    def register(self, dto: RegisterIn, client: ClientInfo | None = None) -> AuthOutcome:
        """
        Create an account and open its first session.

        :returns: Session on success; ``VALIDATION_ERROR`` or ``DUPLICATE_EMAIL``.
        """
        client = client or ClientInfo()
        email = normalize_email(dto.email)

        if self.enforce_password_policy:
            violations = password_policy_violations(dto.password)
            if violations:
                return AuthOutcome.failure(AuthErrorKind.VALIDATION_ERROR, tuple(violations))

        if self.accounts.find_by_email(email) is not None:
            log_event(logger, "auth.register.duplicate", level=logging.WARNING)
            return AuthOutcome.failure(AuthErrorKind.DUPLICATE_EMAIL)

        profile = AccountProfile(
            first_name=dto.first_name,
            last_name=dto.last_name,
            company_name=dto.company_name,
        )
        try:
            account = self.accounts.create(
                email=email,
                password_hash=self.credentials.hash(dto.password),
                profile=profile,
                role=self.default_role,
            )
        except ConflictError:
            # Lost a race with a concurrent registration of the same email
            return AuthOutcome.failure(AuthErrorKind.DUPLICATE_EMAIL)

        pair = self._issue_pair(account, client)
        self._emit(AuditAction.REGISTER_SUCCESS, client, user_id=account.user_id)
        log_event(logger, "auth.register.success", user_id=account.user_id)
        return AuthOutcome.success(AuthSession(tokens=pair, user=UserOut.from_account(account)))

    # ------------------------------------------------------------------ #
    # Login
    # ------------------------------------------------------------------ #

    @_transient_on_storage_failure("login")
    def login(self, dto: LoginIn, client: ClientInfo | None = None) -> AuthOutcome:
        """
        Authenticate credentials and issue a fresh token pair.

        Unknown email and wrong password yield the same outcome and comparable
        latency. Activity is checked only after the password matched.
        """
        client = client or ClientInfo()
        account = self.accounts.find_by_email(dto.email)

        if account is None:
            self.credentials.dummy_verify(dto.password)
            return self._login_failed(client, None, "unknown_email")

        if not self.credentials.verify(account.password_hash, dto.password):
            return self._login_failed(client, account.user_id, "bad_password")

        if not account.principal.is_active:
            self._login_failed(client, account.user_id, "inactive")
            return AuthOutcome.failure(AuthErrorKind.ACCOUNT_INACTIVE)

        if self.credentials.needs_rehash(account.password_hash):
            self.accounts.update_password_hash(account.user_id, self.credentials.hash(dto.password))
            log_event(logger, "auth.password.rehashed", user_id=account.user_id)

        self.accounts.record_login(account.user_id, self._clock())
        pair = self._issue_pair(account, client)
        self._emit(AuditAction.LOGIN_SUCCESS, client, user_id=account.user_id)
        log_event(logger, "auth.login.success", user_id=account.user_id)
        return AuthOutcome.success(AuthSession(tokens=pair, user=UserOut.from_account(account)))

    # ------------------------------------------------------------------ #
    # Refresh with atomic rotation
    # ------------------------------------------------------------------ #

    @_transient_on_storage_failure("refresh")
    def refresh(self, raw_refresh_token: str, client: ClientInfo | None = None) -> AuthOutcome:
        """
        Rotate a refresh token and emit a new token pair in the same family.

        Security
        --------
        - Signature, expiry and token type are checked before touching storage.
        - The registry consumes the token atomically; concurrent refreshes
          with one token yield exactly one success.
        - Presenting a token that was already rotated revokes its whole
          family when ``reuse_revokes_family`` is on.
        - A rotation whose family was revoked after its token was consumed
          gets no new pair.
        """
        client = client or ClientInfo()
        now = self._clock()

        verification = self.tokens.verify(raw_refresh_token, TokenKind.REFRESH)
        if verification.claims is None:
            reason = f"token_{verification.failure.value}" if verification.failure else "token_invalid"
            return self._refresh_failed(client, None, reason)

        outcome = self.registry.consume_and_rotate(raw_refresh_token, now=now)
        record = outcome.record
        if not outcome.ok or record is None:
            reason = outcome.result.name.lower()
            if outcome.reused_after_rotation and record is not None:
                reason = "reuse_detected"
                log_event(
                    logger,
                    "auth.refresh.reuse_detected",
                    level=logging.WARNING,
                    user_id=record.user_id,
                    family_id=record.family_id,
                    ip_address=client.ip_address,
                )
                if self.reuse_revokes_family:
                    self.registry.revoke_family(record.family_id, now=now)
            return self._refresh_failed(client, record.user_id if record else None, reason)

        if str(record.user_id) != verification.claims.sub:
            return self._refresh_failed(client, record.user_id, "subject_mismatch")

        account = self.accounts.get(record.user_id)
        if account is None:
            return self._refresh_failed(client, record.user_id, "unknown_user")
        if not account.principal.is_active:
            self._refresh_failed(client, record.user_id, "inactive")
            return AuthOutcome.failure(AuthErrorKind.ACCOUNT_INACTIVE)

        try:
            pair = self._issue_pair(account, client, family_id=record.family_id)
        except FamilyRevokedError:
            return self._refresh_failed(client, record.user_id, "family_revoked")
        self._emit(AuditAction.REFRESH_SUCCESS, client, user_id=account.user_id)
        log_event(logger, "auth.refresh.success", user_id=account.user_id)
        return AuthOutcome.success(AuthSession(tokens=pair, user=UserOut.from_account(account)))

    # ------------------------------------------------------------------ #
    # Logout
    # ------------------------------------------------------------------ #

    @_transient_on_storage_failure("logout")
    def logout(self, raw_refresh_token: str, client: ClientInfo | None = None) -> AuthOutcome:
        """Revoke the presented refresh token. Idempotent: always succeeds."""
        client = client or ClientInfo()
        revoked = self.registry.revoke(raw_refresh_token, now=self._clock())
        record = self.registry.get(raw_refresh_token)
        user_id = record.user_id if record else None
        self._emit(AuditAction.LOGOUT_SUCCESS, client, user_id=user_id)
        log_event(logger, "auth.logout.success", user_id=user_id, reason=None if revoked else "noop")
        return AuthOutcome.success()

    @_transient_on_storage_failure("logout_all")
    def logout_all(self, user_id: int, client: ClientInfo | None = None) -> AuthOutcome:
        """Revoke every live refresh token of ``user_id``."""
        client = client or ClientInfo()
        count = self.registry.revoke_all(user_id, now=self._clock())
        self._emit(AuditAction.LOGOUT_ALL_SUCCESS, client, user_id=user_id)
        log_event(logger, "auth.logout_all.success", user_id=user_id, revoked=count)
        return AuthOutcome.success()

    # ------------------------------------------------------------------ #
    # Introspection / maintenance
    # ------------------------------------------------------------------ #

    @_transient_on_storage_failure("whoami")
    def whoami(self, user_id: int) -> AuthOutcome:
        """Return the public view of the account behind a valid access token."""
        account = self.accounts.get(user_id)
        if account is None:
            return AuthOutcome.failure(AuthErrorKind.INVALID_CREDENTIALS)
        if not account.principal.is_active:
            return AuthOutcome.failure(AuthErrorKind.ACCOUNT_INACTIVE)
        return AuthOutcome.found(UserOut.from_account(account))

    def cleanup_expired(self, before: datetime | None = None) -> int:
        """
        Delete refresh records that expired before ``before`` (default: now).

        :raises StorageUnavailableError: When the registry cannot be reached.
        """
        cutoff = before or self._clock()
        removed = self.registry.sweep_expired(cutoff)
        log_event(logger, "auth.cleanup.done", removed=removed, before=cutoff.isoformat())
        return removed

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def _issue_pair(
        self, account: Account, client: ClientInfo, *, family_id: str | None = None
    ) -> TokenPair:
        # The record is persisted before the token is handed out.
        identity = IdentityClaims.of(
            user_id=account.user_id,
            email=account.principal.email,
            roles=account.principal.roles,
        )
        access = self.tokens.issue_access_token(identity)
        refresh = self.tokens.issue_refresh_token(identity)
        now = self._clock()
        self.registry.create(
            user_id=account.user_id,
            raw_token=refresh,
            expires_at=now + self.tokens.refresh_ttl,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
            family_id=family_id,
            now=now,
        )
        return TokenPair(
            access_token=access,
            refresh_token=refresh,
            expires_in=int(self.tokens.access_ttl.total_seconds()),
        )

    def _login_failed(self, client: ClientInfo, user_id: int | None, reason: str) -> AuthOutcome:
        self._emit(AuditAction.LOGIN_FAILED, client, user_id=user_id, reason=reason)
        log_event(
            logger, "auth.login.failed", level=logging.WARNING, user_id=user_id, reason=reason
        )
        return AuthOutcome.failure(AuthErrorKind.INVALID_CREDENTIALS)

    def _refresh_failed(
        self, client: ClientInfo, user_id: int | None, reason: str
    ) -> AuthOutcome:
        self._emit(AuditAction.REFRESH_FAILED, client, user_id=user_id, reason=reason)
        log_event(
            logger, "auth.refresh.failed", level=logging.WARNING, user_id=user_id, reason=reason
        )
        return AuthOutcome.failure(AuthErrorKind.INVALID_REFRESH_TOKEN)

    def _emit(
        self,
        action: str,
        client: ClientInfo,
        *,
        user_id: int | None = None,
        reason: str | None = None,
    ) -> None:
        event = AuthEvent(
            action=action,
            user_id=user_id,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
            reason=reason,
            timestamp=self._clock(),
        )
        try:
            self.audit.emit(event)
        except Exception:
            # Auditing never changes the auth decision.
            logger.exception("audit sink failed for %s", action)
