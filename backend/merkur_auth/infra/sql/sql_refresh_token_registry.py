# comments in English; reST docstrings
from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from sqlalchemy import delete, exists, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from merkur_auth.core.extensions import db
from merkur_auth.infra.sql.storage_guard import apply_statement_timeout, sql_storage_guard
from merkur_auth.models.refresh_token import RefreshToken, RevokedTokenFamily
from merkur_auth.services._shared.errors import FamilyRevokedError
from merkur_auth.services._shared.ports.refresh_token_registry import (
    ConsumeOutcome,
    ConsumeResult,
    RefreshTokenRecord,
    RefreshTokenRegistry,
    RevokeReason,
    hash_token,
    new_id,
    resolve_now,
)


def _flask_session() -> Session:
    # Resolved per call so the scoped session of the current thread/app is used.
    return db.session()


def _to_record(row: RefreshToken) -> RefreshTokenRecord:
    return RefreshTokenRecord(
        id=row.id,
        user_id=row.user_id,
        family_id=row.family_id,
        token_hash=row.token_hash,
        issued_at=row.issued_at,
        expires_at=row.expires_at,
        revoked=row.revoked,
        revoked_at=row.revoked_at,
        revoke_reason=row.revoke_reason,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
    )


class SQLRefreshTokenRegistry(RefreshTokenRegistry):
    """
    Relational refresh-token ledger.

    Rotation is one conditional ``UPDATE``::

        UPDATE refresh_tokens
           SET revoked = true, revoked_at = :now, revoke_reason = 'rotated'
         WHERE token_hash = :h AND revoked = false AND expires_at > :now

    and the affected-row count decides the winner, so concurrent callers
    presenting the same token cannot both succeed on any backend that
    serializes row updates. Every operation commits its own transaction.

    :meth:`revoke_family` commits a ``revoked_token_families`` tombstone before
    revoking the members, and :meth:`create` checks for the tombstone after its
    own insert committed. Whichever commits second sees the other, so a
    successor racing a family revocation never stays live.

    :param session_factory: Returns the session to use (default: the
        Flask-SQLAlchemy scoped session of the current thread).
    :param timeout_seconds: Per-statement timeout (PostgreSQL ``statement_timeout``).
    """

    backend = "sql"

    def __init__(
        self,
        session_factory: Callable[[], Session] | None = None,
        *,
        timeout_seconds: float | None = 5.0,
    ) -> None:
        self._session_factory = session_factory or _flask_session
        self.timeout_seconds = timeout_seconds

    # -------------------- API ------------------------

    def create(
        self,
        *,
        user_id: int,
        raw_token: str,
        expires_at: datetime,
        ip_address: str | None = None,
        user_agent: str | None = None,
        family_id: str | None = None,
        now: datetime | None = None,
    ) -> RefreshTokenRecord:
        """
        Insert the record *before* the token is handed to the client.

        This ensures there is no timing window where a refresh JWT exists
        without a server-side record.

        :raises FamilyRevokedError: If ``family_id`` was revoked; the inserted
            row is revoked before raising.
        """
        now = resolve_now(now)
        session = self._session_factory()
        with sql_storage_guard("create", session):
            apply_statement_timeout(session, self.timeout_seconds)
            row = RefreshToken(
                id=new_id(),
                user_id=user_id,
                family_id=family_id or new_id(),
                token_hash=hash_token(raw_token),
                issued_at=now,
                expires_at=expires_at,
                revoked=False,
                ip_address=ip_address,
                user_agent=user_agent[:512] if user_agent else None,
            )
            session.add(row)
            session.flush()
            record = _to_record(row)
            session.commit()
            tombstoned = family_id is not None and self._family_revoked(session, family_id)
            if tombstoned:
                session.execute(
                    update(RefreshToken)
                    .where(RefreshToken.id == record.id, RefreshToken.revoked.is_(False))
                    .values(revoked=True, revoked_at=now, revoke_reason=RevokeReason.REUSE_DETECTED)
                    .execution_options(synchronize_session=False)
                )
                session.commit()
        if tombstoned:
            raise FamilyRevokedError(record.family_id)
        return record

    def consume_and_rotate(self, raw_token: str, *, now: datetime | None = None) -> ConsumeOutcome:
        now = resolve_now(now)
        token_hash = hash_token(raw_token)
        session = self._session_factory()
        with sql_storage_guard("consume_and_rotate", session):
            apply_statement_timeout(session, self.timeout_seconds)
            result = session.execute(
                update(RefreshToken)
                .where(
                    RefreshToken.token_hash == token_hash,
                    RefreshToken.revoked.is_(False),
                    RefreshToken.expires_at > now,
                )
                .values(revoked=True, revoked_at=now, revoke_reason=RevokeReason.ROTATED)
                .execution_options(synchronize_session=False)
            )
            won = result.rowcount == 1
            session.commit()
            record = self._load(session, token_hash)

        if won and record is not None:
            return ConsumeOutcome(ConsumeResult.OK, record)
        if record is None:
            return ConsumeOutcome(ConsumeResult.NOT_FOUND)
        if record.revoked:
            return ConsumeOutcome(ConsumeResult.ALREADY_REVOKED, record)
        return ConsumeOutcome(ConsumeResult.EXPIRED, record)

    def revoke(self, raw_token: str, *, now: datetime | None = None) -> bool:
        return (
            self._revoke_where(
                "revoke",
                RefreshToken.token_hash == hash_token(raw_token),
                now=resolve_now(now),
                reason=RevokeReason.LOGOUT,
            )
            > 0
        )

    def revoke_all(self, user_id: int, *, now: datetime | None = None) -> int:
        return self._revoke_where(
            "revoke_all",
            RefreshToken.user_id == user_id,
            now=resolve_now(now),
            reason=RevokeReason.REVOKE_ALL,
        )

    def revoke_family(self, family_id: str, *, now: datetime | None = None) -> int:
        now = resolve_now(now)
        self._tombstone_family(family_id, now)
        return self._revoke_where(
            "revoke_family",
            RefreshToken.family_id == family_id,
            now=now,
            reason=RevokeReason.REUSE_DETECTED,
        )

    def sweep_expired(self, before: datetime) -> int:
        session = self._session_factory()
        with sql_storage_guard("sweep_expired", session):
            apply_statement_timeout(session, self.timeout_seconds)
            result = session.execute(
                delete(RefreshToken)
                .where(RefreshToken.expires_at < before)
                .execution_options(synchronize_session=False)
            )
            session.execute(
                delete(RevokedTokenFamily)
                .where(~exists().where(RefreshToken.family_id == RevokedTokenFamily.family_id))
                .execution_options(synchronize_session=False)
            )
            session.commit()
        return int(result.rowcount or 0)

    def get(self, raw_token: str) -> RefreshTokenRecord | None:
        session = self._session_factory()
        with sql_storage_guard("get", session):
            return self._load(session, hash_token(raw_token))

    # -------------------- helpers --------------------

    @staticmethod
    def _load(session: Session, token_hash: str) -> RefreshTokenRecord | None:
        stmt = (
            select(RefreshToken)
            .where(RefreshToken.token_hash == token_hash)
            .execution_options(populate_existing=True)
        )
        row = session.execute(stmt).scalars().first()
        return _to_record(row) if row is not None else None

    def _revoke_where(self, operation: str, criterion, *, now: datetime, reason: str) -> int:
        session = self._session_factory()
        with sql_storage_guard(operation, session):
            apply_statement_timeout(session, self.timeout_seconds)
            result = session.execute(
                update(RefreshToken)
                .where(criterion, RefreshToken.revoked.is_(False))
                .values(revoked=True, revoked_at=now, revoke_reason=reason)
                .execution_options(synchronize_session=False)
            )
            session.commit()
        return int(result.rowcount or 0)

    def _family_revoked(self, session: Session, family_id: str) -> bool:
        apply_statement_timeout(session, self.timeout_seconds)
        stmt = select(RevokedTokenFamily.family_id).where(RevokedTokenFamily.family_id == family_id)
        return session.execute(stmt).first() is not None

    def _tombstone_family(self, family_id: str, now: datetime) -> None:
        session = self._session_factory()
        with sql_storage_guard("revoke_family", session):
            if self._family_revoked(session, family_id):
                session.commit()
                return
            try:
                session.execute(
                    insert(RevokedTokenFamily).values(family_id=family_id, revoked_at=now)
                )
                session.commit()
            except IntegrityError:
                # a concurrent revocation wrote it first
                session.rollback()
