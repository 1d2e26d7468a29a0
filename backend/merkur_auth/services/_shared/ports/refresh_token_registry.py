from __future__ import annotations

import hashlib
import threading
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import Enum, auto
from typing import Protocol
from uuid import uuid4

from merkur_auth.services._shared.errors import FamilyRevokedError


def hash_token(raw_token: str) -> str:
    """Return the SHA-256 hex digest used to store/look up a raw refresh token."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def new_id() -> str:
    return uuid4().hex


class ConsumeResult(Enum):
    """Outcome of an atomic consume attempt."""

    OK = auto()
    NOT_FOUND = auto()
    ALREADY_REVOKED = auto()
    EXPIRED = auto()


class RevokeReason:
    """Why a record was revoked (stored on the record)."""

    ROTATED = "rotated"
    LOGOUT = "logout"
    REVOKE_ALL = "revoke_all"
    REUSE_DETECTED = "reuse_detected"


@dataclass(frozen=True, slots=True)
class RefreshTokenRecord:
    """
    Read-model for one issued refresh token.

    :ivar token_hash: SHA-256 hex of the raw token; the raw value is never kept.
    :ivar family_id: Lineage shared by all tokens rotated from one login.
    :ivar revoke_reason: One of :class:`RevokeReason` once revoked.
    """

    id: str
    user_id: int
    family_id: str
    token_hash: str
    issued_at: datetime
    expires_at: datetime
    revoked: bool = False
    revoked_at: datetime | None = None
    revoke_reason: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


@dataclass(frozen=True, slots=True)
class ConsumeOutcome:
    """Result of :meth:`RefreshTokenRegistry.consume_and_rotate`.

    ``record`` is the state *after* the attempt when the token exists.
    """

    result: ConsumeResult
    record: RefreshTokenRecord | None = None

    @property
    def ok(self) -> bool:
        return self.result is ConsumeResult.OK

    @property
    def reused_after_rotation(self) -> bool:
        """``True`` when an already-rotated token was presented again."""
        return (
            self.result is ConsumeResult.ALREADY_REVOKED
            and self.record is not None
            and self.record.revoke_reason == RevokeReason.ROTATED
        )


class RefreshTokenRegistry(Protocol):
    """
    Stateful ledger of issued refresh tokens.

    :meth:`consume_and_rotate` MUST be atomic: among concurrent callers
    presenting the same token exactly one observes ``OK``. Storage timeouts
    MUST raise :class:`~merkur_auth.services._shared.errors.StorageUnavailableError`.

    A revoked family is remembered: :meth:`create` with the ``family_id`` of a
    lineage revoked by :meth:`revoke_family` raises
    :class:`~merkur_auth.services._shared.errors.FamilyRevokedError` and leaves
    no live record behind.
    """

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
        """Persist a new record storing only ``hash_token(raw_token)``.

        :raises FamilyRevokedError: If ``family_id`` names a revoked lineage.
        """

    def consume_and_rotate(self, raw_token: str, *, now: datetime | None = None) -> ConsumeOutcome:
        """Atomically mark the matching live record revoked (reason ``rotated``)."""

    def revoke(self, raw_token: str, *, now: datetime | None = None) -> bool:
        """Revoke the matching record. :returns: True if a live record was revoked."""

    def revoke_all(self, user_id: int, *, now: datetime | None = None) -> int:
        """Revoke every live record of ``user_id``. :returns: number revoked."""

    def revoke_family(self, family_id: str, *, now: datetime | None = None) -> int:
        """Revoke every live record in a lineage and refuse later additions to it.

        :returns: number revoked.
        """

    def sweep_expired(self, before: datetime) -> int:
        """Delete records with ``expires_at < before``. :returns: number deleted."""

    def get(self, raw_token: str) -> RefreshTokenRecord | None:
        """Fetch the record for a raw token (if present)."""


def resolve_now(now: datetime | None) -> datetime:
    return now if now is not None else datetime.now(UTC)


class InMemoryRefreshTokenRegistry(RefreshTokenRegistry):
    """
    In-process registry with atomic rotation behavior.

    .. note::
       A single :class:`threading.Lock` serializes every mutation; suitable for
       tests and single-process development only.
    """

    def __init__(self) -> None:
        self._by_hash: dict[str, RefreshTokenRecord] = {}
        self._revoked_families: set[str] = set()
        self._lock = threading.Lock()

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
        record = RefreshTokenRecord(
            id=new_id(),
            user_id=user_id,
            family_id=family_id or new_id(),
            token_hash=hash_token(raw_token),
            issued_at=resolve_now(now),
            expires_at=expires_at,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        with self._lock:
            if record.token_hash in self._by_hash:
                raise ValueError("refresh token already registered")
            if record.family_id in self._revoked_families:
                raise FamilyRevokedError(record.family_id)
            self._by_hash[record.token_hash] = record
        return record

    def consume_and_rotate(self, raw_token: str, *, now: datetime | None = None) -> ConsumeOutcome:
        now = resolve_now(now)
        key = hash_token(raw_token)
        with self._lock:
            record = self._by_hash.get(key)
            if record is None:
                return ConsumeOutcome(ConsumeResult.NOT_FOUND)
            if record.revoked:
                return ConsumeOutcome(ConsumeResult.ALREADY_REVOKED, record)
            if record.is_expired(now):
                return ConsumeOutcome(ConsumeResult.EXPIRED, record)
            record = self._revoke_locked(key, now, RevokeReason.ROTATED)
            return ConsumeOutcome(ConsumeResult.OK, record)

    def revoke(self, raw_token: str, *, now: datetime | None = None) -> bool:
        key = hash_token(raw_token)
        with self._lock:
            record = self._by_hash.get(key)
            if record is None or record.revoked:
                return False
            self._revoke_locked(key, resolve_now(now), RevokeReason.LOGOUT)
            return True

    def revoke_all(self, user_id: int, *, now: datetime | None = None) -> int:
        return self._revoke_where(
            lambda r: r.user_id == user_id, resolve_now(now), RevokeReason.REVOKE_ALL
        )

    def revoke_family(self, family_id: str, *, now: datetime | None = None) -> int:
        with self._lock:
            self._revoked_families.add(family_id)
        return self._revoke_where(
            lambda r: r.family_id == family_id, resolve_now(now), RevokeReason.REUSE_DETECTED
        )

    def sweep_expired(self, before: datetime) -> int:
        with self._lock:
            doomed = [k for k, r in self._by_hash.items() if r.expires_at < before]
            for k in doomed:
                del self._by_hash[k]
            # drop tombstones of families with no records left
            self._revoked_families &= {r.family_id for r in self._by_hash.values()}
            return len(doomed)

    def get(self, raw_token: str) -> RefreshTokenRecord | None:
        with self._lock:
            return self._by_hash.get(hash_token(raw_token))

    # ------------------------- helpers -------------------------

    def _revoke_locked(self, key: str, now: datetime, reason: str) -> RefreshTokenRecord:
        record = replace(self._by_hash[key], revoked=True, revoked_at=now, revoke_reason=reason)
        self._by_hash[key] = record
        return record

    def _revoke_where(self, predicate, now: datetime, reason: str) -> int:
        with self._lock:
            keys = [k for k, r in self._by_hash.items() if not r.revoked and predicate(r)]
            for k in keys:
                self._revoke_locked(k, now, reason)
            return len(keys)
