# comments in English; reST docstrings
from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta

import redis  # type: ignore[import-untyped]

from merkur_auth.services._shared.errors import FamilyRevokedError, StorageUnavailableError
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

_OPTIONAL_FIELDS = ("revoked_at", "revoke_reason", "ip_address", "user_agent")


def _s(value: bytes | str | None, default: str = "") -> str:
    if value is None:
        return default
    return value.decode() if isinstance(value, bytes | bytearray) else str(value)


def _ts(dt: datetime) -> float:
    # Naive values are labelled UTC (no conversion)
    return (dt if dt.tzinfo else dt.replace(tzinfo=UTC)).timestamp()


def _dt(raw: str) -> datetime:
    return datetime.fromisoformat(raw).astimezone(UTC)


@contextmanager
def redis_storage_guard(operation: str) -> Iterator[None]:
    """Raise :class:`StorageUnavailableError` for socket timeouts and lost connections."""
    try:
        yield
    except (redis.TimeoutError, redis.ConnectionError) as exc:
        raise StorageUnavailableError("redis", operation, cause=exc) from exc


@dataclass(slots=True)
class RedisRefreshTokenRegistry(RefreshTokenRegistry):
    """
    Redis-backed refresh-token ledger with atomic rotation.

    Layout
    ------
    ``rt:{token_hash}``
        Hash with the record fields.
    ``rt:u:{user_id}`` / ``rt:f:{family_id}``
        Sets of token hashes, for revoke-all and family revocation.
    ``rt:fx:{family_id}``
        Tombstone of a family revoked on reuse. Written before the members are
        revoked and read by :meth:`create` after its own write, so a successor
        racing the revocation is revoked either way.
    ``rt:exp``
        Sorted set of token hashes scored by ``expires_at`` for the sweep.

    Records keep living for ``retention`` after they expire so a late replay
    still reads as ``EXPIRED``/``ALREADY_REVOKED`` rather than ``NOT_FOUND``.

    :param r: A Redis client (already connected, with socket timeouts set).
    """

    r: redis.Redis
    retention: timedelta = timedelta(days=1)

    backend = "redis"

    # -------------------- helpers --------------------

    @staticmethod
    def _k(token_hash: str) -> str:
        return f"rt:{token_hash}"

    @staticmethod
    def _ku(user_id: int | str) -> str:
        return f"rt:u:{user_id}"

    @staticmethod
    def _kf(family_id: str) -> str:
        return f"rt:f:{family_id}"

    @staticmethod
    def _kfx(family_id: str) -> str:
        return f"rt:fx:{family_id}"

    _K_EXP = "rt:exp"

    @staticmethod
    def _to_record(h: dict) -> RefreshTokenRecord:
        fields = {_s(k): _s(v) for k, v in h.items()}
        revoked_at = fields.get("revoked_at") or None
        return RefreshTokenRecord(
            id=fields["id"],
            user_id=int(fields["user_id"]),
            family_id=fields["family_id"],
            token_hash=fields["token_hash"],
            issued_at=_dt(fields["issued_at"]),
            expires_at=_dt(fields["expires_at"]),
            revoked=fields.get("revoked", "0") == "1",
            revoked_at=_dt(revoked_at) if revoked_at else None,
            revoke_reason=fields.get("revoke_reason") or None,
            ip_address=fields.get("ip_address") or None,
            user_agent=fields.get("user_agent") or None,
        )

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

        :raises FamilyRevokedError: If ``family_id`` was revoked; the new
            record is revoked before raising.
        """
        now = resolve_now(now)
        record = RefreshTokenRecord(
            id=new_id(),
            user_id=user_id,
            family_id=family_id or new_id(),
            token_hash=hash_token(raw_token),
            issued_at=now,
            expires_at=expires_at,
            ip_address=ip_address,
            user_agent=user_agent[:512] if user_agent else None,
        )
        key = self._k(record.token_hash)
        mapping = {
            "id": record.id,
            "user_id": str(record.user_id),
            "family_id": record.family_id,
            "token_hash": record.token_hash,
            "issued_at": record.issued_at.isoformat(),
            "expires_at": record.expires_at.isoformat(),
            "revoked": "0",
        }
        if record.ip_address:
            mapping["ip_address"] = record.ip_address
        if record.user_agent:
            mapping["user_agent"] = record.user_agent
        ttl = max(1, int(_ts(expires_at) - _ts(now) + self.retention.total_seconds()))

        with redis_storage_guard("create"):
            if self.r.exists(key):
                raise ValueError("refresh token already registered")
            pipe = self.r.pipeline(transaction=True)
            pipe.hset(key, mapping=mapping)
            pipe.expire(key, ttl)
            pipe.sadd(self._ku(user_id), record.token_hash)
            pipe.sadd(self._kf(record.family_id), record.token_hash)
            pipe.zadd(self._K_EXP, {record.token_hash: _ts(expires_at)})
            pipe.execute()
            tombstoned = family_id is not None and bool(self.r.exists(self._kfx(family_id)))
            if tombstoned:
                self._revoke_one(record.token_hash, now, RevokeReason.REUSE_DETECTED)
        if tombstoned:
            raise FamilyRevokedError(record.family_id)
        return record

    def consume_and_rotate(self, raw_token: str, *, now: datetime | None = None) -> ConsumeOutcome:
        """
        Atomically check and revoke the record for ``raw_token``.

        Uses WATCH/MULTI/EXEC (optimistic locking): if another client touches
        the key between the read and ``EXEC``, the transaction aborts and the
        loop re-reads, now observing the record already revoked.
        """
        now = resolve_now(now)
        key = self._k(hash_token(raw_token))
        with redis_storage_guard("consume_and_rotate"):
            while True:
                try:
                    with self.r.pipeline() as p:
                        p.watch(key)
                        h = p.hgetall(key)
                        if not h:
                            p.unwatch()
                            return ConsumeOutcome(ConsumeResult.NOT_FOUND)

                        record = self._to_record(h)
                        if record.revoked:
                            p.unwatch()
                            return ConsumeOutcome(ConsumeResult.ALREADY_REVOKED, record)
                        if record.is_expired(now):
                            p.unwatch()
                            return ConsumeOutcome(ConsumeResult.EXPIRED, record)

                        p.multi()
                        p.hset(key, mapping=self._revocation(now, RevokeReason.ROTATED))
                        p.execute()

                    revoked = replace(
                        record, revoked=True, revoked_at=now, revoke_reason=RevokeReason.ROTATED
                    )
                    return ConsumeOutcome(ConsumeResult.OK, revoked)

                except redis.WatchError:
                    # Concurrent modification detected; retry loop
                    continue

    def revoke(self, raw_token: str, *, now: datetime | None = None) -> bool:
        with redis_storage_guard("revoke"):
            return self._revoke_one(hash_token(raw_token), resolve_now(now), RevokeReason.LOGOUT)

    def revoke_all(self, user_id: int, *, now: datetime | None = None) -> int:
        with redis_storage_guard("revoke_all"):
            return self._revoke_members(self._ku(user_id), resolve_now(now), RevokeReason.REVOKE_ALL)

    def revoke_family(self, family_id: str, *, now: datetime | None = None) -> int:
        now = resolve_now(now)
        with redis_storage_guard("revoke_family"):
            self._tombstone_family(family_id, now)
            return self._revoke_members(self._kf(family_id), now, RevokeReason.REUSE_DETECTED)

    def sweep_expired(self, before: datetime) -> int:
        with redis_storage_guard("sweep_expired"):
            # Exclusive upper bound: expires_at < before
            hashes = [_s(m) for m in self.r.zrangebyscore(self._K_EXP, "-inf", f"({_ts(before)}")]
            if not hashes:
                return 0
            removed = 0
            for token_hash in hashes:
                key = self._k(token_hash)
                uid, fid = (_s(v) for v in self.r.hmget(key, "user_id", "family_id"))
                pipe = self.r.pipeline(transaction=True)
                pipe.delete(key)
                if uid:
                    pipe.srem(self._ku(uid), token_hash)
                if fid:
                    pipe.srem(self._kf(fid), token_hash)
                pipe.zrem(self._K_EXP, token_hash)
                out = pipe.execute()
                removed += int(bool(out[0]))
            return removed

    def get(self, raw_token: str) -> RefreshTokenRecord | None:
        with redis_storage_guard("get"):
            h = self.r.hgetall(self._k(hash_token(raw_token)))
        return self._to_record(h) if h else None

    # -------------------- internals --------------------

    @staticmethod
    def _revocation(now: datetime, reason: str) -> dict[str, str]:
        return {"revoked": "1", "revoked_at": now.isoformat(), "revoke_reason": reason}

    def _revoke_one(self, token_hash: str, now: datetime, reason: str) -> bool:
        key = self._k(token_hash)
        while True:
            try:
                with self.r.pipeline() as p:
                    p.watch(key)
                    state = p.hget(key, "revoked")
                    if state is None or _s(state) == "1":
                        p.unwatch()
                        return False
                    p.multi()
                    p.hset(key, mapping=self._revocation(now, reason))
                    p.execute()
                return True
            except redis.WatchError:
                continue

    def _revoke_members(self, index_key: str, now: datetime, reason: str) -> int:
        members = sorted(_s(m) for m in self.r.smembers(index_key))
        stale: list[str] = []
        count = 0
        for token_hash in members:
            if not self.r.exists(self._k(token_hash)):
                stale.append(token_hash)
                continue
            count += int(self._revoke_one(token_hash, now, reason))
        if stale:
            # Underlying hash expired out of Redis; drop it from the index
            self.r.srem(index_key, *stale)
        return count

    def _tombstone_family(self, family_id: str, now: datetime) -> None:
        # Kept at least as long as any member record
        ttl = int(self.retention.total_seconds())
        for token_hash in self.r.smembers(self._kf(family_id)):
            ttl = max(ttl, int(self.r.ttl(self._k(_s(token_hash)))))
        self.r.set(self._kfx(family_id), now.isoformat(), ex=max(1, ttl))
