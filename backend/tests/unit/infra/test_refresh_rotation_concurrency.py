"""
Concurrent ``consume_and_rotate`` calls presenting one token: exactly one wins.

Also races a family revocation against the registration of a rotated
successor: the successor never ends up live.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime, timedelta

import fakeredis
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker

from merkur_auth.core.extensions import db
from merkur_auth.infra.redis.redis_refresh_token_registry import RedisRefreshTokenRegistry
from merkur_auth.infra.sql.sql_refresh_token_registry import SQLRefreshTokenRegistry
from merkur_auth.models.user import User
from merkur_auth.services._shared.errors import FamilyRevokedError
from merkur_auth.services._shared.ports.refresh_token_registry import (
    ConsumeResult,
    InMemoryRefreshTokenRegistry,
)

WORKERS = 8


def _race(registry, raw: str) -> list[ConsumeResult]:
    barrier = threading.Barrier(WORKERS)
    now = datetime.now(UTC)

    def attempt(_):
        barrier.wait()
        return registry.consume_and_rotate(raw, now=now).result

    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        return list(pool.map(attempt, range(WORKERS)))


def test_in_memory_registry_has_a_single_winner():
    registry = InMemoryRefreshTokenRegistry()
    registry.create(user_id=1, raw_token="shared", expires_at=datetime.now(UTC) + timedelta(days=1))

    results = _race(registry, "shared")

    assert results.count(ConsumeResult.OK) == 1
    assert results.count(ConsumeResult.ALREADY_REVOKED) == WORKERS - 1


def test_redis_registry_has_a_single_winner():
    registry = RedisRefreshTokenRegistry(fakeredis.FakeRedis(server=fakeredis.FakeServer()))
    registry.create(user_id=1, raw_token="shared", expires_at=datetime.now(UTC) + timedelta(days=1))

    results = _race(registry, "shared")

    assert results.count(ConsumeResult.OK) == 1
    assert results.count(ConsumeResult.ALREADY_REVOKED) == WORKERS - 1
    assert registry.get("shared").revoked is True


@pytest.fixture()
def file_engine(tmp_path):
    """A file-backed SQLite engine: every thread gets its own connection."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'rotation.db'}",
        connect_args={"timeout": 30, "check_same_thread": False},
    )
    db.metadata.create_all(engine)
    try:
        yield engine
    finally:
        engine.dispose()


def test_sql_registry_has_a_single_winner(file_engine):
    Session = scoped_session(sessionmaker(bind=file_engine))
    with Session() as setup:
        user = User(email="race@example.com", password_hash="x")
        setup.add(user)
        setup.commit()
        user_id = user.id
    Session.remove()

    registry = SQLRefreshTokenRegistry(Session)
    registry.create(
        user_id=user_id, raw_token="shared", expires_at=datetime.now(UTC) + timedelta(days=1)
    )
    Session.remove()

    def attempt_and_release(registry_, raw):
        try:
            return registry_.consume_and_rotate(raw, now=datetime.now(UTC)).result
        finally:
            Session.remove()

    barrier = threading.Barrier(WORKERS)

    def attempt(_):
        barrier.wait()
        return attempt_and_release(registry, "shared")

    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        results = list(pool.map(attempt, range(WORKERS)))

    assert results.count(ConsumeResult.OK) == 1
    assert results.count(ConsumeResult.ALREADY_REVOKED) == WORKERS - 1


@pytest.mark.parametrize(
    "make_registry",
    [
        InMemoryRefreshTokenRegistry,
        lambda: RedisRefreshTokenRegistry(fakeredis.FakeRedis(server=fakeredis.FakeServer())),
    ],
    ids=["memory", "redis"],
)
def test_family_revocation_racing_successor_never_leaves_it_live(make_registry):
    registry = make_registry()
    expires_at = datetime.now(UTC) + timedelta(days=1)

    for round_ in range(20):
        parent = registry.create(user_id=1, raw_token=f"parent-{round_}", expires_at=expires_at)
        assert registry.consume_and_rotate(f"parent-{round_}").ok
        barrier = threading.Barrier(2)

        def register_successor():
            barrier.wait()
            try:
                registry.create(
                    user_id=1,
                    raw_token=f"child-{round_}",
                    expires_at=expires_at,
                    family_id=parent.family_id,
                )
            except FamilyRevokedError:
                return False
            return True

        def revoke():
            barrier.wait()
            registry.revoke_family(parent.family_id)

        with ThreadPoolExecutor(max_workers=2) as pool:
            successor = pool.submit(register_successor)
            pool.submit(revoke).result(timeout=10)
            successor.result(timeout=10)

        child = registry.get(f"child-{round_}")
        assert child is None or child.revoked is True
