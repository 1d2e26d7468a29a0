"""Translate SQLAlchemy connectivity failures into transient service errors."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from merkur_auth.services._shared.errors import StorageUnavailableError


@contextmanager
def sql_storage_guard(operation: str, session: Session | None = None) -> Iterator[None]:
    """
    Raise :class:`StorageUnavailableError` for timeouts and lost connections.

    Statement timeouts, pool exhaustion and dropped connections all surface
    as ``OperationalError``/``TimeoutError``; anything else propagates as-is.
    The session (when given) is rolled back before raising.
    """
    try:
        yield
    except (OperationalError, PoolTimeoutError) as exc:
        if session is not None:
            session.rollback()
        raise StorageUnavailableError("sql", operation, cause=exc) from exc
    except DBAPIError as exc:
        if session is not None:
            session.rollback()
        if exc.connection_invalidated:
            raise StorageUnavailableError("sql", operation, cause=exc) from exc
        raise


def apply_statement_timeout(session: Session, seconds: float | None) -> None:
    """Bound the current transaction's statements on PostgreSQL (no-op elsewhere)."""
    if not seconds:
        return
    if session.get_bind().dialect.name != "postgresql":
        return
    # set_config(..., true) is the bind-parameter friendly form of SET LOCAL
    session.execute(
        text("SELECT set_config('statement_timeout', :ms, true)"),
        {"ms": f"{int(seconds * 1000)}ms"},
    )
