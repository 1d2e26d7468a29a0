"""Maintenance commands for the refresh-token registry."""

from __future__ import annotations

from datetime import UTC, datetime

import click
from flask.cli import with_appcontext

from merkur_auth.api.deps import get_orchestrator
from merkur_auth.services._shared.errors import StorageUnavailableError


def _parse_before(value: str | None) -> datetime | None:
    if value is None:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as exc:
        raise click.BadParameter(f"not an ISO-8601 timestamp: {value!r}") from exc
    # Naive input is read as UTC
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


@click.group("auth")
def auth_cli() -> None:
    """Authentication maintenance commands."""


@auth_cli.command("cleanup-expired")
@click.option(
    "--before",
    default=None,
    help="Delete refresh tokens that expired before this ISO-8601 instant (default: now).",
)
@with_appcontext
def cleanup_expired_command(before: str | None) -> None:
    """Delete expired refresh-token records."""
    cutoff = _parse_before(before)
    try:
        removed = get_orchestrator().cleanup_expired(cutoff)
    except StorageUnavailableError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Removed {removed} expired refresh token(s).")
