"""Flask CLI commands for the built-in role seeds."""

from __future__ import annotations

import logging

import click
from flask import current_app
from flask.cli import with_appcontext
from sqlalchemy.exc import SQLAlchemyError

from merkur_auth.core.extensions import db
from merkur_auth.seeds import seed_data
from merkur_auth.uow.sqlalchemy_uow import SQLAlchemyReadOnlyUnitOfWork

LOGGER = logging.getLogger(__name__)


def _seed_or_fail(verbose: bool) -> dict[str, dict[str, int]]:
    try:
        return seed_data.run_all(verbose=verbose)
    except SQLAlchemyError as exc:
        raise click.ClickException(f"Seeding failed: {exc}") from exc


def _echo_summary(summary: dict[str, dict[str, int]]) -> None:
    click.echo("Seed summary:")
    if not summary:
        click.echo("  (no changes)")
        return
    width = max(len(name) for name in summary)
    for table, counters in sorted(summary.items()):
        created = counters.get("created", 0)
        existing = counters.get("existing", 0)
        click.echo(f"  {table.ljust(width)}  created={created:>2}  existing={existing:>2}")


def _ensure_non_production() -> None:
    """Refuse schema drops when ``APP_ENV`` is production."""
    config = current_app.config
    if str(config.get("APP_ENV", "")).lower() == "production" and not config.get("TESTING"):
        raise click.UsageError("'flask seed fresh' is disabled when APP_ENV=production.")


@click.group("seed")
@click.option("--verbose", is_flag=True, help="Log every role as it is written.")
@click.pass_context
def seed_cli(ctx: click.Context, verbose: bool) -> None:
    """Role seeding commands."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    level = logging.DEBUG if verbose else logging.INFO
    for name in (seed_data.__name__, __name__):
        logging.getLogger(name).setLevel(level)


@seed_cli.command("run")
@click.pass_context
@with_appcontext
def run_command(ctx: click.Context) -> None:
    """Create missing roles and refresh the permissions of existing ones."""
    _echo_summary(_seed_or_fail(bool(ctx.obj.get("verbose"))))


@seed_cli.command("roles")
@with_appcontext
def roles_command() -> None:
    """List stored roles with their permissions."""
    try:
        with SQLAlchemyReadOnlyUnitOfWork() as uow:
            rows = [(r.name, list(r.permissions or [])) for r in uow.roles.list_ordered()]
    except SQLAlchemyError as exc:
        raise click.ClickException(f"Cannot read roles: {exc}") from exc
    if not rows:
        click.echo("No roles stored. Run 'flask seed run'.")
        return
    for name, permissions in rows:
        click.echo(f"{name}: {', '.join(permissions) or '-'}")


@seed_cli.command("fresh")
@click.option("--yes", is_flag=True, help="Skip the destructive confirmation prompt.")
@click.pass_context
@with_appcontext
def fresh_command(ctx: click.Context, yes: bool) -> None:
    """Drop every table (users and refresh tokens included), recreate, reseed."""
    _ensure_non_production()
    if not yes:
        click.confirm(
            "This DROPS all accounts and sessions and recreates the schema. Continue?",
            abort=True,
        )
    LOGGER.info("seed.fresh.drop_all")
    db.session.remove()
    db.drop_all()
    db.create_all()
    _echo_summary(_seed_or_fail(bool(ctx.obj.get("verbose"))))
