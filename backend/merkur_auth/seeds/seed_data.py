"""Idempotent role seeds shared by every environment."""

from __future__ import annotations

import logging
from typing import Any

from merkur_auth.uow.sqlalchemy_uow import SQLAlchemyUnitOfWork

LOGGER = logging.getLogger(__name__)

ROLE_FIXTURES: list[dict[str, Any]] = [
    {
        "name": "admin",
        "description": "Full access to every resource",
        "permissions": ["*"],
    },
    {
        "name": "user",
        "description": "Default role granted on registration",
        "permissions": [
            "documents:read",
            "documents:write",
            "mailings:read",
            "mailings:write",
        ],
    },
    {
        "name": "readonly",
        "description": "Read access without mutations",
        "permissions": ["documents:read", "mailings:read"],
    },
]


def _touch(summary: dict[str, dict[str, int]], table: str, created: bool) -> None:
    """Update summary counters for the given table."""
    entry = summary.setdefault(table, {"created": 0, "existing": 0})
    if created:
        entry["created"] += 1
    else:
        entry["existing"] += 1


def seed_roles(*, verbose: bool = False) -> dict[str, dict[str, int]]:
    """Create the built-in roles or refresh their permissions in place."""
    if verbose:
        LOGGER.info("Seeding roles...")
    summary: dict[str, dict[str, int]] = {}
    with SQLAlchemyUnitOfWork() as uow:
        for fixture in ROLE_FIXTURES:
            created = uow.roles.get_by_name(fixture["name"]) is None
            uow.roles.upsert(
                fixture["name"],
                description=fixture["description"],
                permissions=list(fixture["permissions"]),
            )
            if verbose:
                LOGGER.debug("role %s %s", fixture["name"], "created" if created else "updated")
            _touch(summary, "roles", created)
    return summary


def run_all(*, verbose: bool = False) -> dict[str, dict[str, int]]:
    """Run all seeders in the correct foreign-key order."""
    if verbose:
        LOGGER.info("Running full seed pipeline...")
    combined: dict[str, dict[str, int]] = {}
    for func in (seed_roles,):
        result = func(verbose=verbose)
        for table, counters in result.items():
            entry = combined.setdefault(table, {"created": 0, "existing": 0})
            entry["created"] += counters.get("created", 0)
            entry["existing"] += counters.get("existing", 0)
    return combined


__all__ = ["ROLE_FIXTURES", "run_all", "seed_roles"]
