"""Role repository."""

from __future__ import annotations

from typing import cast

from sqlalchemy import select

from merkur_auth.models.role import Role
from merkur_auth.repositories.base import BaseRepository


class RoleRepository(BaseRepository[Role]):
    """Persistence-only repository for :class:`Role`."""

    model = Role

    def _filterable_fields(self):
        return {"name": Role.name}

    def get_by_name(self, name: str) -> Role | None:
        stmt = select(Role).where(Role.name == name)
        return cast(Role | None, self.session.execute(stmt).scalars().first())

    def list_ordered(self) -> list[Role]:
        stmt = select(Role).order_by(Role.name)
        return list(self.session.execute(stmt).scalars())

    def upsert(self, name: str, *, description: str | None, permissions: list[str]) -> Role:
        """Create the role or refresh its description/permissions in place."""
        role = self.get_by_name(name)
        if role is None:
            return self.add(Role(name=name, description=description, permissions=permissions))
        role.description = description
        role.permissions = permissions
        self.flush()
        return role
