"""User repository for account lookup and credential bookkeeping."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import cast

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from merkur_auth.models.role import Role
from merkur_auth.models.user import User
from merkur_auth.repositories.base import BaseRepository


def normalize_email(email: str) -> str:
    """Return the canonical (trimmed, lowercase) form used for lookups."""
    return email.strip().lower()


class UserRepository(BaseRepository[User]):
    """Persistence-only repository for :class:`User`.

    It NEVER hashes or verifies passwords and never issues tokens; it stores
    whatever hash the credential store produced.
    """

    model = User

    def _filterable_fields(self):
        return {"email": User.email, "is_active": User.is_active}

    def _default_eagerload(self, stmt):
        return stmt.options(selectinload(User.roles))

    # ---------------------------- Lookup helpers ----------------------------

    def get_by_email(self, email: str) -> User | None:
        """Fetch a user by email (case-insensitive).

        :param email: Email address to normalise and search.
        :type email: str
        :returns: User instance or ``None`` when not found.
        :rtype: User | None
        """
        stmt = self._default_eagerload(select(User).where(User.email == normalize_email(email)))
        return cast(User | None, self.session.execute(stmt).scalars().first())

    def exists_by_email(self, email: str) -> bool:
        """Return ``True`` when a user with the provided email exists."""
        stmt = select(User.id).where(User.email == normalize_email(email))
        return bool(self.session.execute(stmt).first())

    # ---------------------------- Mutations ----------------------------

    def create(
        self,
        *,
        email: str,
        password_hash: str,
        first_name: str | None = None,
        last_name: str | None = None,
        company_name: str | None = None,
        roles: Iterable[Role] = (),
    ) -> User:
        """Insert a new account with the given credential hash and roles."""
        user = User(
            email=email,
            password_hash=password_hash,
            first_name=first_name,
            last_name=last_name,
            company_name=company_name,
            is_active=True,
        )
        user.roles = list(roles)
        return self.add(user)

    def touch_last_login(self, user_id: int, when: datetime) -> None:
        user = self.get(user_id)
        if user is None:
            raise ValueError(f"User {user_id} not found.")
        user.last_login_at = when
        self.flush()

    def update_password_hash(self, user_id: int, password_hash: str) -> None:
        """Replace the stored hash (used after a parameter upgrade rehash).

        :raises ValueError: If the user does not exist.
        """
        user = self.get(user_id)
        if user is None:
            raise ValueError(f"User {user_id} not found.")
        user.password_hash = password_hash
        self.flush()
