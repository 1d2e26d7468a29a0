"""User account model backing the principal/credential projections."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Index, String, UniqueConstraint, true
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from merkur_auth.core.extensions import db

from .base import PKMixin, ReprMixin, TimestampMixin, UTCDateTime
from .role import user_roles

if TYPE_CHECKING:
    from .role import Role


class User(PKMixin, ReprMixin, TimestampMixin, db.Model):
    """
    Account identity with its credential hash and profile.

    The auth core never reads this model directly; repositories map it to
    :class:`~merkur_auth.services._shared.ports.account_directory.Account`.

    Fields
    ------
    email : str
        Login email. Stored normalized (lowercase, trimmed).
    password_hash : str
        Argon2id PHC string produced by the credential store. Never plaintext.
    first_name, last_name, company_name : str | None
        Optional profile data supplied at registration.
    is_active : bool
        Deactivated accounts cannot log in or refresh.
    last_login_at : datetime | None
        Stamped on every successful login.
    """

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(254), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    company_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=true()
    )
    last_login_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    roles: Mapped[list[Role]] = relationship(
        "Role",
        secondary=user_roles,
        lazy="selectin",
        order_by="Role.name",
    )

    __table_args__ = (
        UniqueConstraint("email", name="uq_users_email"),
        Index("ix_users_email", "email"),
    )

    @property
    def role_names(self) -> frozenset[str]:
        """Return the names of the roles granted to this account."""
        return frozenset(role.name for role in self.roles)

    @validates("email")
    def _normalize_email(self, key: str, value: str) -> str:
        """
        Normalize and validate email.

        :param key: Field name (``email``).
        :param value: Email to normalize.
        :returns: Normalized email (lowercased/trimmed).
        :raises ValueError: If email is missing or malformed.
        """
        if not value or not isinstance(value, str):
            raise ValueError("Email is required.")
        v = value.strip().lower()
        # Minimal sanity check; full validation happens at API layer.
        if "@" not in v or "." not in v.split("@")[-1]:
            raise ValueError("Email format looks invalid.")
        return v
