# comments in English; reST docstrings
from __future__ import annotations

from datetime import datetime

from sqlalchemy.exc import IntegrityError

from merkur_auth.infra.sql.storage_guard import sql_storage_guard
from merkur_auth.models.role import Role
from merkur_auth.models.user import User
from merkur_auth.services._shared.base import BaseService
from merkur_auth.services._shared.errors import ConflictError, NotFoundError, violates
from merkur_auth.services._shared.ports.account_directory import (
    Account,
    AccountDirectory,
    AccountProfile,
    Principal,
)


def _to_account(user: User) -> Account:
    # Must run inside the UoW scope: rollback expires loaded attributes.
    return Account(
        principal=Principal(
            user_id=user.id,
            email=user.email,
            roles=user.role_names,
            is_active=user.is_active,
        ),
        password_hash=user.password_hash,
        profile=AccountProfile(
            first_name=user.first_name,
            last_name=user.last_name,
            company_name=user.company_name,
        ),
        last_login_at=user.last_login_at,
    )


class SQLAlchemyAccountDirectory(BaseService, AccountDirectory):
    """
    Account directory over the ``users``/``roles`` tables.

    Reads run in a read-only Unit of Work, writes in a read-write one; ORM
    entities never leave this class (callers get frozen :class:`Account`
    snapshots).
    """

    def find_by_email(self, email: str) -> Account | None:
        with sql_storage_guard("find_by_email"), self.ro_uow() as uow:
            user = uow.users.get_by_email(email)
            return _to_account(user) if user is not None else None

    def get(self, user_id: int) -> Account | None:
        with sql_storage_guard("get_account"), self.ro_uow() as uow:
            user = uow.users.get(user_id)
            return _to_account(user) if user is not None else None

    def create(
        self, *, email: str, password_hash: str, profile: AccountProfile, role: str
    ) -> Account:
        """
        Insert a user holding ``role`` (created on the fly when not seeded).

        :raises ConflictError: If the email is already registered.
        """
        try:
            with sql_storage_guard("create_account"), self.rw_uow() as uow:
                if uow.users.exists_by_email(email):
                    raise ConflictError("User", "email already registered")
                granted = uow.roles.get_by_name(role) or uow.roles.add(
                    Role(name=role, description=None, permissions=[])
                )
                user = uow.users.create(
                    email=email,
                    password_hash=password_hash,
                    first_name=profile.first_name,
                    last_name=profile.last_name,
                    company_name=profile.company_name,
                    roles=[granted],
                )
                account = _to_account(user)
        except IntegrityError as exc:
            # SQLite reports the column, PostgreSQL the constraint name.
            if violates(exc, "uq_users_email") or violates(exc, "users.email"):
                raise ConflictError("User", "email already registered") from exc
            raise
        return account

    def record_login(self, user_id: int, when: datetime) -> None:
        with sql_storage_guard("record_login"), self.rw_uow() as uow:
            if uow.users.get(user_id) is None:
                raise NotFoundError("User", user_id)
            uow.users.touch_last_login(user_id, when)

    def update_password_hash(self, user_id: int, password_hash: str) -> None:
        with sql_storage_guard("update_password_hash"), self.rw_uow() as uow:
            if uow.users.get(user_id) is None:
                raise NotFoundError("User", user_id)
            uow.users.update_password_hash(user_id, password_hash)
