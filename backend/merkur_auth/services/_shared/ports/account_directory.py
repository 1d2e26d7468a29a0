from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from itertools import count
from typing import Protocol

from merkur_auth.services._shared.errors import ConflictError


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated identity; never mutated by the auth core."""

    user_id: int
    email: str
    roles: frozenset[str] = frozenset()
    is_active: bool = True


@dataclass(frozen=True, slots=True)
class AccountProfile:
    first_name: str | None = None
    last_name: str | None = None
    company_name: str | None = None


@dataclass(frozen=True, slots=True)
class Account:
    """
    Principal plus the stored credential and profile.

    :ivar password_hash: Stored hash; plaintext is never held.
    """

    principal: Principal
    password_hash: str
    profile: AccountProfile = field(default_factory=AccountProfile)
    last_login_at: datetime | None = None

    @property
    def user_id(self) -> int:
        return self.principal.user_id


class AccountDirectory(Protocol):
    """
    Source of accounts for the auth flows.

    :meth:`create` MUST raise :class:`ConflictError` when the email is taken.
    Emails are compared case-insensitively.
    """

    def find_by_email(self, email: str) -> Account | None: ...

    def get(self, user_id: int) -> Account | None: ...

    def create(
        self, *, email: str, password_hash: str, profile: AccountProfile, role: str
    ) -> Account: ...

    def record_login(self, user_id: int, when: datetime) -> None: ...

    def update_password_hash(self, user_id: int, password_hash: str) -> None: ...


class InMemoryAccountDirectory(AccountDirectory):
    """Dictionary-backed directory for tests and local experiments."""

    def __init__(self) -> None:
        self._by_id: dict[int, Account] = {}
        self._ids = count(1)
        self._lock = threading.Lock()

    def find_by_email(self, email: str) -> Account | None:
        key = email.strip().lower()
        with self._lock:
            return next((a for a in self._by_id.values() if a.principal.email == key), None)

    def get(self, user_id: int) -> Account | None:
        with self._lock:
            return self._by_id.get(user_id)

    def create(
        self, *, email: str, password_hash: str, profile: AccountProfile, role: str
    ) -> Account:
        key = email.strip().lower()
        with self._lock:
            if any(a.principal.email == key for a in self._by_id.values()):
                raise ConflictError("User", "email already registered")
            user_id = next(self._ids)
            account = Account(
                principal=Principal(user_id=user_id, email=key, roles=frozenset({role})),
                password_hash=password_hash,
                profile=profile,
            )
            self._by_id[user_id] = account
            return account

    def record_login(self, user_id: int, when: datetime) -> None:
        with self._lock:
            self._by_id[user_id] = replace(self._by_id[user_id], last_login_at=when)

    def update_password_hash(self, user_id: int, password_hash: str) -> None:
        with self._lock:
            self._by_id[user_id] = replace(self._by_id[user_id], password_hash=password_hash)

    def set_active(self, user_id: int, is_active: bool) -> None:
        with self._lock:
            account = self._by_id[user_id]
            principal = replace(account.principal, is_active=is_active)
            self._by_id[user_id] = replace(account, principal=principal)
