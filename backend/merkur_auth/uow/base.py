"""
Abstract Unit of Work contracts.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from merkur_auth.repositories import RoleRepository, UserRepository


class SupportsCommit(Protocol):
    def commit(self) -> None: ...
    def rollback(self) -> None: ...


class UnitOfWork(ABC):
    """
    Transaction boundary around the account repositories.

    ``users`` and ``roles`` share one session. Read-write implementations
    commit on a clean exit and roll back on error; read-only ones always roll
    back and refuse to flush.
    """

    users: UserRepository
    roles: RoleRepository
    readonly: bool = False

    @abstractmethod
    def __enter__(self) -> UnitOfWork: ...
    @abstractmethod
    def __exit__(self, exc_type, exc, tb) -> None: ...
    @abstractmethod
    def commit(self) -> None: ...
    @abstractmethod
    def rollback(self) -> None: ...
