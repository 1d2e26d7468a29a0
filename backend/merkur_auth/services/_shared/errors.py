"""
Domain-level exceptions used within the service layer.

These exceptions are **framework-agnostic** and should never import or depend
on Flask, HTTP, or SQLAlchemy directly. They serve as stable contracts between
repositories, domain models, and application services.

The translation to HTTP responses (RFC 7807) is handled by
``merkur_auth/core/errors.py`` via ``BaseService.translate_exceptions()``.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError


def violates(exc: IntegrityError, constraint_name: str) -> bool:
    """
    Check whether an IntegrityError originates from a specific constraint.

    Supports PostgreSQL (constraint name lookup) and fallback to SQLSTATE.

    Parameters
    ----------
    exc : IntegrityError
        The exception raised by SQLAlchemy during flush/commit.
    constraint_name : str
        The name of the database constraint to match (e.g., 'uq_users_email').

    Returns
    -------
    bool
        True if the IntegrityError matches the given constraint.
    """
    # Some dialects (PostgreSQL) include constraint name in the error message
    message = str(exc.orig).lower() if exc.orig else ""
    return constraint_name.lower() in message


# --------------------------------------------------------------------------- #
# Base types
# --------------------------------------------------------------------------- #


class ServiceError(Exception):
    """
    Base class for all service-level errors.

    Notes
    -----
    - These are *not* HTTP errors.
    - They can be safely raised from repositories or domain logic.
    - The API layer or BaseService will later translate them to APIError.
    """

    pass


# --------------------------------------------------------------------------- #
# Specific domain-level errors
# --------------------------------------------------------------------------- #


@dataclass(slots=True)
class NotFoundError(ServiceError):
    """
    Raised when an entity is not found in the repository.

    :param entity: Entity name (e.g., "User").
    :type entity: str
    :param key: Identifier or search key.
    :type key: str | int
    """

    entity: str
    key: str | int

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.entity} not found: {self.key}"


@dataclass(slots=True)
class ConflictError(ServiceError):
    """
    Raised when a unique constraint or business rule conflict occurs.

    :param entity: Entity name (e.g., "User").
    :type entity: str
    :param detail: Short human-readable explanation.
    :type detail: str
    """

    entity: str
    detail: str

    def __str__(self) -> str:  # pragma: no cover
        return f"Conflict on {self.entity}: {self.detail}"


class FamilyRevokedError(ServiceError):
    """
    Raised when a token is registered into a lineage that was already revoked.

    Reuse detection may revoke a family while a rotation of that same family
    sits between consume and create; the late successor never becomes live.

    :param family_id: The revoked lineage.
    :type family_id: str
    """

    def __init__(self, family_id: str) -> None:
        super().__init__(f"refresh token family revoked: {family_id}")
        self.family_id = family_id


class StorageUnavailableError(ServiceError):
    """
    Raised when a backing store times out or cannot be reached.

    This is a *transient* condition: callers must surface it as "try again",
    never as an invalid credential or token.

    :param backend: Short backend label (``"sql"``, ``"redis"``).
    :type backend: str
    :param operation: Store operation that failed.
    :type operation: str
    """

    def __init__(self, backend: str, operation: str, *, cause: BaseException | None = None) -> None:
        super().__init__(f"{backend} store unavailable during {operation}")
        self.backend = backend
        self.operation = operation
        self.__cause__ = cause
