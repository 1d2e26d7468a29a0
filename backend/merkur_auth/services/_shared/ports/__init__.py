"""
merkur_auth.services._shared.ports
==================================

Collection of *ports* (hexagonal interfaces) that define the contracts
for credential, token and session infrastructure.

These ports decouple the service layer from concrete implementations
of password hashing, token signing, refresh storage and audit delivery.

Modules
-------
- :mod:`credential_store`:
    Defines :class:`~.CredentialStore`: password hashing and verification.

- :mod:`token_issuer`:
    Defines :class:`~.TokenIssuer` and its result types: JWT creation and
    verification with separate access/refresh secrets.

- :mod:`refresh_token_registry`:
    Defines :class:`~.RefreshTokenRegistry`, :class:`~.ConsumeOutcome` and
    :class:`~.RefreshTokenRecord`: single-use refresh rotation and persistence.

- :mod:`account_directory`:
    Defines :class:`~.AccountDirectory` and :class:`~.Principal`.

- :mod:`audit_sink`:
    Defines :class:`~.AuditSink` and :class:`~.AuthEvent`.

Design Notes
------------
All these ports follow *Dependency Inversion Principle (DIP)* to keep
the service layer independent from implementation details.
Concrete adapters (argon2, PyJWT, SQL, Redis) implement these interfaces
under ``merkur_auth.infra``.
"""

from __future__ import annotations

from .account_directory import (
    Account,
    AccountDirectory,
    AccountProfile,
    InMemoryAccountDirectory,
    Principal,
)
from .audit_sink import AuditAction, AuditSink, AuthEvent
from .credential_store import CredentialStore
from .refresh_token_registry import (
    ConsumeOutcome,
    ConsumeResult,
    InMemoryRefreshTokenRegistry,
    RefreshTokenRecord,
    RefreshTokenRegistry,
    RevokeReason,
    hash_token,
)
from .token_issuer import (
    IdentityClaims,
    TokenClaims,
    TokenFailure,
    TokenIssuer,
    TokenKind,
    TokenVerification,
)

__all__ = [
    "Account",
    "AccountDirectory",
    "AccountProfile",
    "AuditAction",
    "AuditSink",
    "AuthEvent",
    "ConsumeOutcome",
    "ConsumeResult",
    "CredentialStore",
    "IdentityClaims",
    "InMemoryAccountDirectory",
    "InMemoryRefreshTokenRegistry",
    "Principal",
    "RefreshTokenRecord",
    "RefreshTokenRegistry",
    "RevokeReason",
    "TokenClaims",
    "TokenFailure",
    "TokenIssuer",
    "TokenKind",
    "TokenVerification",
    "hash_token",
]
