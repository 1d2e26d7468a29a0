# comments in English; reST docstrings
from __future__ import annotations

import secrets
from collections.abc import Mapping
from typing import Any

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHashError, VerificationError

from merkur_auth.services._shared.ports.credential_store import CredentialStore

# Minimum production cost parameters (64 MiB, 3 passes, 4 lanes).
DEFAULT_TIME_COST = 3
DEFAULT_MEMORY_COST = 65536
DEFAULT_PARALLELISM = 4


class Argon2CredentialStore(CredentialStore):
    """
    Argon2id password hashing backed by argon2-cffi.

    Hashes are PHC strings (``$argon2id$v=19$m=...,t=...,p=...$salt$hash``),
    so parameters travel with each hash and can be upgraded over time via
    :meth:`needs_rehash`.

    :param time_cost: Number of passes.
    :param memory_cost: Memory in KiB.
    :param parallelism: Number of lanes.
    """

    def __init__(
        self,
        *,
        time_cost: int = DEFAULT_TIME_COST,
        memory_cost: int = DEFAULT_MEMORY_COST,
        parallelism: int = DEFAULT_PARALLELISM,
    ) -> None:
        self._hasher = PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            type=Type.ID,
        )
        # Same parameters as real hashes so dummy work costs the same.
        self._dummy_hash = self._hasher.hash(secrets.token_urlsafe(16))

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> Argon2CredentialStore:
        return cls(
            time_cost=int(config.get("ARGON2_TIME_COST", DEFAULT_TIME_COST)),
            memory_cost=int(config.get("ARGON2_MEMORY_COST", DEFAULT_MEMORY_COST)),
            parallelism=int(config.get("ARGON2_PARALLELISM", DEFAULT_PARALLELISM)),
        )

    def hash(self, password: str) -> str:
        return self._hasher.hash(password)

    def verify(self, password_hash: str, password: str) -> bool:
        """
        Verify ``password`` against ``password_hash`` in constant time.

        :returns: ``False`` for a mismatch *and* for a malformed hash.
        """
        try:
            return self._hasher.verify(password_hash, password)
        except (VerificationError, InvalidHashError):
            return False

    def needs_rehash(self, password_hash: str) -> bool:
        try:
            return self._hasher.check_needs_rehash(password_hash)
        except InvalidHashError:
            return True

    def dummy_verify(self, password: str) -> None:
        self.verify(self._dummy_hash, password)
