from __future__ import annotations

from typing import Protocol


class CredentialStore(Protocol):
    """
    Password hashing/verification contract.

    Implementations MUST:
    - produce self-describing hashes (algorithm + parameters + salt embedded);
    - compare in constant time;
    - never raise from :meth:`verify` for a mismatch or a malformed hash.
    """

    def hash(self, password: str) -> str:
        """Return a salted hash for ``password``."""

    def verify(self, password_hash: str, password: str) -> bool:
        """Return ``True`` only when ``password`` matches ``password_hash``."""

    def needs_rehash(self, password_hash: str) -> bool:
        """Return ``True`` when the hash was produced with outdated parameters."""

    def dummy_verify(self, password: str) -> None:
        """Spend one verification worth of work and discard the result."""
