"""Password strength policy shared by the API schema and the auth service."""

from __future__ import annotations

import re

MIN_LENGTH = 12
MAX_LENGTH = 128

_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"[a-z]"), "Password must contain a lowercase letter."),
    (re.compile(r"[A-Z]"), "Password must contain an uppercase letter."),
    (re.compile(r"\d"), "Password must contain a digit."),
    (re.compile(r"[^A-Za-z0-9]"), "Password must contain a symbol."),
)


def password_policy_violations(password: str) -> list[str]:
    """
    Return human-readable policy violations for ``password`` (empty when valid).

    :param password: Candidate plaintext password.
    :type password: str
    :returns: List of messages, one per broken rule.
    :rtype: list[str]
    """
    problems: list[str] = []
    if not MIN_LENGTH <= len(password) <= MAX_LENGTH:
        problems.append(f"Password must be between {MIN_LENGTH} and {MAX_LENGTH} characters.")
    problems.extend(msg for pattern, msg in _RULES if not pattern.search(password))
    return problems
