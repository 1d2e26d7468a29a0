"""Tests for configuration helpers."""

from __future__ import annotations

from datetime import timedelta

import pytest

from merkur_auth.core.config import TestingConfig, parse_duration, validate_config


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("15m", timedelta(minutes=15)),
        ("7d", timedelta(days=7)),
        ("90", timedelta(seconds=90)),
        (" 2h ", timedelta(hours=2)),
        (30, timedelta(seconds=30)),
        (timedelta(minutes=1), timedelta(minutes=1)),
    ],
)
def test_parse_duration(raw, expected):
    assert parse_duration(raw) == expected


@pytest.mark.parametrize("raw", ["", "abc", "5w", "0m", "-1s"])
def test_parse_duration_rejects_garbage(raw):
    with pytest.raises(ValueError):
        parse_duration(raw)


def _config(**overrides):
    base = {
        "JWT_ACCESS_SECRET": TestingConfig.JWT_ACCESS_SECRET,
        "JWT_REFRESH_SECRET": TestingConfig.JWT_REFRESH_SECRET,
        "JWT_ACCESS_TTL": "15m",
        "JWT_REFRESH_TTL": "7d",
        "DEBUG": False,
        "TESTING": False,
    }
    base.update(overrides)
    return base


def test_validate_config_accepts_distinct_secrets():
    validate_config(_config())


def test_validate_config_rejects_shared_secret():
    with pytest.raises(RuntimeError, match="must differ"):
        validate_config(_config(JWT_REFRESH_SECRET=TestingConfig.JWT_ACCESS_SECRET))


def test_validate_config_rejects_missing_secret():
    with pytest.raises(RuntimeError, match="must be set"):
        validate_config(_config(JWT_ACCESS_SECRET=""))


def test_placeholders_only_allowed_in_debug_or_testing():
    placeholders = {
        "JWT_ACCESS_SECRET": "CHANGE_ME_ACCESS",
        "JWT_REFRESH_SECRET": "CHANGE_ME_REFRESH",
    }
    with pytest.raises(RuntimeError, match="placeholder"):
        validate_config(_config(**placeholders))
    validate_config(_config(DEBUG=True, **placeholders))


def test_validate_config_rejects_bad_ttl():
    with pytest.raises(RuntimeError, match="TTL"):
        validate_config(_config(JWT_ACCESS_TTL="soon"))


def test_weak_argon2_cost_only_allowed_in_debug_or_testing():
    with pytest.raises(RuntimeError, match="ARGON2_MEMORY_COST"):
        validate_config(_config(ARGON2_MEMORY_COST=8192))
    validate_config(_config(TESTING=True, ARGON2_MEMORY_COST=8192))
