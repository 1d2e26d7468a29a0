"""Application settings with environment-based simple classes."""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from datetime import timedelta
from typing import Final

from dotenv import load_dotenv

# Public selector env var (keep neutral name to avoid collisions)
ENV_VAR: Final[str] = "APP_ENV"  # 'development' | 'testing' | 'production'

PLACEHOLDER_SECRETS: Final[frozenset[str]] = frozenset(
    {"CHANGE_ME", "CHANGE_ME_ACCESS", "CHANGE_ME_REFRESH"}
)

# Lowest argon2id cost accepted outside debug/testing
ARGON2_FLOORS: Final[dict[str, int]] = {
    "ARGON2_TIME_COST": 3,
    "ARGON2_MEMORY_COST": 65536,
    "ARGON2_PARALLELISM": 4,
}

# Load .env in development (no-op when missing)
load_dotenv()


def env_bool(name: str, default: bool = False) -> bool:
    """Parse a boolean flag from an environment variable.

    Parameters
    ----------
    name: str
        Environment variable to inspect.
    default: bool, optional
        Value returned when the variable is unset. Defaults to ``False``.

    Returns
    -------
    bool
        ``True`` if the value resembles ``{"1", "true", "yes", "y", "on"}``
        ignoring case; otherwise ``False`` or ``default`` when missing.
    """
    val = os.getenv(name)
    if val is None:
        return default
    return str(val).strip().lower() in {"1", "true", "yes", "y", "on"}


def env_int(name: str, default: int) -> int:
    """Parse an integer environment variable, falling back to ``default``."""
    val = os.getenv(name)
    if val is None or not val.strip():
        return default
    return int(val)


_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$")
_DURATION_UNITS: Final[dict[str, str]] = {
    "s": "seconds",
    "m": "minutes",
    "h": "hours",
    "d": "days",
}


def parse_duration(value: str | int | timedelta) -> timedelta:
    """Parse a compact duration such as ``"15m"`` or ``"7d"``.

    Parameters
    ----------
    value: str | int | timedelta
        ``timedelta`` instances pass through, integers are seconds and strings
        use one of the ``s``/``m``/``h``/``d`` suffixes (no suffix = seconds).

    Returns
    -------
    datetime.timedelta
        Parsed positive duration.

    Raises
    ------
    ValueError
        If the string is malformed or the duration is not positive.
    """
    if isinstance(value, timedelta):
        delta = value
    elif isinstance(value, int):
        delta = timedelta(seconds=value)
    else:
        match = _DURATION_RE.match(value)
        if match is None:
            raise ValueError(f"Invalid duration: {value!r}")
        amount, unit = match.groups()
        delta = timedelta(**{_DURATION_UNITS[unit or "s"]: int(amount)})
    if delta <= timedelta(0):
        raise ValueError(f"Duration must be positive: {value!r}")
    return delta


class BaseConfig:
    """Base configuration shared across environments.

    Attributes
    ----------
    API_BASE_PREFIX: str
        Root path for registering API blueprints.
    SECRET_KEY: str
        Flask secret used for session signing.
    JWT_ACCESS_SECRET: str
        HMAC key for access tokens. Also handed to ``flask-jwt-extended`` as
        ``JWT_SECRET_KEY`` so protected routes can verify bearer tokens.
    JWT_REFRESH_SECRET: str
        HMAC key for refresh tokens. Must differ from the access secret.
    JWT_ACCESS_TTL / JWT_REFRESH_TTL: str
        Token lifetimes in :func:`parse_duration` syntax.
    REFRESH_TOKEN_BACKEND: str
        ``"sql"`` (default), ``"redis"`` or ``"memory"``.
    STORAGE_TIMEOUT_SECONDS: float
        Upper bound for every refresh-registry storage call.
    ARGON2_TIME_COST / ARGON2_MEMORY_COST / ARGON2_PARALLELISM: int
        Password hashing cost (memory in KiB).
    REFRESH_REUSE_REVOKES_FAMILY: bool
        Revoke the whole token lineage when a rotated token is replayed.

    Notes
    -----
    Values are primarily sourced from environment variables, enabling
    configuration without code changes.
    """

    APP_ENV = "development"
    API_BASE_PREFIX = "/api"

    # Secrets / security
    SECRET_KEY = os.getenv("SECRET_KEY", "CHANGE_ME")
    JWT_ACCESS_SECRET = os.getenv("JWT_ACCESS_SECRET", "CHANGE_ME_ACCESS")
    JWT_REFRESH_SECRET = os.getenv("JWT_REFRESH_SECRET", "CHANGE_ME_REFRESH")
    JWT_SECRET_KEY = JWT_ACCESS_SECRET
    JWT_ALGORITHM = "HS256"
    JWT_ACCESS_TTL = os.getenv("JWT_ACCESS_TTL", "15m")
    JWT_REFRESH_TTL = os.getenv("JWT_REFRESH_TTL", "7d")

    # Password hashing (argon2id)
    ARGON2_TIME_COST = env_int("ARGON2_TIME_COST", 3)
    ARGON2_MEMORY_COST = env_int("ARGON2_MEMORY_COST", 65536)
    ARGON2_PARALLELISM = env_int("ARGON2_PARALLELISM", 4)

    # Refresh token registry
    REFRESH_TOKEN_BACKEND = os.getenv("REFRESH_TOKEN_BACKEND", "sql")
    REDIS_URL = os.getenv("REDIS_URL")
    STORAGE_TIMEOUT_SECONDS = float(os.getenv("STORAGE_TIMEOUT_SECONDS", "5"))
    REFRESH_REUSE_REVOKES_FAMILY = env_bool("REFRESH_REUSE_REVOKES_FAMILY", True)

    # Accounts & audit
    DEFAULT_ROLE = os.getenv("DEFAULT_ROLE", "user")
    AUDIT_WORKERS = env_int("AUDIT_WORKERS", 2)

    # DB
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///./dev.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ECHO = env_bool("SQLALCHEMY_ECHO", False)

    # Rate limiting
    RATELIMIT_ENABLED = env_bool("RATELIMIT_ENABLED", True)
    RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")
    AUTH_LOGIN_RATE_LIMIT = os.getenv("AUTH_LOGIN_RATE_LIMIT", "5 per minute")

    # Flask & JSON
    JSON_SORT_KEYS = False
    PROPAGATE_EXCEPTIONS = False

    # Logging & CORS
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "http://localhost:3000")
    USE_PROXYFIX = env_bool("USE_PROXYFIX", True)
    # Reverse proxies in front of the app; the client IP is read from X-Forwarded-For
    PROXY_TRUSTED_HOPS = int(os.getenv("PROXY_TRUSTED_HOPS", "1"))

    # Flask built-ins
    DEBUG = False
    TESTING = False


class DevelopmentConfig(BaseConfig):
    """Configuration tailored for local development.

    Notes
    -----
    Enables debug mode by default and honors ``SQLALCHEMY_ECHO`` for verbose
    SQL logging when requested.
    """

    DEBUG = env_bool("FLASK_DEBUG", True)
    SQLALCHEMY_ECHO = env_bool("SQLALCHEMY_ECHO", False)
    CORS_MAX_AGE = 600  # 10 minutes


class TestingConfig(BaseConfig):
    """Configuration for automated test runs.

    Notes
    -----
    - Forces ``TESTING`` mode and disables debug logs.
    - Uses an in-memory SQLite database unless ``TEST_DATABASE_URL`` is set.
    - Lowers argon2 cost so the suite stays fast.
    - Disables rate limiting.
    """

    APP_ENV = "testing"
    TESTING = True
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")
    SQLALCHEMY_ECHO = env_bool("SQLALCHEMY_ECHO", False)
    PROPAGATE_EXCEPTIONS = True
    JWT_ACCESS_SECRET = "test-access-secret-0123456789abcdef"
    JWT_REFRESH_SECRET = "test-refresh-secret-0123456789abcdef"
    JWT_SECRET_KEY = JWT_ACCESS_SECRET
    ARGON2_TIME_COST = 1
    ARGON2_MEMORY_COST = 8192
    ARGON2_PARALLELISM = 1
    RATELIMIT_ENABLED = False
    AUDIT_WORKERS = 1


class ProductionConfig(BaseConfig):
    """Configuration defaults for production deployments.

    Notes
    -----
    Keeps debug and SQL echoing disabled while relying on WSGI-level log
    configuration for noise control. :func:`validate_config` refuses to start
    with placeholder or shared token secrets.
    """

    APP_ENV = "production"
    DEBUG = False
    SQLALCHEMY_ECHO = False
    PROPAGATE_EXCEPTIONS = False


# Map names -> classes (simple, explicit)
CONFIG_MAP: Mapping[str, type[BaseConfig]] = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
}


def get_config() -> type[BaseConfig]:
    """Return the configuration class inferred from ``APP_ENV``.

    Returns
    -------
    type[BaseConfig]
        Class to pass to :meth:`flask.Config.from_object`.

    Notes
    -----
    Falls back to :class:`DevelopmentConfig` when ``APP_ENV`` is unset or
    unknown.
    """
    name = os.getenv(ENV_VAR, "development").strip().lower()
    return CONFIG_MAP.get(name, DevelopmentConfig)


def validate_config(config: Mapping[str, object]) -> None:
    """Fail fast on token settings that would weaken the auth core.

    :param config: Loaded Flask config mapping.
    :raises RuntimeError: If secrets are missing or shared, a TTL cannot be
        parsed, or (outside debug/testing) secrets are placeholders or the
        argon2 cost is below :data:`ARGON2_FLOORS`.
    """
    access = str(config.get("JWT_ACCESS_SECRET") or "")
    refresh = str(config.get("JWT_REFRESH_SECRET") or "")
    if not access or not refresh:
        raise RuntimeError("JWT_ACCESS_SECRET and JWT_REFRESH_SECRET must be set.")
    if access == refresh:
        raise RuntimeError("JWT_ACCESS_SECRET and JWT_REFRESH_SECRET must differ.")

    relaxed = bool(config.get("DEBUG")) or bool(config.get("TESTING"))
    if not relaxed and (access in PLACEHOLDER_SECRETS or refresh in PLACEHOLDER_SECRETS):
        raise RuntimeError(
            "Token secrets still use placeholder values. Generate them with: "
            'python -c "import secrets; print(secrets.token_urlsafe(48))"'
        )

    weak = [
        key
        for key, floor in ARGON2_FLOORS.items()
        if int(str(config.get(key, floor))) < floor
    ]
    if not relaxed and weak:
        raise RuntimeError(f"Argon2 cost below the production floor: {', '.join(weak)}")

    try:
        parse_duration(str(config.get("JWT_ACCESS_TTL", "15m")))
        parse_duration(str(config.get("JWT_REFRESH_TTL", "7d")))
    except ValueError as exc:
        raise RuntimeError(f"Invalid token TTL: {exc}") from exc
