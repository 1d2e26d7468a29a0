"""Application factory wiring Flask extensions, blueprints and the auth core."""

from __future__ import annotations

import atexit

from flask import Flask

from merkur_auth.core.config import BaseConfig, get_config, validate_config
from merkur_auth.core.logger import configure_logging, init_app as init_logging

REGISTRY_BACKENDS = ("sql", "redis", "memory")


def create_app(
    config: str | type[BaseConfig] | object | None = None,
    *,
    instance_relative_config: bool = True,
    instance_config_filename: str = "config.py",
) -> Flask:
    """Build and configure the Flask application."""

    app = Flask(__name__, instance_relative_config=instance_relative_config)

    app.config.from_object(get_config() if config is None else config)
    if instance_relative_config and instance_config_filename:
        app.config.from_pyfile(instance_config_filename, silent=True)

    validate_config(app.config)
    configure_logging(app.config.get("LOG_LEVEL", "INFO"))

    # Proxy headers if running behind a reverse proxy (optional module)
    from merkur_auth.core import proxy

    proxy.init_app(app)

    from merkur_auth.core import extensions

    extensions.init_app(app)

    init_logging(app)

    from merkur_auth.core import cors

    cors.init_app(app)

    init_auth(app)

    from merkur_auth.api import init_app as init_api

    init_api(app)

    from merkur_auth.core import errors

    errors.init_app(app)

    from merkur_auth import cli as app_cli

    app_cli.init_app(app)

    return app


def _build_registry(app: Flask):
    from merkur_auth.services._shared.ports.refresh_token_registry import (
        InMemoryRefreshTokenRegistry,
    )

    backend = str(app.config.get("REFRESH_TOKEN_BACKEND", "sql")).lower()
    if backend not in REGISTRY_BACKENDS:
        raise RuntimeError(
            f"Unknown REFRESH_TOKEN_BACKEND {backend!r}; expected one of {REGISTRY_BACKENDS}."
        )
    if backend == "redis":
        from merkur_auth.core.extensions import get_redis
        from merkur_auth.infra.redis.redis_refresh_token_registry import (
            RedisRefreshTokenRegistry,
        )

        return RedisRefreshTokenRegistry(get_redis())
    if backend == "memory":
        app.logger.warning("refresh tokens are kept in process memory; do not run multiple workers")
        return InMemoryRefreshTokenRegistry()

    from merkur_auth.infra.sql.sql_refresh_token_registry import SQLRefreshTokenRegistry

    return SQLRefreshTokenRegistry(
        timeout_seconds=float(app.config.get("STORAGE_TIMEOUT_SECONDS", 5))
    )


def init_auth(app: Flask) -> None:
    """Assemble the auth orchestrator and store it on ``app.extensions``."""

    from merkur_auth.api.deps import ORCHESTRATOR_KEY
    from merkur_auth.infra.audit import AsyncAuditDispatcher, LoggingAuditSink
    from merkur_auth.infra.crypto.argon2_credential_store import Argon2CredentialStore
    from merkur_auth.infra.jwt.pyjwt_token_issuer import PyJWTTokenIssuer
    from merkur_auth.infra.sql.sql_account_directory import SQLAlchemyAccountDirectory
    from merkur_auth.services.auth.service import AuthOrchestrator

    audit = AsyncAuditDispatcher(
        LoggingAuditSink(), max_workers=int(app.config.get("AUDIT_WORKERS", 2))
    )
    atexit.register(audit.close)

    app.extensions[ORCHESTRATOR_KEY] = AuthOrchestrator(
        accounts=SQLAlchemyAccountDirectory(),
        credentials=Argon2CredentialStore.from_config(app.config),
        tokens=PyJWTTokenIssuer.from_config(app.config),
        registry=_build_registry(app),
        audit=audit,
        default_role=str(app.config.get("DEFAULT_ROLE", "user")),
        reuse_revokes_family=bool(app.config.get("REFRESH_REUSE_REVOKES_FAMILY", True)),
    )
