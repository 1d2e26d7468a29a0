"""CORS policy for the auth API."""

from __future__ import annotations

from flask import Flask
from flask_cors import CORS

# Browsers only let scripts read these when listed explicitly.
EXPOSED_HEADERS = ["X-Request-ID", "Retry-After", "WWW-Authenticate"]
ALLOWED_HEADERS = ["Authorization", "Content-Type", "X-Request-ID", "X-Correlation-ID"]


def _origins(raw: str) -> list[str]:
    return [o.strip() for o in raw.split(",") if o.strip()]


def init_app(app: Flask) -> None:
    """Apply CORS to everything under ``API_BASE_PREFIX``.

    Tokens travel in the JSON body and the ``Authorization`` header, never in
    cookies, so a wildcard origin is allowed but then never paired with
    credentials.
    """
    origins = _origins(app.config.get("CORS_ORIGINS", ""))
    wildcard = not origins or origins == ["*"]
    prefix = app.config.get("API_BASE_PREFIX", "/api").rstrip("/")

    CORS(
        app,
        resources={rf"{prefix}/*": {"origins": "*" if wildcard else origins}},
        methods=["GET", "POST", "OPTIONS"],
        allow_headers=ALLOWED_HEADERS,
        expose_headers=EXPOSED_HEADERS,
        supports_credentials=not wildcard,
        max_age=app.config.get("CORS_MAX_AGE", 600),
    )
