"""Reverse-proxy awareness for client IP recording."""

from __future__ import annotations

from flask import Flask
from werkzeug.middleware.proxy_fix import ProxyFix


def init_app(app: Flask) -> None:
    """Wrap the WSGI app in :class:`ProxyFix` when ``USE_PROXYFIX`` is on.

    ``request.remote_addr`` ends up on refresh-token records, audit events and
    the login rate-limit key, so only ``PROXY_TRUSTED_HOPS`` entries of
    ``X-Forwarded-For`` are believed. A value of ``0`` disables the wrapper.
    """
    hops = int(app.config.get("PROXY_TRUSTED_HOPS", 1))
    if not app.config.get("USE_PROXYFIX", True) or hops <= 0:
        return
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=hops, x_proto=hops, x_host=hops)
