"""Service layer public API.

This package exposes the essential building blocks for the service layer so that
callers can import from :mod:`merkur_auth.services` without knowing internal structure.

Re-exports
----------
- Base primitives (from ``merkur_auth.services._shared.base``)
    * :class:`BaseService`

- Auth orchestrator (from ``merkur_auth.services.auth``)
    * :class:`AuthOrchestrator`
    * Results: :class:`AuthOutcome`, :class:`AuthErrorKind`, :class:`TokenPair`
"""

from __future__ import annotations

from ._shared.base import BaseService
from .auth.dto import AuthErrorKind, AuthOutcome, RegisterIn, TokenPair
from .auth.service import AuthOrchestrator

__all__ = [
    "AuthErrorKind",
    "AuthOrchestrator",
    "AuthOutcome",
    "BaseService",
    "RegisterIn",
    "TokenPair",
]
