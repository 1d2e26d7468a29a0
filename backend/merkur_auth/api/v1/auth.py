"""Authentication endpoints backed by the auth orchestrator."""

from __future__ import annotations

from flask import Blueprint, current_app, request

from merkur_auth.api.deps import (
    client_info,
    current_user_id,
    empty_response,
    get_orchestrator,
    json_response,
    require_auth,
    timing,
)
from merkur_auth.core.errors import (
    AccountInactive,
    APIError,
    DuplicateEmail,
    InvalidCredentials,
    InvalidRefreshToken,
    PolicyViolation,
    TransientFailure,
)
from merkur_auth.core.extensions import limiter
from merkur_auth.schemas import (
    AuthResponseSchema,
    LoginSchema,
    RefreshTokenSchema,
    RegisterSchema,
    UserSchema,
)
from merkur_auth.services.auth.dto import (
    AuthErrorKind,
    AuthOutcome,
    LoginIn,
    RegisterIn,
)

bp = Blueprint("auth", __name__)

register_schema = RegisterSchema()
login_schema = LoginSchema()
refresh_schema = RefreshTokenSchema()
user_schema = UserSchema()
auth_response_schema = AuthResponseSchema()

_ERRORS: dict[AuthErrorKind, type[APIError]] = {
    AuthErrorKind.DUPLICATE_EMAIL: DuplicateEmail,
    AuthErrorKind.INVALID_CREDENTIALS: InvalidCredentials,
    AuthErrorKind.ACCOUNT_INACTIVE: AccountInactive,
    AuthErrorKind.INVALID_REFRESH_TOKEN: InvalidRefreshToken,
    AuthErrorKind.TRANSIENT_FAILURE: TransientFailure,
}


def _login_rate_limit() -> str:
    return str(current_app.config.get("AUTH_LOGIN_RATE_LIMIT", "5 per minute"))


def _raise_for(outcome: AuthOutcome) -> None:
    """Translate a failed outcome into the matching API error."""
    if outcome.error is None:
        return
    if outcome.error is AuthErrorKind.VALIDATION_ERROR:
        raise PolicyViolation(
            "Validation failed",
            details={"errors": {"password": list(outcome.violations)}},
        )
    raise _ERRORS[outcome.error]()


def _session_body(outcome: AuthOutcome) -> dict:
    """Serialize the token pair of a successful outcome (raises for failures)."""
    _raise_for(outcome)
    session = outcome.session
    if session is None:
        raise APIError(
            "Authentication succeeded without a session",
            status_code=500,
            code="internal_server_error",
        )
    return auth_response_schema.dump(
        {
            "access_token": session.tokens.access_token,
            "refresh_token": session.tokens.refresh_token,
            "expires_in": session.tokens.expires_in,
            "user": session.user,
        }
    )


@bp.post("/register")
@timing
def register():
    """Create an account and return its first token pair."""

    data = register_schema.load(request.get_json(silent=True) or {})
    outcome = get_orchestrator().register(RegisterIn(**data), client_info())
    return json_response(_session_body(outcome), status=201)


@bp.post("/login")
@limiter.limit(_login_rate_limit)
@timing
def login():
    """Authenticate credentials and issue a token pair."""

    data = login_schema.load(request.get_json(silent=True) or {})
    outcome = get_orchestrator().login(LoginIn(**data), client_info())
    return json_response(_session_body(outcome))


@bp.post("/refresh")
@timing
def refresh():
    """Exchange a refresh token for a new pair (the presented token is consumed)."""

    data = refresh_schema.load(request.get_json(silent=True) or {})
    outcome = get_orchestrator().refresh(data["refresh_token"], client_info())
    return json_response(_session_body(outcome))


@bp.post("/logout")
@timing
def logout():
    """Revoke a refresh token. Unknown or already revoked tokens still yield 204."""

    data = refresh_schema.load(request.get_json(silent=True) or {})
    outcome = get_orchestrator().logout(data["refresh_token"], client_info())
    _raise_for(outcome)
    return empty_response()


@bp.post("/logout-all")
@require_auth
@timing
def logout_all():
    """Revoke every refresh token of the caller."""

    outcome = get_orchestrator().logout_all(current_user_id(), client_info())
    _raise_for(outcome)
    return empty_response()


@bp.get("/me")
@require_auth
@timing
def whoami():
    """Return the account behind the bearer access token."""

    outcome = get_orchestrator().whoami(current_user_id())
    _raise_for(outcome)
    return json_response({"user": user_schema.dump(outcome.user)})
