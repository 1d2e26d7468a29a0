"""Authentication-related Marshmallow schemas (camelCase on the wire)."""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, validate

from merkur_auth.services._shared.policies.password import (
    MAX_LENGTH,
    password_policy_violations,
)


def _validate_password(value: str) -> None:
    violations = password_policy_violations(value)
    if violations:
        raise ValidationError(violations)


class RegisterSchema(Schema):
    """Input payload for account registration."""

    email = fields.Email(required=True, validate=validate.Length(max=254))
    password = fields.String(required=True, validate=_validate_password)
    first_name = fields.String(
        data_key="firstName", load_default=None, validate=validate.Length(max=100)
    )
    last_name = fields.String(
        data_key="lastName", load_default=None, validate=validate.Length(max=100)
    )
    company_name = fields.String(
        data_key="companyName", load_default=None, validate=validate.Length(max=255)
    )


class LoginSchema(Schema):
    """Input payload for authenticating a user.

    No strength policy here: accounts created under older rules must still log in.
    """

    email = fields.Email(required=True, validate=validate.Length(max=254))
    password = fields.String(required=True, validate=validate.Length(min=1, max=MAX_LENGTH))


class RefreshTokenSchema(Schema):
    """Input payload carrying a refresh token (refresh and logout)."""

    refresh_token = fields.String(
        data_key="refreshToken", required=True, validate=validate.Length(min=1, max=4096)
    )


class UserSchema(Schema):
    """Public identity of the authenticated account."""

    id = fields.Integer(required=True)
    email = fields.Email(required=True)
    first_name = fields.String(data_key="firstName", allow_none=True)
    last_name = fields.String(data_key="lastName", allow_none=True)
    company_name = fields.String(data_key="companyName", allow_none=True)
    roles = fields.List(fields.String(), required=True)


class AuthResponseSchema(Schema):
    """Response payload for register/login/refresh."""

    access_token = fields.String(data_key="accessToken", required=True)
    refresh_token = fields.String(data_key="refreshToken", required=True)
    expires_in = fields.Integer(data_key="expiresIn", required=True)
    user = fields.Nested(UserSchema, required=True)
