"""
schemas/auth_schema.py — Marshmallow schemas for /auth endpoints.

Validation responsibility:
  - This file: field types, lengths, formats.
  - services/: uniqueness (DUPLICATE_EMAIL, ...), credential and code checks
    (they require a DB lookup — not a schema concern).

All schemas inherit from marshmallow.Schema directly (no app context needed).
"""

from __future__ import annotations

import re

from marshmallow import Schema, ValidationError, fields, validate, validates

_MOBILE_RE = re.compile(r"^[0-9+ \-()]{7,15}$")


def validate_password_strength(value: str) -> None:
    """Min 8 chars, at most 72 bytes (bcrypt), at least one letter and one digit."""
    if len(value) < 8:
        raise ValidationError("Password must be at least 8 characters long.")
    if len(value.encode("utf-8")) > 72:
        raise ValidationError("Password must be at most 72 bytes long.")
    if not any(c.isalpha() for c in value):
        raise ValidationError("Password must contain at least one letter.")
    if not any(c.isdigit() for c in value):
        raise ValidationError("Password must contain at least one digit.")


def validate_mobile_number(value: str) -> None:
    """Empty string is allowed and means "no mobile number"."""
    if value and not _MOBILE_RE.match(value.strip()):
        raise ValidationError("Invalid mobile number.")


def _fullname_field(required: bool) -> fields.Str:
    return fields.Str(
        required=required,
        validate=validate.Length(
            min=2,
            max=100,
            error="Full name must be between 2 and 100 characters.",
        ),
    )


class RegisterSchema(Schema):
    """
    POST /auth/register

    Registration is for students only; there is no role field.
    """

    fullname = _fullname_field(required=True)
    email = fields.Email(required=True, validate=validate.Length(max=255))
    password = fields.Str(
        required=True,
        load_only=True,
        validate=validate_password_strength,
    )
    mobile_number = fields.Str(
        data_key="mobileNumber",
        load_default=None,
        validate=validate_mobile_number,
    )
    college_user_id = fields.Str(
        data_key="collegeUserId",
        load_default=None,
        validate=validate.Length(max=64),
    )


class EmailSchema(Schema):
    """POST /auth/register/resend and POST /auth/forgot-password"""

    email = fields.Email(required=True)


class VerifyRegistrationSchema(Schema):
    """
    POST /auth/register/verify

    `code` is deliberately untyped: whatever the client sends is stringified
    and counted as an attempt by the service, so malformed codes still burn
    an attempt instead of bypassing the counter.
    """

    email = fields.Email(required=True)
    code = fields.Raw(required=True, allow_none=False)


class LoginSchema(Schema):
    """POST /auth/login — credential correctness is checked in auth_service."""

    email = fields.Email(required=True)
    password = fields.Str(
        required=True,
        load_only=True,
        validate=validate.Length(min=1, max=72, error="Password must be between 1 and 72 characters."),
    )


class ResetPasswordSchema(Schema):
    """POST /auth/reset-password"""

    token = fields.Str(
        required=True,
        validate=validate.Length(min=10, error="Invalid token."),
    )
    password = fields.Str(
        required=True,
        load_only=True,
        validate=validate_password_strength,
    )


class ChangePasswordSchema(Schema):
    """PUT /auth/me/password"""

    old_password = fields.Str(
        data_key="oldPassword",
        required=True,
        load_only=True,
        validate=validate.Length(min=1, max=72),
    )
    new_password = fields.Str(
        data_key="newPassword",
        required=True,
        load_only=True,
        validate=validate_password_strength,
    )


class UpdateProfileSchema(Schema):
    """
    PUT /auth/me

    All fields optional. An empty mobileNumber / collegeUserId clears it.
    """

    fullname = _fullname_field(required=False)
    email = fields.Email(validate=validate.Length(max=255))
    mobile_number = fields.Str(
        data_key="mobileNumber",
        validate=validate_mobile_number,
    )
    college_user_id = fields.Str(
        data_key="collegeUserId",
        validate=validate.Length(max=64),
    )

    @validates("fullname")
    def validate_fullname_not_blank(self, value: str, **kwargs) -> None:
        if not value.strip():
            raise ValidationError("Full name must not be blank.")
