"""schemas/user_schema.py — Marshmallow schemas for /users (administration)."""

from __future__ import annotations

from marshmallow import Schema, fields, validate

from shelfwise.app.capabilities import Role
from shelfwise.app.schemas.auth_schema import (
    validate_mobile_number,
    validate_password_strength,
)
from shelfwise.app.schemas.common import ListQuerySchema


class CreateUserSchema(Schema):
    """
    POST /users (admin only)

    Admins create students and librarians. Admin accounts come from the
    seed command only.
    """

    fullname = fields.Str(
        required=True,
        validate=validate.Length(min=2, max=100, error="Full name is required."),
    )
    email = fields.Email(required=True, validate=validate.Length(max=255))
    password = fields.Str(
        required=True,
        load_only=True,
        validate=validate_password_strength,
    )
    role = fields.Str(
        required=True,
        validate=validate.OneOf(
            [Role.STUDENT.value, Role.LIBRARIAN.value],
            error="Role must be student or librarian.",
        ),
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


class ListUsersQuerySchema(ListQuerySchema):
    """GET /users?page&limit&q&role&sort"""

    role = fields.Str(
        load_default=None,
        validate=validate.OneOf([r.value for r in Role]),
    )
