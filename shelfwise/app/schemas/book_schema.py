"""
schemas/book_schema.py — Marshmallow schemas for /books.

ISBN uniqueness is checked in book_service (requires a DB lookup).
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, validate, validates

from shelfwise.app.schemas.common import ListQuerySchema


class _BookFieldsMixin:
    author = fields.Str(allow_none=True, validate=validate.Length(max=255))
    isbn = fields.Str(allow_none=True, validate=validate.Length(max=32))
    description = fields.Str(allow_none=True)
    publisher = fields.Str(allow_none=True, validate=validate.Length(max=255))
    published_date = fields.Date(data_key="publishedDate", allow_none=True)
    tags = fields.List(fields.Str(validate=validate.Length(max=50)))


class CreateBookSchema(_BookFieldsMixin, Schema):
    """POST /books"""

    title = fields.Str(required=True, validate=validate.Length(min=1, max=255))
    copies = fields.Int(
        load_default=1,
        strict=True,
        validate=validate.Range(min=0, error="copies must be >= 0."),
    )

    @validates("title")
    def validate_title_not_blank(self, value: str, **kwargs) -> None:
        if not value.strip():
            raise ValidationError("Title must not be blank.")


class UpdateBookSchema(_BookFieldsMixin, Schema):
    """PUT /books/:id — partial update; only present keys are applied."""

    title = fields.Str(validate=validate.Length(min=1, max=255))
    copies = fields.Int(
        strict=True,
        validate=validate.Range(min=0, error="copies must be >= 0."),
    )

    @validates("title")
    def validate_title_not_blank(self, value: str, **kwargs) -> None:
        if not value.strip():
            raise ValidationError("Title must not be blank.")


class ListBooksQuerySchema(ListQuerySchema):
    """GET /books?page&limit&q&tags&sort — tags is a comma-separated list."""

    tags = fields.Str(load_default=None)
