"""schemas/borrowing_schema.py — Marshmallow schemas for /borrowings."""

from __future__ import annotations

from marshmallow import Schema, fields, validate

from shelfwise.app.models.borrowing import LoanStatus
from shelfwise.app.schemas.common import ListQuerySchema


class IssueBorrowingSchema(Schema):
    """POST /borrowings — a librarian issues bookId to userId."""

    book_id = fields.Int(data_key="bookId", required=True, strict=False)
    user_id = fields.Int(data_key="userId", required=True, strict=False)


class ListBorrowingsQuerySchema(ListQuerySchema):
    """
    GET /borrowings

    Students are always scoped to their own loans and userId is ignored for
    them. bookId, q and status narrow that scope further.
    """

    status = fields.Str(
        load_default=None,
        validate=validate.OneOf([s.value for s in LoanStatus]),
    )
    user_id = fields.Int(data_key="userId", load_default=None)
    book_id = fields.Int(data_key="bookId", load_default=None)
