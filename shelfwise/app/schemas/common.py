"""
schemas/common.py — Query-string schema base for list endpoints.

Query schemas ignore unknown parameters (EXCLUDE); body schemas keep
marshmallow's default RAISE.
"""

from __future__ import annotations

from marshmallow import EXCLUDE, Schema, fields, validate


class ListQuerySchema(Schema):

    class Meta:
        unknown = EXCLUDE

    page = fields.Int(load_default=1, validate=validate.Range(min=1))
    # Values above PAGINATION_MAX_LIMIT are capped by the route, not rejected.
    limit = fields.Int(load_default=None, validate=validate.Range(min=1))
    q = fields.Str(load_default=None)
    sort = fields.Str(load_default=None)
