"""
pagination.py — Shared list-endpoint plumbing.

  resolve_page()     page/limit query values → PageRequest (limit capped)
  parse_sort()       "-field" | "field:desc" | "field[:asc]" → ORDER BY clause
  contains_pattern() escaped "%q%" for ILIKE substring search
  paginate()         runs COUNT + LIMIT/OFFSET on a select()
  build_meta()       the {"total", "page", ...} block of every list response
  list_response()    {"items", "meta"} body + X-Total-Count + Link headers

Services use parse_sort(), contains_pattern() and paginate() (no Flask);
routes use resolve_page() and list_response().
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Mapping, Sequence
from urllib.parse import urlencode

from flask import current_app, jsonify, request
from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from shelfwise.app.errors import AppError, ErrorCode


@dataclass(frozen=True)
class PageRequest:
    page: int = 1
    limit: int = 20

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def resolve_page(page: int | None, limit: int | None) -> PageRequest:
    """Applies the configured default limit and caps it at PAGINATION_MAX_LIMIT."""
    config = current_app.config
    limit = limit or config.get("PAGINATION_DEFAULT_LIMIT", 20)
    return PageRequest(
        page=page or 1,
        limit=min(limit, config.get("PAGINATION_MAX_LIMIT", 100)),
    )


def parse_sort(sort: str | None, columns: Mapping[str, Any], default: str):
    """
    Translates a sort expression into an ORDER BY clause.

    Accepted forms: "-createdAt", "createdAt:desc", "createdAt:asc",
    "createdAt". `columns` whitelists the public field names.

    Raises:
      AppError(INVALID_SORT, 400) — field not in `columns` or bad direction.
    """
    expression = (sort or "").strip() or default

    descending = False
    if expression.startswith("-"):
        field_name = expression[1:]
        descending = True
    elif ":" in expression:
        field_name, direction = expression.split(":", 1)
        direction = direction.strip().lower()
        if direction not in ("asc", "desc"):
            raise AppError(
                ErrorCode.INVALID_SORT,
                f"Sort direction must be 'asc' or 'desc', got '{direction}'.",
                400,
                field="sort",
            )
        descending = direction == "desc"
    else:
        field_name = expression

    column = columns.get(field_name.strip())
    if column is None:
        raise AppError(
            ErrorCode.INVALID_SORT,
            f"Cannot sort by '{field_name}'. Allowed: {', '.join(sorted(columns))}.",
            400,
            field="sort",
        )
    return column.desc() if descending else column.asc()


def contains_pattern(q: str) -> str:
    """ILIKE pattern for a substring match; % and _ in `q` match literally."""
    escaped = (
        q.strip()
        .replace("\\", "\\\\")
        .replace("%", "\\%")
        .replace("_", "\\_")
    )
    return f"%{escaped}%"


def paginate(stmt: Select, page: PageRequest, session: Session) -> tuple[list, int]:
    """Returns (rows for the requested page, total row count)."""
    count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
    total = session.execute(count_stmt).scalar_one()
    rows = session.execute(stmt.limit(page.limit).offset(page.offset)).scalars().all()
    return list(rows), int(total)


def build_meta(total: int, page: PageRequest) -> dict:
    total_pages = max(math.ceil(total / page.limit), 1)
    has_next = page.page < total_pages
    has_prev = page.page > 1
    return {
        "total": total,
        "page": page.page,
        "limit": page.limit,
        "totalPages": total_pages,
        "hasNext": has_next,
        "hasPrev": has_prev,
        "nextPage": page.page + 1 if has_next else None,
        "prevPage": min(page.page - 1, total_pages) if has_prev else None,
    }


def build_link_header(base_url: str, query: Mapping[str, str], meta: dict) -> str:
    """RFC 5988 Link header: prev (if any), first, next (if any), last."""

    def link(page_number: int) -> str:
        params = dict(query)
        params["page"] = str(page_number)
        params["limit"] = str(meta["limit"])
        return f"{base_url}?{urlencode(params)}"

    links = []
    if meta["hasPrev"]:
        links.append(f'<{link(meta["prevPage"])}>; rel="prev"')
    links.append(f'<{link(1)}>; rel="first"')
    if meta["hasNext"]:
        links.append(f'<{link(meta["nextPage"])}>; rel="next"')
    links.append(f'<{link(meta["totalPages"])}>; rel="last"')
    return ", ".join(links)


def list_response(items: Sequence[dict], total: int, page: PageRequest):
    """Builds the list envelope with pagination headers for the current request."""
    meta = build_meta(total, page)
    response = jsonify({"items": list(items), "meta": meta})
    response.headers["X-Total-Count"] = str(total)
    response.headers["Link"] = build_link_header(
        request.base_url,
        request.args.to_dict(flat=True),
        meta,
    )
    return response
