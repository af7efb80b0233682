"""
routes/borrowings.py — Borrowing ledger route handlers.

Endpoints (url_prefix=/api/v1/borrowings):
  POST   /borrowings              → 201  issue (librarian, admin)
  POST   /borrowings/:id/return   → 200  return (librarian, admin)
  GET    /borrowings              → 200  list; students see only their own
  GET    /borrowings/:id          → 200  borrower or staff
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from shelfwise.app.capabilities import Role
from shelfwise.app.extensions import db
from shelfwise.app.middleware.auth_middleware import require_auth, require_role
from shelfwise.app.pagination import list_response, resolve_page
from shelfwise.app.schemas.borrowing_schema import (
    IssueBorrowingSchema,
    ListBorrowingsQuerySchema,
)
from shelfwise.app.services import borrowing_service

borrowings_bp = Blueprint("borrowings", __name__)


@borrowings_bp.route("", methods=["POST"])
@require_role(Role.LIBRARIAN, Role.ADMIN)
def issue():
    """POST /borrowings {bookId, userId} — Lend one copy."""
    data = IssueBorrowingSchema().load(request.get_json(force=True) or {})
    borrowing = borrowing_service.issue_book(
        book_id=data["book_id"],
        user_id=data["user_id"],
        session=db.session,
        loan_period_days=current_app.config["LOAN_PERIOD_DAYS"],
    )
    db.session.commit()
    return jsonify({"borrowing": borrowing_service.build_borrowing_dict(borrowing)}), 201


@borrowings_bp.route("/<int:borrowing_id>/return", methods=["POST"])
@require_role(Role.LIBRARIAN, Role.ADMIN)
def return_borrowing(borrowing_id: int):
    """POST /borrowings/:id/return — Mark returned; the copy becomes available."""
    borrowing = borrowing_service.return_book(
        borrowing_id=borrowing_id,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"borrowing": borrowing_service.build_borrowing_dict(borrowing)}), 200


@borrowings_bp.route("", methods=["GET"])
@require_auth
def list_borrowings():
    """GET /borrowings?page&limit&q&status&userId&bookId&sort"""
    query = ListBorrowingsQuerySchema().load(request.args)
    page = resolve_page(query["page"], query["limit"])
    items, total = borrowing_service.list_borrowings(
        caller_id=g.user_id,
        caller_role=g.role,
        session=db.session,
        page=page,
        status=query["status"],
        user_id=query["user_id"],
        book_id=query["book_id"],
        q=query["q"],
        sort=query["sort"],
    )
    return list_response(items, total, page)


@borrowings_bp.route("/<int:borrowing_id>", methods=["GET"])
@require_auth
def get_borrowing(borrowing_id: int):
    """GET /borrowings/:id"""
    borrowing = borrowing_service.get_borrowing(
        borrowing_id=borrowing_id,
        caller_id=g.user_id,
        caller_role=g.role,
        session=db.session,
    )
    return jsonify({"borrowing": borrowing_service.build_borrowing_dict(borrowing)}), 200
