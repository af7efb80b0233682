"""
routes/books.py — Catalogue route handlers.

Endpoints (url_prefix=/api/v1/books):
  GET    /books        → 200  list (any authenticated user)
  POST   /books        → 201  create (librarian, admin)
  GET    /books/:id    → 200
  PUT    /books/:id    → 200  partial update (librarian, admin)
  DELETE /books/:id    → 200  (librarian, admin)
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from shelfwise.app.capabilities import Role
from shelfwise.app.extensions import db
from shelfwise.app.middleware.auth_middleware import require_auth, require_role
from shelfwise.app.pagination import list_response, resolve_page
from shelfwise.app.schemas.book_schema import (
    CreateBookSchema,
    ListBooksQuerySchema,
    UpdateBookSchema,
)
from shelfwise.app.services import book_service

books_bp = Blueprint("books", __name__)


@books_bp.route("", methods=["GET"])
@require_auth
def list_books():
    """GET /books?page&limit&q&tags&sort"""
    query = ListBooksQuerySchema().load(request.args)
    page = resolve_page(query["page"], query["limit"])
    items, total = book_service.list_books(
        session=db.session,
        page=page,
        q=query["q"],
        tags=book_service.parse_tags(query["tags"]),
        sort=query["sort"],
    )
    return list_response(items, total, page)


@books_bp.route("", methods=["POST"])
@require_role(Role.LIBRARIAN, Role.ADMIN)
def create_book():
    """POST /books — Add a title; all copies start available."""
    data = CreateBookSchema().load(request.get_json(force=True) or {})
    result = book_service.create_book(
        data=data,
        created_by=g.user_id,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"book": result}), 201


@books_bp.route("/<int:book_id>", methods=["GET"])
@require_auth
def get_book(book_id: int):
    """GET /books/:id"""
    result = book_service.get_book(book_id=book_id, session=db.session)
    return jsonify({"book": result}), 200


@books_bp.route("/<int:book_id>", methods=["PUT"])
@require_role(Role.LIBRARIAN, Role.ADMIN)
def update_book(book_id: int):
    """PUT /books/:id — Only the fields present in the body change."""
    data = UpdateBookSchema().load(request.get_json(force=True) or {})
    result = book_service.update_book(
        book_id=book_id,
        changes=data,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"book": result}), 200


@books_bp.route("/<int:book_id>", methods=["DELETE"])
@require_role(Role.LIBRARIAN, Role.ADMIN)
def delete_book(book_id: int):
    """DELETE /books/:id — Refused while any copy is on loan."""
    book_service.delete_book(book_id=book_id, session=db.session)
    db.session.commit()
    return jsonify({"message": "Book deleted."}), 200
