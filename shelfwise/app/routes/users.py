"""
routes/users.py — User administration route handlers.

Endpoints (url_prefix=/api/v1/users):
  POST   /users        → 201  create student or librarian (admin)
  GET    /users        → 200  list (admin, librarian)
  GET    /users/:id    → 200  (admin, librarian)
  DELETE /users/:id    → 200  (admin; never self)
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from shelfwise.app.capabilities import Role
from shelfwise.app.extensions import db
from shelfwise.app.middleware.auth_middleware import require_role
from shelfwise.app.pagination import list_response, resolve_page
from shelfwise.app.schemas.user_schema import CreateUserSchema, ListUsersQuerySchema
from shelfwise.app.services import user_service

users_bp = Blueprint("users", __name__)


@users_bp.route("", methods=["POST"])
@require_role(Role.ADMIN)
def create_user():
    """POST /users — Admin creates a student or librarian account."""
    data = CreateUserSchema().load(request.get_json(force=True) or {})
    result = user_service.create_user(data=data, session=db.session)
    db.session.commit()
    return jsonify({"user": result}), 201


@users_bp.route("", methods=["GET"])
@require_role(Role.ADMIN, Role.LIBRARIAN)
def list_users():
    """GET /users?page&limit&q&role&sort"""
    query = ListUsersQuerySchema().load(request.args)
    page = resolve_page(query["page"], query["limit"])
    items, total = user_service.list_users(
        session=db.session,
        page=page,
        q=query["q"],
        role=query["role"],
        sort=query["sort"],
    )
    return list_response(items, total, page)


@users_bp.route("/<int:user_id>", methods=["GET"])
@require_role(Role.ADMIN, Role.LIBRARIAN)
def get_user(user_id: int):
    """GET /users/:id"""
    result = user_service.get_user(user_id=user_id, session=db.session)
    return jsonify({"user": result}), 200


@users_bp.route("/<int:user_id>", methods=["DELETE"])
@require_role(Role.ADMIN)
def delete_user(user_id: int):
    """DELETE /users/:id — Refused for the caller's own account or open loans."""
    user_service.delete_user(
        target_user_id=user_id,
        caller_id=g.user_id,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"message": "User deleted."}), 200
