"""
middleware/auth_middleware.py — Bearer-token authentication and role gates.

    @require_auth               any signed-in user
    @require_role(*roles)       signed-in user whose role is in `roles`

Both leave the caller on flask.g as `g.user_id` (int) and `g.role` (str).
Only the role is checked here. Ownership rules, such as a student reading
another student's loan, belong to the services.

Failures surface as AppError:
  TOKEN_MISSING  401   no Authorization header at all
  TOKEN_INVALID  401   not "Bearer <jwt>", bad signature, bad sub/role claim
  TOKEN_EXPIRED  401   signature fine, exp in the past
  FORBIDDEN      403   role not allowed
"""

from __future__ import annotations

import functools
from typing import Callable

import jwt
from flask import current_app, g, request

from shelfwise.app.capabilities import Role, authorize
from shelfwise.app.errors import AppError, ErrorCode

_KNOWN_ROLES = frozenset(r.value for r in Role)


def require_auth(f: Callable) -> Callable:
    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        _load_caller()
        return f(*args, **kwargs)

    return wrapper


def require_role(*roles: Role | str) -> Callable:
    """
    Decorator factory for staff-only routes:

        @books_bp.route("", methods=["POST"])
        @require_role(Role.LIBRARIAN, Role.ADMIN)
        def create_book(): ...
    """
    def decorator(f: Callable) -> Callable:
        @functools.wraps(f)
        def wrapper(*args, **kwargs):
            _load_caller()
            if not authorize(g.role, roles):
                raise AppError(ErrorCode.FORBIDDEN, "Your role does not allow this action.", 403)
            return f(*args, **kwargs)

        return wrapper

    return decorator


def _unauthenticated(code: str, message: str) -> AppError:
    return AppError(code, message, 401)


def _bearer_token() -> str:
    header = request.headers.get("Authorization", "").strip()
    if not header:
        raise _unauthenticated(ErrorCode.TOKEN_MISSING, "Sign in first: no access token was sent.")

    scheme, _, token = header.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token or " " in token:
        raise _unauthenticated(
            ErrorCode.TOKEN_INVALID, 'Expected an "Authorization: Bearer <token>" header.'
        )
    return token


def _load_caller() -> None:
    """Verifies the access token and stores its subject and role on flask.g."""
    config = current_app.config
    try:
        claims = jwt.decode(
            _bearer_token(),
            config["JWT_SECRET_KEY"],
            algorithms=[config.get("JWT_ALGORITHM", "HS256")],
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise _unauthenticated(
            ErrorCode.TOKEN_EXPIRED, "Access token expired; call POST /auth/refresh."
        )
    except jwt.InvalidTokenError:
        raise _unauthenticated(ErrorCode.TOKEN_INVALID, "Access token could not be verified.")

    sub, role = claims.get("sub"), claims.get("role")
    if not (isinstance(sub, str) and sub.isdigit()) or role not in _KNOWN_ROLES:
        raise _unauthenticated(ErrorCode.TOKEN_INVALID, "Access token claims are malformed.")

    g.user_id = int(sub)
    g.role = role
