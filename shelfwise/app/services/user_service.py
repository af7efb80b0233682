"""
services/user_service.py — Profiles and user administration.

Authorization rules (route decorators enforce roles; this layer enforces
the rest):
  - Any authenticated user reads and edits their own profile.
  - Admins create students and librarians and delete users (never themselves).
  - A user with an outstanding loan cannot be deleted (USER_HAS_ACTIVE_LOANS).

Layer rules:
  - No Flask imports except through auth_service.hash_password.
  - Commits are the route's responsibility; only flush here.
"""

from __future__ import annotations

import logging

from sqlalchemy import exists, or_, select
from sqlalchemy.orm import Session

from shelfwise.app.capabilities import Role, describe_role
from shelfwise.app.clock import isoformat
from shelfwise.app.errors import AppError, ErrorCode
from shelfwise.app.models.borrowing import Borrowing
from shelfwise.app.models.user import User
from shelfwise.app.pagination import PageRequest, contains_pattern, paginate, parse_sort
from shelfwise.app.services.auth_service import hash_password, normalize_email

logger = logging.getLogger(__name__)

SORT_COLUMNS = {
    "fullname": User.fullname,
    "email": User.email,
    "createdAt": User.created_at,
    "role": User.role,
}
DEFAULT_SORT = "-createdAt"


def build_user_dict(user: User) -> dict:
    """Public view of a user. Never includes password_hash."""
    return {
        "id": user.id,
        "fullname": user.fullname,
        "email": user.email,
        "role": user.role.value,
        "mobileNumber": user.mobile_number,
        "collegeUserId": user.college_user_id,
        "createdAt": isoformat(user.created_at),
    }


def _blank_to_none(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


# ── Private helpers ────────────────────────────────────────────────────────

def _get_user_or_404(user_id: int, session: Session) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise AppError(
            ErrorCode.USER_NOT_FOUND,
            f"User {user_id} not found.",
            404,
        )
    return user


def check_identity_conflicts(
        session: Session,
        email: str | None = None,
        mobile_number: str | None = None,
        college_user_id: str | None = None,
        exclude_user_id: int | None = None,
) -> None:
    """
    Raises the specific 409 for the first identity field already taken by
    another user. Checked in order: email, mobile number, college id.
    """
    checks = (
        (User.email, email, ErrorCode.DUPLICATE_EMAIL, "email",
         "Email already in use."),
        (User.mobile_number, mobile_number, ErrorCode.DUPLICATE_MOBILE, "mobileNumber",
         "Mobile number already in use."),
        (User.college_user_id, college_user_id, ErrorCode.DUPLICATE_COLLEGE_ID, "collegeUserId",
         "College ID already in use."),
    )
    for column, value, code, field, message in checks:
        if value is None:
            continue
        stmt = select(User.id).where(column == value)
        if exclude_user_id is not None:
            stmt = stmt.where(User.id != exclude_user_id)
        if session.execute(stmt).first() is not None:
            raise AppError(code, message, 409, field=field)


def _has_active_loans(user_id: int, session: Session) -> bool:
    return bool(session.execute(
        select(exists().where(
            Borrowing.user_id == user_id,
            Borrowing.returned_at.is_(None),
        ))
    ).scalar())


# ── Profile ────────────────────────────────────────────────────────────────

def get_profile(user_id: int, session: Session) -> dict:
    """The caller's own user dict plus capabilities, home and nav."""
    user = _get_user_or_404(user_id, session)
    profile = build_user_dict(user)
    profile.update(describe_role(user.role))
    return profile


def update_profile(user_id: int, changes: dict, session: Session) -> dict:
    """
    Applies a partial profile update. An empty string clears mobileNumber
    or collegeUserId.

    Raises:
      AppError(DUPLICATE_EMAIL | DUPLICATE_MOBILE | DUPLICATE_COLLEGE_ID, 409)
    """
    user = _get_user_or_404(user_id, session)

    email = normalize_email(changes["email"]) if "email" in changes else None
    mobile = _blank_to_none(changes["mobile_number"]) if "mobile_number" in changes else None
    college_id = _blank_to_none(changes["college_user_id"]) if "college_user_id" in changes else None

    check_identity_conflicts(
        session,
        email=email,
        mobile_number=mobile,
        college_user_id=college_id,
        exclude_user_id=user.id,
    )

    if "fullname" in changes:
        user.fullname = changes["fullname"].strip()
    if email is not None:
        user.email = email
    if "mobile_number" in changes:
        user.mobile_number = mobile
    if "college_user_id" in changes:
        user.college_user_id = college_id

    session.flush()
    return get_profile(user.id, session)


# ── Administration ─────────────────────────────────────────────────────────

def create_user(data: dict, session: Session) -> dict:
    """
    Creates a student or librarian account on behalf of an admin.

    Raises:
      AppError(DUPLICATE_EMAIL | DUPLICATE_MOBILE | DUPLICATE_COLLEGE_ID, 409)
    """
    email = normalize_email(data["email"])
    mobile = _blank_to_none(data.get("mobile_number"))
    college_id = _blank_to_none(data.get("college_user_id"))

    check_identity_conflicts(
        session,
        email=email,
        mobile_number=mobile,
        college_user_id=college_id,
    )

    user = User(
        fullname=data["fullname"].strip(),
        email=email,
        password_hash=hash_password(data["password"]),
        role=Role(data["role"]),
        mobile_number=mobile,
        college_user_id=college_id,
    )
    session.add(user)
    session.flush()

    logger.info("Created %s user_id=%s", user.role.value, user.id)
    return build_user_dict(user)


def list_users(
        session: Session,
        page: PageRequest,
        q: str | None = None,
        role: str | None = None,
        sort: str | None = None,
) -> tuple[list[dict], int]:
    """
    Lists users, filtered by role and by a case-insensitive substring of
    fullname, email or college id.

    Returns: (user dicts for the page, total matching)
    """
    stmt = select(User)

    if role:
        stmt = stmt.where(User.role == Role(role))

    if q and q.strip():
        pattern = contains_pattern(q)
        stmt = stmt.where(or_(
            User.fullname.ilike(pattern, escape="\\"),
            User.email.ilike(pattern, escape="\\"),
            User.college_user_id.ilike(pattern, escape="\\"),
        ))

    stmt = stmt.order_by(parse_sort(sort, SORT_COLUMNS, DEFAULT_SORT), User.id.asc())
    users, total = paginate(stmt, page, session)
    return [build_user_dict(u) for u in users], total


def get_user(user_id: int, session: Session) -> dict:
    return build_user_dict(_get_user_or_404(user_id, session))


def delete_user(target_user_id: int, caller_id: int, session: Session) -> None:
    """
    Deletes a user along with their sessions and returned loan history.

    Raises:
      AppError(CANNOT_DELETE_SELF, 400)
      AppError(USER_NOT_FOUND, 404)
      AppError(USER_HAS_ACTIVE_LOANS, 409)
    """
    if target_user_id == caller_id:
        raise AppError(
            ErrorCode.CANNOT_DELETE_SELF,
            "You cannot delete your own account.",
            400,
        )

    user = _get_user_or_404(target_user_id, session)

    if _has_active_loans(user.id, session):
        raise AppError(
            ErrorCode.USER_HAS_ACTIVE_LOANS,
            "User has books that are not yet returned.",
            409,
        )

    session.delete(user)
    session.flush()
    logger.info("Deleted user_id=%s", target_user_id)
