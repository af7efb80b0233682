"""
services/auth_service.py — Session lifecycle and credential logic.

Responsibilities:
  - Password hashing (bcrypt) and verification
  - JWT access token creation (HS256)
  - Refresh token lifecycle: issue, rotate, revoke, bulk revoke, reuse detection
  - Password reset and password change

Layer rules:
  - No imports from routes or schemas
  - No use of flask.request, flask.g, or HTTP status codes in control flow
  - current_app.config is read for secrets and TTLs only; this service is
    integration-tested (with an app context) apart from its pure helpers.

Token design:
  - Access token: JWT, HS256, 15 min TTL, sub = user_id (str), role claim.
  - Refresh token: 48 random bytes as hex. Only its SHA-256 is stored. The
    raw value goes to the client once, in the refresh cookie.
  - Every successful refresh rotates: the presented row is revoked, a new row
    is created, and the old row records the new row's hash. Presenting a
    rotated-out token again revokes every descendant in that chain.

Password storage:
  - bcrypt, cost from BCRYPT_LOG_ROUNDS. Raw passwords are never stored or logged.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta

import bcrypt
import jwt
from flask import current_app
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from shelfwise.app.clock import utcnow
from shelfwise.app.errors import AppError, ErrorCode
from shelfwise.app.models.password_reset_token import PasswordResetToken
from shelfwise.app.models.refresh_token import RefreshToken
from shelfwise.app.models.user import User

logger = logging.getLogger(__name__)

_dummy_hashes: dict[int, bytes] = {}


# ── Pure helpers ───────────────────────────────────────────────────────────

def hash_secret(raw_secret: str) -> str:
    """SHA-256 hex digest. Used for refresh tokens, reset tokens and OTP codes."""
    return hashlib.sha256(raw_secret.encode("utf-8")).hexdigest()


def secrets_match(raw_secret: str, stored_hash: str) -> bool:
    """Constant-time comparison of a candidate secret against a stored hash."""
    return hmac.compare_digest(hash_secret(raw_secret), stored_hash)


def normalize_email(email: str) -> str:
    return str(email).strip().lower()


def hash_password(password: str) -> str:
    rounds = current_app.config.get("BCRYPT_LOG_ROUNDS", 12)
    return bcrypt.hashpw(
        password.encode("utf-8"),
        bcrypt.gensalt(rounds=rounds),
    ).decode("utf-8")


def check_password(password: str, password_hash: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))


def _burn_password_check(password: str) -> None:
    """
    Spends one bcrypt comparison against a throwaway hash so an unknown
    email costs the same as a wrong password.
    """
    rounds = current_app.config.get("BCRYPT_LOG_ROUNDS", 12)
    dummy = _dummy_hashes.get(rounds)
    if dummy is None:
        dummy = bcrypt.hashpw(secrets.token_hex(16).encode("ascii"), bcrypt.gensalt(rounds=rounds))
        _dummy_hashes[rounds] = dummy
    bcrypt.checkpw(password.encode("utf-8"), dummy)


def create_access_token(user: User) -> str:
    """
    Creates a signed JWT access token.
    Payload: sub (user_id as str), role, iat, exp, jti.
    """
    now = utcnow()
    payload = {
        "sub": str(user.id),
        "role": user.role.value,
        "iat": now,
        "exp": now + current_app.config["JWT_ACCESS_TOKEN_EXPIRES"],
        # Unique even when two tokens are issued in the same second.
        "jti": secrets.token_hex(8),
    }
    return jwt.encode(
        payload,
        current_app.config["JWT_SECRET_KEY"],
        algorithm=current_app.config.get("JWT_ALGORITHM", "HS256"),
    )


def _refresh_ttl() -> timedelta:
    return current_app.config["JWT_REFRESH_TOKEN_EXPIRES"]


def _issue_refresh_token(user_id: int, session: Session) -> tuple[str, RefreshToken]:
    """
    Creates a refresh token row and returns (raw secret, row).
    The raw value is never stored.
    """
    raw_token = secrets.token_hex(48)
    record = RefreshToken(
        user_id=user_id,
        token_hash=hash_secret(raw_token),
        expires_at=utcnow() + _refresh_ttl(),
    )
    session.add(record)
    # flush so the row exists before we return; commit is the route's job
    session.flush()
    return raw_token, record


def issue_session(user: User, session: Session) -> dict:
    """
    Issues an access token and a fresh refresh token for `user`.

    Returns: {"access_token": ..., "refresh_token": ..., "user": User}
    The route puts refresh_token in the cookie and never in the body.
    """
    raw_refresh, _ = _issue_refresh_token(user.id, session)
    return {
        "access_token": create_access_token(user),
        "refresh_token": raw_refresh,
        "user": user,
    }


def _invalid_refresh_token() -> AppError:
    return AppError(
        ErrorCode.REFRESH_TOKEN_INVALID,
        "Invalid or expired refresh token.",
        401,
    )


# ── Public service functions ───────────────────────────────────────────────

def login_user(email: str, password: str, session: Session) -> dict:
    """
    Validates credentials and issues a new session.

    Raises:
      AppError(INVALID_CREDENTIALS, 401) — email not found or password wrong.
      Same error and the same bcrypt cost for both, to avoid enumeration.
    """
    user = session.execute(
        select(User).where(User.email == normalize_email(email))
    ).scalar_one_or_none()

    if user is None:
        _burn_password_check(password)
        valid = False
    else:
        valid = check_password(password, user.password_hash)

    if not valid:
        raise AppError(
            ErrorCode.INVALID_CREDENTIALS,
            "Invalid credentials.",
            401,
        )

    return issue_session(user, session)


def refresh_session(raw_refresh_token: str | None, session: Session) -> dict:
    """
    Exchanges a refresh token for a new access token and rotates it.

    Raises:
      AppError(REFRESH_TOKEN_MISSING, 401) — no token presented.
      AppError(REFRESH_TOKEN_INVALID, 401) — unknown, revoked, expired, or
        its user no longer exists. A revoked token with a successor is a
        replay: the whole chain after it is revoked before raising.

    Returns: {"access_token": ..., "refresh_token": <new raw secret>}
    """
    if not raw_refresh_token:
        raise AppError(
            ErrorCode.REFRESH_TOKEN_MISSING,
            "Missing refresh token.",
            401,
        )

    now = utcnow()
    record = session.execute(
        select(RefreshToken).where(RefreshToken.token_hash == hash_secret(raw_refresh_token))
    ).scalar_one_or_none()

    if record is None:
        raise _invalid_refresh_token()

    if record.revoked_at is not None and record.replaced_by_token_hash is not None:
        revoked = _revoke_descendants(record, session, now)
        logger.warning(
            "Refresh token reuse detected for user_id=%s; revoked %d descendant token(s).",
            record.user_id,
            revoked,
        )
        # Persist the chain revocation even though the request fails.
        session.commit()
        raise _invalid_refresh_token()

    if not record.is_active(now):
        raise _invalid_refresh_token()

    user = session.get(User, record.user_id)
    if user is None:
        raise _invalid_refresh_token()

    # Conditional revoke: a concurrent rotation of the same token loses here.
    result = session.execute(
        update(RefreshToken)
        .where(RefreshToken.id == record.id, RefreshToken.revoked_at.is_(None))
        .values(revoked_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise _invalid_refresh_token()

    raw_new, new_record = _issue_refresh_token(user.id, session)
    record.revoked_at = now
    record.replaced_by_token_hash = new_record.token_hash
    session.flush()

    return {
        "access_token": create_access_token(user),
        "refresh_token": raw_new,
    }


def _revoke_descendants(record: RefreshToken, session: Session, now: datetime) -> int:
    """Follows replaced_by_token_hash forward, revoking every active successor."""
    revoked = 0
    seen: set[str] = set()
    next_hash = record.replaced_by_token_hash

    while next_hash and next_hash not in seen:
        seen.add(next_hash)
        successor = session.execute(
            select(RefreshToken).where(RefreshToken.token_hash == next_hash)
        ).scalar_one_or_none()
        if successor is None:
            break
        if successor.revoked_at is None:
            successor.revoked_at = now
            revoked += 1
        next_hash = successor.replaced_by_token_hash

    session.flush()
    return revoked


def logout_session(raw_refresh_token: str | None, session: Session) -> None:
    """
    Revokes the presented refresh token. Idempotent: a missing, unknown or
    already-revoked token is not an error.
    """
    if not raw_refresh_token:
        return

    session.execute(
        update(RefreshToken)
        .where(
            RefreshToken.token_hash == hash_secret(raw_refresh_token),
            RefreshToken.revoked_at.is_(None),
        )
        .values(revoked_at=utcnow())
        .execution_options(synchronize_session=False)
    )


def revoke_all_sessions(user_id: int, session: Session) -> int:
    """Bulk-revokes every active refresh token for a user. Returns the count."""
    result = session.execute(
        update(RefreshToken)
        .where(
            RefreshToken.user_id == user_id,
            RefreshToken.revoked_at.is_(None),
        )
        .values(revoked_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    logger.info("Revoked %d session(s) for user_id=%s", result.rowcount, user_id)
    return result.rowcount


def request_password_reset(email: str, session: Session, mailer) -> None:
    """
    Emails a single-use reset link if the email belongs to a user.

    Returns nothing either way: the route answers with one uniform message so
    callers cannot learn which emails are registered.
    """
    user = session.execute(
        select(User).where(User.email == normalize_email(email))
    ).scalar_one_or_none()
    if user is None:
        return

    now = utcnow()
    session.execute(
        update(PasswordResetToken)
        .where(
            PasswordResetToken.user_id == user.id,
            PasswordResetToken.used_at.is_(None),
        )
        .values(used_at=now)
        .execution_options(synchronize_session=False)
    )

    raw_token = secrets.token_hex(32)
    hours = current_app.config.get("RESET_TOKEN_EXPIRES_HOURS", 1)
    session.add(PasswordResetToken(
        user_id=user.id,
        token_hash=hash_secret(raw_token),
        expires_at=now + timedelta(hours=hours),
    ))
    session.flush()

    reset_url = f"{current_app.config['FRONTEND_URL']}/reset-password?token={raw_token}"
    mailer.send(
        to=user.email,
        subject="Password reset",
        text=f"Use this link to reset your password: {reset_url}",
        html=f'<p>Use this link to reset your password: <a href="{reset_url}">{reset_url}</a></p>',
    )


def _invalid_reset_token() -> AppError:
    return AppError(
        ErrorCode.INVALID_RESET_TOKEN,
        "Invalid or expired token.",
        400,
        field="token",
    )


def reset_password(raw_token: str, new_password: str, session: Session) -> None:
    """
    Consumes a reset token, sets the new password and revokes every session.

    Raises:
      AppError(INVALID_RESET_TOKEN, 400) — unknown, used or expired token.
    """
    record = session.execute(
        select(PasswordResetToken).where(PasswordResetToken.token_hash == hash_secret(raw_token))
    ).scalar_one_or_none()

    now = utcnow()
    if record is None or not record.is_active(now):
        raise _invalid_reset_token()

    user = session.get(User, record.user_id)
    if user is None:
        raise _invalid_reset_token()

    # Conditional consume: of two concurrent resets with one token, one wins.
    result = session.execute(
        update(PasswordResetToken)
        .where(
            PasswordResetToken.id == record.id,
            PasswordResetToken.used_at.is_(None),
            PasswordResetToken.expires_at > now,
        )
        .values(used_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise _invalid_reset_token()

    record.used_at = now
    user.password_hash = hash_password(new_password)
    session.flush()
    revoke_all_sessions(user.id, session)
    logger.info("Password reset completed for user_id=%s", user.id)


def change_password(
        user_id: int,
        old_password: str,
        new_password: str,
        session: Session,
) -> None:
    """
    Changes the caller's password and revokes all of their sessions.

    Raises:
      AppError(USER_NOT_FOUND, 404)
      AppError(INVALID_CURRENT_PASSWORD, 400)
    """
    user = session.get(User, user_id)
    if user is None:
        raise AppError(ErrorCode.USER_NOT_FOUND, f"User {user_id} not found.", 404)

    if not check_password(old_password, user.password_hash):
        raise AppError(
            ErrorCode.INVALID_CURRENT_PASSWORD,
            "Invalid current password.",
            400,
            field="oldPassword",
        )

    user.password_hash = hash_password(new_password)
    session.flush()
    revoke_all_sessions(user.id, session)
    logger.info("Password changed for user_id=%s", user.id)
