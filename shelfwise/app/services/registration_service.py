"""
services/registration_service.py — Self-registration with an emailed code.

Flow:
  request_registration  validate identity is free, store a pending record
                        (profile + bcrypt hash + SHA-256 of a 6-digit code),
                        email the code.
  resend_registration   re-issue a code for the latest pending record.
  verify_registration   check the code; on success create a student and
                        return a fresh session.

Pending record rules:
  - Only the latest unused record per email counts; issuing a code marks
    older unused records used.
  - Every verification attempt is counted, including malformed codes.
  - A record stops accepting codes once expired or attempts >= max_attempts.
    Resend still works on an attempt-exhausted record until it expires or
    REGISTRATION_OTP_MAX_RESENDS is reached.

Commit policy: a failed verification commits the attempt counter itself
before raising. Everything else only flushes.
"""

from __future__ import annotations

import logging
import secrets
from datetime import timedelta

from flask import current_app
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from shelfwise.app.capabilities import Role
from shelfwise.app.clock import utcnow
from shelfwise.app.errors import AppError, ErrorCode
from shelfwise.app.models.registration_otp import RegistrationOTP
from shelfwise.app.models.user import User
from shelfwise.app.services.auth_service import (
    hash_password,
    hash_secret,
    issue_session,
    normalize_email,
    secrets_match,
)
from shelfwise.app.services.user_service import check_identity_conflicts

logger = logging.getLogger(__name__)

OTP_SUBJECT = "Your registration verification code"


# ── Private helpers ────────────────────────────────────────────────────────

def generate_code() -> str:
    """Six decimal digits, never with a leading zero."""
    return str(secrets.randbelow(900000) + 100000)


def _blank_to_none(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _latest_unused(email: str, session: Session) -> RegistrationOTP | None:
    return session.execute(
        select(RegistrationOTP)
        .where(
            RegistrationOTP.email == email,
            RegistrationOTP.used_at.is_(None),
        )
        .order_by(RegistrationOTP.created_at.desc(), RegistrationOTP.id.desc())
        .limit(1)
    ).scalar_one_or_none()


def _invalidate_unused(email: str, session: Session) -> None:
    session.execute(
        update(RegistrationOTP)
        .where(
            RegistrationOTP.email == email,
            RegistrationOTP.used_at.is_(None),
        )
        .values(used_at=utcnow())
        .execution_options(synchronize_session=False)
    )


def _send_code(email: str, code: str, mailer) -> None:
    minutes = current_app.config["REGISTRATION_OTP_EXPIRES_MINUTES"]
    mailer.send(
        to=email,
        subject=OTP_SUBJECT,
        text=f"Your verification code is: {code}\n\nIt expires in {minutes} minutes.",
        html=(
            f"<p>Your verification code is: <strong>{code}</strong></p>"
            f"<p>It expires in {minutes} minutes.</p>"
        ),
    )


def _store_pending(
        session: Session,
        email: str,
        fullname: str,
        password_hash: str,
        mobile_number: str | None,
        college_user_id: str | None,
        resends: int = 0,
) -> str:
    """Invalidates older codes, stores a new pending record, returns the raw code."""
    config = current_app.config
    code = generate_code()

    _invalidate_unused(email, session)
    session.add(RegistrationOTP(
        email=email,
        fullname=fullname,
        password_hash=password_hash,
        mobile_number=mobile_number,
        college_user_id=college_user_id,
        code_hash=hash_secret(code),
        attempts=0,
        max_attempts=config["REGISTRATION_OTP_MAX_ATTEMPTS"],
        resends=resends,
        expires_at=utcnow() + timedelta(minutes=config["REGISTRATION_OTP_EXPIRES_MINUTES"]),
    ))
    session.flush()
    return code


def _no_pending() -> AppError:
    return AppError(
        ErrorCode.NO_PENDING_REGISTRATION,
        "No pending registration found. Please register again.",
        400,
        field="email",
    )


# ── Public service functions ───────────────────────────────────────────────

def request_registration(data: dict, session: Session, mailer) -> str:
    """
    Starts a registration and emails a verification code.

    Args:
        data: loaded RegisterSchema (fullname, email, password,
              mobile_number, college_user_id).

    Raises:
      AppError(DUPLICATE_EMAIL | DUPLICATE_MOBILE | DUPLICATE_COLLEGE_ID, 409)

    Returns: the normalised email the code was sent to.
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

    code = _store_pending(
        session,
        email=email,
        fullname=data["fullname"].strip(),
        password_hash=hash_password(data["password"]),
        mobile_number=mobile,
        college_user_id=college_id,
    )
    _send_code(email, code, mailer)
    logger.info("Registration code issued for a pending registration")
    return email


def resend_registration(email: str, session: Session, mailer) -> str:
    """
    Issues a new code for the latest pending registration, carrying the
    stored profile forward with a fresh attempt budget.

    Raises:
      AppError(NO_PENDING_REGISTRATION, 400) — nothing pending, expired, or
        out of resends.
      AppError(DUPLICATE_EMAIL, 409) — the email has since been registered.
    """
    email = normalize_email(email)
    check_identity_conflicts(session, email=email)
    pending = _latest_unused(email, session)

    now = utcnow()
    if pending is None or pending.is_expired(now):
        raise _no_pending()
    if pending.resends >= current_app.config["REGISTRATION_OTP_MAX_RESENDS"]:
        raise _no_pending()

    code = _store_pending(
        session,
        email=email,
        fullname=pending.fullname,
        password_hash=pending.password_hash,
        mobile_number=pending.mobile_number,
        college_user_id=pending.college_user_id,
        resends=pending.resends + 1,
    )
    _send_code(email, code, mailer)
    return email


def verify_registration(email: str, code, session: Session) -> dict:
    """
    Confirms a registration code and creates the account.

    Raises:
      AppError(INVALID_CODE, 400)    — nothing pending, or wrong code
      AppError(CODE_EXPIRED, 400)    — pending record expired or out of attempts
      AppError(DUPLICATE_EMAIL, 409) — the email was registered meanwhile

    Returns: issue_session() result for the new student.
    """
    email = normalize_email(email)
    candidate = "" if code is None else str(code).strip()

    pending = _latest_unused(email, session)
    if pending is None:
        raise AppError(
            ErrorCode.INVALID_CODE,
            "Invalid verification code.",
            400,
            field="code",
        )

    now = utcnow()
    pending_id = pending.id
    was_active = pending.is_active(now)
    code_hash = pending.code_hash

    # Counted before comparing, and committed so a rejected attempt sticks.
    session.execute(
        update(RegistrationOTP)
        .where(RegistrationOTP.id == pending_id)
        .values(attempts=RegistrationOTP.attempts + 1)
        .execution_options(synchronize_session=False)
    )
    session.commit()

    if not was_active:
        raise AppError(
            ErrorCode.CODE_EXPIRED,
            "Verification code has expired. Please request a new code.",
            400,
            field="code",
        )

    if not secrets_match(candidate, code_hash):
        raise AppError(
            ErrorCode.INVALID_CODE,
            "Invalid verification code.",
            400,
            field="code",
        )

    pending = session.get(RegistrationOTP, pending_id)
    check_identity_conflicts(
        session,
        email=email,
        mobile_number=pending.mobile_number,
        college_user_id=pending.college_user_id,
    )

    user = User(
        fullname=pending.fullname,
        email=email,
        password_hash=pending.password_hash,
        role=Role.STUDENT,
        mobile_number=pending.mobile_number,
        college_user_id=pending.college_user_id,
    )
    try:
        with session.begin_nested():
            session.add(user)
            session.flush()
    except IntegrityError:
        # Lost a race with a concurrent registration of the same identity.
        raise AppError(
            ErrorCode.DUPLICATE_EMAIL,
            "An account with these details already exists.",
            409,
            field="email",
        )

    _invalidate_unused(email, session)
    logger.info("Registration verified; created student user_id=%s", user.id)
    return issue_session(user, session)
