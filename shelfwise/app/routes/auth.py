"""
routes/auth.py — Authentication route handlers.

Layer rules:
  - Parse request body
  - Validate with the appropriate schema (raises ValidationError on bad input)
  - Call exactly ONE service function
  - Commit the DB session
  - Return camelCase JSON

The refresh secret travels only in the refresh cookie (httpOnly, path-scoped
to /api/v1/auth). It never appears in a response body.

Endpoints (url_prefix=/api/v1/auth):
  POST   /auth/register          → 202  start registration, email a code
  POST   /auth/register/resend   → 200  email a new code
  POST   /auth/register/verify   → 201  confirm code, create student, sign in
  POST   /auth/login             → 200
  POST   /auth/refresh           → 200  rotate refresh cookie (cookie only)
  POST   /auth/logout            → 200  revoke refresh cookie, clear it
  POST   /auth/logout-all        → 200  revoke every session of the caller
  GET    /auth/me                → 200
  PUT    /auth/me                → 200
  PUT    /auth/me/password       → 200
  POST   /auth/forgot-password   → 200  uniform response
  POST   /auth/reset-password    → 200
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from shelfwise.app.extensions import db, mailer
from shelfwise.app.middleware.auth_middleware import require_auth
from shelfwise.app.schemas.auth_schema import (
    ChangePasswordSchema,
    EmailSchema,
    LoginSchema,
    RegisterSchema,
    ResetPasswordSchema,
    UpdateProfileSchema,
    VerifyRegistrationSchema,
)
from shelfwise.app.services import auth_service, registration_service, user_service

auth_bp = Blueprint("auth", __name__)

FORGOT_PASSWORD_MESSAGE = "If that email is registered, a password reset link has been sent."


# ── Cookie helpers ─────────────────────────────────────────────────────────

def _set_refresh_cookie(response, raw_token: str):
    config = current_app.config
    response.set_cookie(
        config["REFRESH_COOKIE_NAME"],
        raw_token,
        max_age=int(config["JWT_REFRESH_TOKEN_EXPIRES"].total_seconds()),
        httponly=True,
        secure=config["REFRESH_COOKIE_SECURE"],
        samesite=config["REFRESH_COOKIE_SAMESITE"],
        path=config["REFRESH_COOKIE_PATH"],
    )
    return response


def _clear_refresh_cookie(response):
    config = current_app.config
    response.delete_cookie(
        config["REFRESH_COOKIE_NAME"],
        httponly=True,
        secure=config["REFRESH_COOKIE_SECURE"],
        samesite=config["REFRESH_COOKIE_SAMESITE"],
        path=config["REFRESH_COOKIE_PATH"],
    )
    return response


def _read_refresh_cookie() -> str | None:
    return request.cookies.get(current_app.config["REFRESH_COOKIE_NAME"])


def _session_response(result: dict, status: int):
    """{accessToken, user} body plus the refresh cookie."""
    response = jsonify({
        "accessToken": result["access_token"],
        "user": user_service.build_user_dict(result["user"]),
    })
    response.status_code = status
    return _set_refresh_cookie(response, result["refresh_token"])


# ── Registration ───────────────────────────────────────────────────────────

@auth_bp.route("/register", methods=["POST"])
def register():
    """POST /auth/register — Store a pending registration and email a code."""
    data = RegisterSchema().load(request.get_json(force=True) or {})
    registration_service.request_registration(
        data=data,
        session=db.session,
        mailer=mailer,
    )
    db.session.commit()
    return jsonify({"message": "Verification code sent to your email."}), 202


@auth_bp.route("/register/resend", methods=["POST"])
def resend_registration():
    """POST /auth/register/resend — Email a fresh code for a pending registration."""
    data = EmailSchema().load(request.get_json(force=True) or {})
    registration_service.resend_registration(
        email=data["email"],
        session=db.session,
        mailer=mailer,
    )
    db.session.commit()
    return jsonify({"message": "A new verification code has been sent."}), 200


@auth_bp.route("/register/verify", methods=["POST"])
def verify_registration():
    """POST /auth/register/verify — Confirm the code; create the account and sign in."""
    data = VerifyRegistrationSchema().load(request.get_json(force=True) or {})
    result = registration_service.verify_registration(
        email=data["email"],
        code=data["code"],
        session=db.session,
    )
    db.session.commit()
    return _session_response(result, 201)


# ── Sessions ───────────────────────────────────────────────────────────────

@auth_bp.route("/login", methods=["POST"])
def login():
    """POST /auth/login — Authenticate; access token in body, refresh in cookie."""
    data = LoginSchema().load(request.get_json(force=True) or {})
    result = auth_service.login_user(
        email=data["email"],
        password=data["password"],
        session=db.session,
    )
    db.session.commit()
    return _session_response(result, 200)


@auth_bp.route("/refresh", methods=["POST"])
def refresh():
    """POST /auth/refresh — Exchange the refresh cookie for a new access token."""
    result = auth_service.refresh_session(
        raw_refresh_token=_read_refresh_cookie(),
        session=db.session,
    )
    db.session.commit()
    response = jsonify({"accessToken": result["access_token"]})
    return _set_refresh_cookie(response, result["refresh_token"])


@auth_bp.route("/logout", methods=["POST"])
def logout():
    """POST /auth/logout — Revoke the presented refresh cookie. Idempotent."""
    auth_service.logout_session(
        raw_refresh_token=_read_refresh_cookie(),
        session=db.session,
    )
    db.session.commit()
    return _clear_refresh_cookie(jsonify({"message": "Logged out successfully."}))


@auth_bp.route("/logout-all", methods=["POST"])
@require_auth
def logout_all():
    """POST /auth/logout-all — Revoke every refresh token of the caller."""
    revoked = auth_service.revoke_all_sessions(
        user_id=g.user_id,
        session=db.session,
    )
    db.session.commit()
    return _clear_refresh_cookie(jsonify({
        "message": "Logged out of all sessions.",
        "revoked": revoked,
    }))


# ── Profile ────────────────────────────────────────────────────────────────

@auth_bp.route("/me", methods=["GET"])
@require_auth
def me():
    """GET /auth/me — Current profile with capabilities and home path."""
    result = user_service.get_profile(
        user_id=g.user_id,
        session=db.session,
    )
    return jsonify({"user": result}), 200


@auth_bp.route("/me", methods=["PUT"])
@require_auth
def update_me():
    """PUT /auth/me — Partial profile update."""
    data = UpdateProfileSchema().load(request.get_json(force=True) or {})
    result = user_service.update_profile(
        user_id=g.user_id,
        changes=data,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"user": result}), 200


@auth_bp.route("/me/password", methods=["PUT"])
@require_auth
def change_password():
    """PUT /auth/me/password — Change password; signs out every session."""
    data = ChangePasswordSchema().load(request.get_json(force=True) or {})
    auth_service.change_password(
        user_id=g.user_id,
        old_password=data["old_password"],
        new_password=data["new_password"],
        session=db.session,
    )
    db.session.commit()
    return _clear_refresh_cookie(jsonify({"message": "Password updated. Please sign in again."}))


# ── Password reset ─────────────────────────────────────────────────────────

@auth_bp.route("/forgot-password", methods=["POST"])
def forgot_password():
    """POST /auth/forgot-password — Same answer whether or not the email exists."""
    data = EmailSchema().load(request.get_json(force=True) or {})
    auth_service.request_password_reset(
        email=data["email"],
        session=db.session,
        mailer=mailer,
    )
    db.session.commit()
    return jsonify({"message": FORGOT_PASSWORD_MESSAGE}), 200


@auth_bp.route("/reset-password", methods=["POST"])
def reset_password():
    """POST /auth/reset-password — Consume a reset token and set a new password."""
    data = ResetPasswordSchema().load(request.get_json(force=True) or {})
    auth_service.reset_password(
        raw_token=data["token"],
        new_password=data["password"],
        session=db.session,
    )
    db.session.commit()
    return _clear_refresh_cookie(jsonify({"message": "Password has been reset. Please sign in."}))
