"""
tests/integration/test_password_reset.py — Forgot / reset password.

  POST /auth/forgot-password → 200 with one message whether or not the email exists
  POST /auth/reset-password  → 200, or 400 INVALID_RESET_TOKEN
"""

from __future__ import annotations

import re
from datetime import timedelta

from sqlalchemy import select

from shelfwise.app.clock import utcnow
from shelfwise.app.extensions import db
from shelfwise.app.models.password_reset_token import PasswordResetToken
from shelfwise.app.routes.auth import FORGOT_PASSWORD_MESSAGE

from .conftest import PASSWORD, make_user, outbox, refresh_cookie, refresh_with

NEW_PASSWORD = "BrandNew123"


def _forgot(client, email):
    return client.post("/api/v1/auth/forgot-password", json={"email": email})


def _reset_token(app, email) -> str:
    messages = [m for m in outbox(app) if m.to == email]
    assert messages, f"no reset mail sent to {email}"
    match = re.search(r"reset-password\?token=([0-9a-f]{64})", messages[-1].text)
    assert match, messages[-1].text
    return match.group(1)


def _reset(client, token, password=NEW_PASSWORD):
    return client.post("/api/v1/auth/reset-password", json={"token": token, "password": password})


class TestForgotPassword:

    def test_known_and_unknown_email_get_the_same_answer(self, app, client):
        make_user(app, "alice@test.com")

        known = _forgot(client, "alice@test.com")
        unknown = _forgot(client, "nobody@test.com")

        assert known.status_code == unknown.status_code == 200
        assert known.get_json() == unknown.get_json() == {"message": FORGOT_PASSWORD_MESSAGE}

    def test_only_known_email_receives_mail(self, app, client):
        make_user(app, "alice@test.com")
        _forgot(client, "alice@test.com")
        _forgot(client, "nobody@test.com")

        assert [m.to for m in outbox(app)] == ["alice@test.com"]

    def test_link_points_at_frontend(self, app, client):
        make_user(app, "alice@test.com")
        _forgot(client, "alice@test.com")

        (message,) = outbox(app)
        assert message.subject == "Password reset"
        assert app.config["FRONTEND_URL"] + "/reset-password?token=" in message.text

    def test_token_is_stored_hashed(self, app, client):
        make_user(app, "alice@test.com")
        _forgot(client, "alice@test.com")
        raw = _reset_token(app, "alice@test.com")

        with app.app_context():
            stored = db.session.execute(select(PasswordResetToken.token_hash)).scalars().all()
        assert raw not in stored


class TestResetPassword:

    def test_reset_sets_new_password(self, app, client):
        make_user(app, "alice@test.com")
        _forgot(client, "alice@test.com")

        resp = _reset(client, _reset_token(app, "alice@test.com"))

        assert resp.status_code == 200
        old = client.post("/api/v1/auth/login", json={"email": "alice@test.com", "password": PASSWORD})
        new = client.post("/api/v1/auth/login", json={"email": "alice@test.com", "password": NEW_PASSWORD})
        assert old.status_code == 401
        assert new.status_code == 200

    def test_reset_revokes_existing_sessions(self, app, client):
        make_user(app, "alice@test.com")
        raw = refresh_cookie(client.post("/api/v1/auth/login", json={
            "email": "alice@test.com", "password": PASSWORD,
        }))["value"]
        _forgot(client, "alice@test.com")

        _reset(app.test_client(), _reset_token(app, "alice@test.com"))

        assert refresh_with(app, raw).status_code == 401

    def test_token_is_single_use(self, app, client):
        make_user(app, "alice@test.com")
        _forgot(client, "alice@test.com")
        token = _reset_token(app, "alice@test.com")
        assert _reset(client, token).status_code == 200

        resp = _reset(client, token, password="Another123")

        assert resp.status_code == 400
        assert resp.get_json()["code"] == "INVALID_RESET_TOKEN"
        assert resp.get_json()["field"] == "token"

    def test_new_request_invalidates_older_token(self, app, client):
        make_user(app, "alice@test.com")
        _forgot(client, "alice@test.com")
        first = _reset_token(app, "alice@test.com")
        _forgot(client, "alice@test.com")
        second = _reset_token(app, "alice@test.com")

        assert _reset(client, first).status_code == 400
        assert _reset(client, second).status_code == 200

    def test_expired_token(self, app, client):
        make_user(app, "alice@test.com")
        _forgot(client, "alice@test.com")
        token = _reset_token(app, "alice@test.com")
        with app.app_context():
            record = db.session.execute(select(PasswordResetToken)).scalar_one()
            record.expires_at = utcnow() - timedelta(seconds=1)
            db.session.commit()

        resp = _reset(client, token)

        assert resp.status_code == 400
        assert resp.get_json()["code"] == "INVALID_RESET_TOKEN"

    def test_unknown_token(self, client):
        resp = _reset(client, "0" * 64)
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "INVALID_RESET_TOKEN"

    def test_weak_new_password_is_a_validation_error(self, client):
        resp = _reset(client, "0" * 64, password="weak")
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "VALIDATION_FAILED"
