"""
tests/integration/conftest.py — Fixtures and helpers for all integration tests.

Design:
  - Tests run against a real database: a SQLite file by default, or
    TEST_DATABASE_URL (e.g. a PostgreSQL shelfwise_test database).
  - The app is created once per session using create_app("testing").
  - Tables are dropped and re-created once at session start.
  - Between tests, all rows are deleted in FK-safe order and the mail
    outbox is emptied, so tests are isolated.

Helper functions (not fixtures) cover common operations:
  - make_user(app, ...)            → user id (inserted directly, any role)
  - login(client, ...)             → {"accessToken", "user"}
  - auth_headers(token)            → {"Authorization": "Bearer <token>"}
  - refresh_cookie(resp)           → {"value", attribute: value, ...} or None
  - refresh_with(app, raw)         → response of /auth/refresh for a given cookie
  - last_code(app, email)          → the 6-digit code last mailed to email
  - make_book(client, token, ...)  → book dict
  - issue(client, token, ...)      → HTTP response

These are plain functions so tests can call them with any arguments.
"""

from __future__ import annotations

import re

import pytest
from sqlalchemy import text

from shelfwise.app import create_app
from shelfwise.app.capabilities import Role
from shelfwise.app.extensions import db as _db
from shelfwise.app.extensions import mailer

PASSWORD = "Password123"
COOKIE_NAME = "refreshToken"
COOKIE_PATH = "/api/v1/auth"

_TABLES_IN_DELETE_ORDER = (
    "borrowings",
    "book_tags",
    "books",
    "password_reset_tokens",
    "registration_otps",
    "refresh_tokens",
    "users",
)


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
    """
    Creates the Flask application in 'testing' mode once for the test session.
    Tables from an earlier run are dropped first.
    """
    flask_app = create_app("testing")

    with flask_app.app_context():
        _db.drop_all()
        _db.create_all()

    yield flask_app

    with flask_app.app_context():
        _db.session.remove()
        _db.drop_all()


# ═══════════════════════════════════════════════════════════════════════════
# Function-scoped test isolation
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def clean_tables(app):
    """Deletes all rows and captured mail after every test."""
    yield

    with app.app_context():
        _db.session.rollback()
        _db.session.remove()
        mailer.outbox.clear()

        with _db.engine.connect() as conn:
            for table in _TABLES_IN_DELETE_ORDER:
                conn.execute(text(f"DELETE FROM {table}"))
            conn.commit()


@pytest.fixture
def client(app):
    """Flask test client. Each test gets a fresh client (and cookie jar)."""
    return app.test_client()


@pytest.fixture
def admin_token(app, client):
    make_user(app, "admin@test.com", role="admin", fullname="Ada Admin")
    return login(client, "admin@test.com")["accessToken"]


@pytest.fixture
def librarian_token(app):
    make_user(app, "librarian@test.com", role="librarian", fullname="Lena Librarian")
    return login(app.test_client(), "librarian@test.com")["accessToken"]


# ═══════════════════════════════════════════════════════════════════════════
# Shared helper functions (not fixtures)
# ═══════════════════════════════════════════════════════════════════════════

def make_user(
    app,
    email: str,
    role: str = "student",
    password: str = PASSWORD,
    fullname: str | None = None,
    **profile,
) -> int:
    """Inserts a user directly (bypassing registration) and returns its id."""
    from shelfwise.app.models.user import User
    from shelfwise.app.services.auth_service import hash_password

    with app.app_context():
        user = User(
            fullname=fullname or email.split("@")[0].title(),
            email=email,
            password_hash=hash_password(password),
            role=Role(role),
            **profile,
        )
        _db.session.add(user)
        _db.session.commit()
        user_id = user.id
        _db.session.remove()
    return user_id


def login(client, email: str, password: str = PASSWORD) -> dict:
    """Logs in and returns {"accessToken", "user"}; the client keeps the cookie."""
    resp = client.post("/api/v1/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, f"login failed: {resp.get_json()}"
    return resp.get_json()


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def refresh_cookie(resp) -> dict | None:
    """
    Parses the refresh cookie out of a response's Set-Cookie headers.

    Returns {"value": ..., "path": ..., "httponly": True, ...} with lowercased
    attribute names, or None if the response sets no refresh cookie.
    """
    for header in resp.headers.getlist("Set-Cookie"):
        if not header.startswith(f"{COOKIE_NAME}="):
            continue
        first, *attributes = [part.strip() for part in header.split(";")]
        parsed = {"value": first.split("=", 1)[1]}
        for attribute in attributes:
            name, _, value = attribute.partition("=")
            parsed[name.lower()] = value if value else True
        return parsed
    return None


def refresh_with(app, raw_token: str):
    """POST /auth/refresh from a fresh client presenting exactly `raw_token`."""
    other = app.test_client()
    other.set_cookie(COOKIE_NAME, raw_token, path=COOKIE_PATH)
    return other.post("/api/v1/auth/refresh")


def last_code(app, email: str) -> str:
    """The verification code in the most recent mail to `email`."""
    with app.app_context():
        messages = [m for m in mailer.outbox if m.to == email]
    assert messages, f"no mail sent to {email}"
    match = re.search(r"Your verification code is: (\d{6})", messages[-1].text)
    assert match, messages[-1].text
    return match.group(1)


def outbox(app) -> list:
    with app.app_context():
        return list(mailer.outbox)


def make_book(client, token: str, title: str = "Test Book", copies: int = 1, **fields) -> dict:
    resp = client.post(
        "/api/v1/books",
        json={"title": title, "copies": copies, **fields},
        headers=auth_headers(token),
    )
    assert resp.status_code == 201, f"make_book failed: {resp.get_json()}"
    return resp.get_json()["book"]


def issue(client, token: str, book_id: int, user_id: int):
    return client.post(
        "/api/v1/borrowings",
        json={"bookId": book_id, "userId": user_id},
        headers=auth_headers(token),
    )
