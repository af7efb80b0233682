"""
tests/unit/conftest.py — A bare Flask app context for unit tests.

Unit tests never touch a database. Services that read current_app.config
(bcrypt rounds, token TTLs, pagination limits) get it from this app.
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from flask import Flask

from shelfwise.app.mailer import Mailer

UNIT_SECRET = "unit-test-secret-key-with-enough-length-for-hs256"


@pytest.fixture
def app_ctx():
    app = Flask("shelfwise-unit")
    app.config.update(
        TESTING=True,
        JWT_SECRET_KEY=UNIT_SECRET,
        JWT_ALGORITHM="HS256",
        JWT_ACCESS_TOKEN_EXPIRES=timedelta(minutes=15),
        JWT_REFRESH_TOKEN_EXPIRES=timedelta(days=7),
        BCRYPT_LOG_ROUNDS=4,
        PAGINATION_DEFAULT_LIMIT=20,
        PAGINATION_MAX_LIMIT=100,
        MAIL_BACKEND="memory",
        MAIL_DEFAULT_SENDER="no-reply@test.local",
        REGISTRATION_OTP_EXPIRES_MINUTES=15,
        REGISTRATION_OTP_MAX_ATTEMPTS=5,
        REGISTRATION_OTP_MAX_RESENDS=5,
    )
    Mailer(app)
    with app.app_context():
        yield app
