"""Importing this package registers every mapper with db.Model's registry."""

from shelfwise.app.models import (  # noqa: F401
    book,
    borrowing,
    password_reset_token,
    refresh_token,
    registration_otp,
    user,
)
