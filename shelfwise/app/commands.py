"""
commands.py — Flask CLI commands.

  flask seed           staff accounts + a starter catalogue (idempotent)
  flask purge-tokens   delete dead refresh tokens, OTPs and reset tokens

The command bodies call plain functions (seed_database, purge_tokens) that
take a session, so tests can run them without the CLI runner.
"""

from __future__ import annotations

import click
from flask import Flask, current_app
from flask.cli import with_appcontext
from sqlalchemy import delete, or_, select
from sqlalchemy.orm import Session

from shelfwise.app.capabilities import Role
from shelfwise.app.clock import utcnow
from shelfwise.app.extensions import db
from shelfwise.app.models.book import Book
from shelfwise.app.models.password_reset_token import PasswordResetToken
from shelfwise.app.models.refresh_token import RefreshToken
from shelfwise.app.models.registration_otp import RegistrationOTP
from shelfwise.app.models.user import User
from shelfwise.app.services.auth_service import hash_password

DEFAULT_PASSWORD = "Password123!"

SEED_USERS = (
    ("Library Admin",  "admin@library.local",      Role.ADMIN,     "ADMIN-001"),
    ("Jane Librarian", "librarian@library.local",  Role.LIBRARIAN, "LIB-001"),
    ("John Librarian", "librarian2@library.local", Role.LIBRARIAN, "LIB-002"),
)

SEED_BOOKS = (
    ("To Kill a Mockingbird", "Harper Lee",          "978-0-06-112008-4", ("fiction", "classic")),
    ("1984",                  "George Orwell",       "978-0-452-28423-4", ("fiction", "dystopia")),
    ("The Great Gatsby",      "F. Scott Fitzgerald", "978-0-7432-7356-5", ("fiction", "classic")),
    ("Pride and Prejudice",   "Jane Austen",         "978-0-14-143951-8", ("fiction", "romance")),
    ("The Hobbit",            "J.R.R. Tolkien",      "978-0-547-92822-7", ("fiction", "fantasy")),
    ("Fahrenheit 451",        "Ray Bradbury",        "978-0-7432-4722-1", ("fiction", "dystopia")),
    ("Brave New World",       "Aldous Huxley",       "978-0-06-085052-4", ("fiction", "dystopia")),
    ("Sapiens",               "Yuval Noah Harari",   "978-0-06-231609-7", ("non-fiction", "history")),
    ("Thinking, Fast and Slow", "Daniel Kahneman",   "978-0-374-27563-1", ("non-fiction", "psychology")),
    ("Clean Code",            "Robert C. Martin",    "978-0-13-235088-4", ("technology", "programming")),
    ("The Pragmatic Programmer", "David Thomas, Andrew Hunt", "978-0-13-595705-9", ("technology", "programming")),
    ("Introduction to Algorithms", "CLRS",           "978-0-262-03384-8", ("technology", "algorithms")),
    ("A Brief History of Time", "Stephen Hawking",   "978-0-553-10953-5", ("non-fiction", "science")),
    ("Meditations",           "Marcus Aurelius",     "978-0-14-044933-4", ("philosophy", "stoicism")),
    ("The Little Prince",     "Antoine de Saint-Exupéry", "978-0-15-601219-5", ("fiction", "children")),
)

SEED_COPIES = 2


def seed_database(session: Session, password: str = DEFAULT_PASSWORD) -> dict:
    """
    Creates the staff accounts and starter books that do not exist yet.
    Users are matched by email, books by ISBN.

    Returns: {"users_created", "users_existing", "books_created", "books_existing"}
    """
    counts = {"users_created": 0, "users_existing": 0, "books_created": 0, "books_existing": 0}
    owner_id = None

    for fullname, email, role, college_id in SEED_USERS:
        user = session.execute(select(User).where(User.email == email)).scalar_one_or_none()
        if user is None:
            user = User(
                fullname=fullname,
                email=email,
                password_hash=hash_password(password),
                role=role,
                college_user_id=college_id,
            )
            session.add(user)
            session.flush()
            counts["users_created"] += 1
        else:
            counts["users_existing"] += 1
        if owner_id is None:
            owner_id = user.id

    for title, author, isbn, tags in SEED_BOOKS:
        exists = session.execute(select(Book.id).where(Book.isbn == isbn)).first()
        if exists is not None:
            counts["books_existing"] += 1
            continue
        book = Book(
            title=title,
            author=author,
            isbn=isbn,
            copies=SEED_COPIES,
            available_copies=SEED_COPIES,
            created_by=owner_id,
        )
        book.tags = list(tags)
        session.add(book)
        counts["books_created"] += 1

    session.flush()
    return counts


def purge_tokens(session: Session) -> dict:
    """
    Deletes credentials that can never be used again:
      refresh tokens  expired, or revoked longer ago than the refresh TTL
      OTPs            expired, or used longer ago than the refresh TTL
      reset tokens    expired, or used

    Revoked refresh tokens are kept for one refresh TTL so reuse of a
    rotated-out token is still recognised as reuse.

    Returns: {"refresh_tokens", "registration_otps", "password_reset_tokens"}
    """
    now = utcnow()
    horizon = now - current_app.config["JWT_REFRESH_TOKEN_EXPIRES"]

    refresh = session.execute(
        delete(RefreshToken).where(or_(
            RefreshToken.expires_at < now,
            RefreshToken.revoked_at < horizon,
        )).execution_options(synchronize_session=False)
    )
    otps = session.execute(
        delete(RegistrationOTP).where(or_(
            RegistrationOTP.expires_at < now,
            RegistrationOTP.used_at < horizon,
        )).execution_options(synchronize_session=False)
    )
    resets = session.execute(
        delete(PasswordResetToken).where(or_(
            PasswordResetToken.expires_at < now,
            PasswordResetToken.used_at.is_not(None),
        )).execution_options(synchronize_session=False)
    )
    return {
        "refresh_tokens": refresh.rowcount,
        "registration_otps": otps.rowcount,
        "password_reset_tokens": resets.rowcount,
    }


@click.command("seed")
@with_appcontext
@click.option("--password", default=DEFAULT_PASSWORD, show_default=True,
              help="Password for newly created staff accounts.")
def seed_command(password: str) -> None:
    """Create staff accounts and a starter catalogue."""
    counts = seed_database(db.session, password=password)
    db.session.commit()
    click.echo(
        f"Users: {counts['users_created']} created, {counts['users_existing']} already existed."
    )
    click.echo(
        f"Books: {counts['books_created']} created, {counts['books_existing']} already existed."
    )


@click.command("purge-tokens")
@with_appcontext
def purge_tokens_command() -> None:
    """Delete expired and spent tokens."""
    counts = purge_tokens(db.session)
    db.session.commit()
    for name, count in counts.items():
        click.echo(f"{name}: {count} deleted")


def register_commands(app: Flask) -> None:
    app.cli.add_command(seed_command)
    app.cli.add_command(purge_tokens_command)
