"""Initial schema — all tables, constraints, and indexes.

Revision: 001_initial_schema
Created:  2026-10-19

Append-only: never edit this file once applied anywhere. Schema changes go
in a new migration.

Creation order (FK dependencies):
  users → refresh_tokens, password_reset_tokens, books → book_tags,
  borrowings; registration_otps has no foreign keys.

ON DELETE policies:
  refresh_tokens.user_id          → CASCADE   (token owned by user)
  password_reset_tokens.user_id   → CASCADE
  books.created_by                → SET NULL  (catalogue outlives its author)
  book_tags.book_id               → CASCADE
  borrowings.book_id / user_id    → CASCADE   (services refuse the delete
                                                while a loan is outstanding)

Roles are VARCHAR + CHECK (no native enum type), so the same migration runs
on PostgreSQL and SQLite.
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# ── Alembic revision identifiers ──────────────────────────────────────────
revision: str = "001_initial_schema"
down_revision: str | None = None
branch_labels: tuple | None = None
depends_on: tuple | None = None


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
    )


def upgrade() -> None:

    # ── users ──────────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("fullname", sa.String(100), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("role", sa.String(20), nullable=False, server_default="student"),
        sa.Column("mobile_number", sa.String(20), nullable=True),
        sa.Column("college_user_id", sa.String(64), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.UniqueConstraint("mobile_number", name="uq_users_mobile_number"),
        sa.UniqueConstraint("college_user_id", name="uq_users_college_user_id"),
        sa.CheckConstraint("LENGTH(TRIM(fullname)) > 0", name="ck_users_fullname_nonempty"),
        sa.CheckConstraint("email LIKE '%@%'", name="ck_users_email_format"),
        sa.CheckConstraint(
            "role IN ('student', 'librarian', 'admin')",
            name="user_role",
        ),
    )

    # ── refresh_tokens ─────────────────────────────────────────────────────
    op.create_table(
        "refresh_tokens",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_refresh_tokens_user"),
            nullable=False,
        ),
        sa.Column("token_hash", sa.String(64), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("replaced_by_token_hash", sa.String(64), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name="pk_refresh_tokens"),
        sa.UniqueConstraint("token_hash", name="uq_refresh_tokens_hash"),
    )
    op.create_index("ix_refresh_tokens_user_id", "refresh_tokens", ["user_id"])

    # ── registration_otps ──────────────────────────────────────────────────
    op.create_table(
        "registration_otps",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("fullname", sa.String(100), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("mobile_number", sa.String(20), nullable=True),
        sa.Column("college_user_id", sa.String(64), nullable=True),
        sa.Column("code_hash", sa.String(64), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("resends", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name="pk_registration_otps"),
        sa.CheckConstraint("attempts >= 0", name="ck_registration_otps_attempts"),
        sa.CheckConstraint("max_attempts > 0", name="ck_registration_otps_max_attempts"),
    )
    op.create_index("ix_registration_otps_email", "registration_otps", ["email"])

    # ── password_reset_tokens ──────────────────────────────────────────────
    op.create_table(
        "password_reset_tokens",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_password_reset_tokens_user"),
            nullable=False,
        ),
        sa.Column("token_hash", sa.String(64), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name="pk_password_reset_tokens"),
        sa.UniqueConstraint("token_hash", name="uq_password_reset_tokens_hash"),
    )
    op.create_index("ix_password_reset_tokens_user_id", "password_reset_tokens", ["user_id"])

    # ── books ──────────────────────────────────────────────────────────────
    op.create_table(
        "books",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("author", sa.String(255), nullable=True),
        sa.Column("isbn", sa.String(32), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("publisher", sa.String(255), nullable=True),
        sa.Column("published_date", sa.Date(), nullable=True),
        sa.Column("copies", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("available_copies", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "created_by",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="SET NULL", name="fk_books_created_by"),
            nullable=True,
        ),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_books"),
        sa.UniqueConstraint("isbn", name="uq_books_isbn"),
        sa.CheckConstraint("LENGTH(TRIM(title)) > 0", name="ck_books_title_nonempty"),
        sa.CheckConstraint("copies >= 0", name="ck_books_copies_nonnegative"),
        sa.CheckConstraint(
            "available_copies >= 0 AND available_copies <= copies",
            name="ck_books_available_within_copies",
        ),
    )

    # ── book_tags ──────────────────────────────────────────────────────────
    op.create_table(
        "book_tags",
        sa.Column(
            "book_id",
            sa.Integer(),
            sa.ForeignKey("books.id", ondelete="CASCADE", name="fk_book_tags_book"),
            nullable=False,
        ),
        sa.Column("tag", sa.String(50), nullable=False),
        sa.PrimaryKeyConstraint("book_id", "tag", name="pk_book_tags"),
    )
    op.create_index("ix_book_tags_tag", "book_tags", ["tag"])

    # ── borrowings ─────────────────────────────────────────────────────────
    op.create_table(
        "borrowings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "book_id",
            sa.Integer(),
            sa.ForeignKey("books.id", ondelete="CASCADE", name="fk_borrowings_book"),
            nullable=False,
        ),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_borrowings_user"),
            nullable=False,
        ),
        sa.Column("borrowed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("returned_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_borrowings"),
    )

    # At most one outstanding loan per (book, user).
    op.create_index(
        "uq_borrowings_active_loan",
        "borrowings",
        ["book_id", "user_id"],
        unique=True,
        postgresql_where=sa.text("returned_at IS NULL"),
        sqlite_where=sa.text("returned_at IS NULL"),
    )
    op.create_index("idx_borrowings_user_returned", "borrowings", ["user_id", "returned_at"])
    op.create_index("idx_borrowings_due_returned", "borrowings", ["due_date", "returned_at"])


def downgrade() -> None:
    op.drop_table("borrowings")
    op.drop_table("book_tags")
    op.drop_table("books")
    op.drop_table("password_reset_tokens")
    op.drop_table("registration_otps")
    op.drop_table("refresh_tokens")
    op.drop_table("users")
