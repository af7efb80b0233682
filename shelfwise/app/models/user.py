"""
models/user.py — User table definition.

No business logic. No imports from services or routes.
Uniqueness of email, mobile number and college id is enforced by UNIQUE
constraints; services check first to return a specific 409 code.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Enum, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shelfwise.app.capabilities import Role
from shelfwise.app.clock import utcnow
from shelfwise.app.extensions import db


def _enum_values(enum_cls) -> list[str]:
    """Store enum values ('student'), not names ('STUDENT')."""
    return [member.value for member in enum_cls]


class User(db.Model):
    __tablename__ = "users"

    __table_args__ = (
        CheckConstraint(
            "LENGTH(TRIM(fullname)) > 0",
            name="ck_users_fullname_nonempty",
        ),
        CheckConstraint(
            "email LIKE '%@%'",
            name="ck_users_email_format",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    fullname: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    # Always stored lowercased and trimmed (auth_service.normalize_email).
    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
    )

    password_hash: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    # VARCHAR + CHECK rather than a native enum type, so SQLite and
    # PostgreSQL share one schema.
    role: Mapped[Role] = mapped_column(
        Enum(
            Role,
            name="user_role",
            native_enum=False,
            create_constraint=True,
            length=20,
            values_callable=_enum_values,
            validate_strings=True,
        ),
        nullable=False,
        default=Role.STUDENT,
    )

    # NULL allowed many times; non-NULL values are unique.
    mobile_number: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
        unique=True,
    )

    college_user_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        unique=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    refresh_tokens: Mapped[list["RefreshToken"]] = relationship(  # noqa: F821
        "RefreshToken",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    borrowings: Mapped[list["Borrowing"]] = relationship(  # noqa: F821
        "Borrowing",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<User id={self.id} email={self.email!r} role={self.role}>"
