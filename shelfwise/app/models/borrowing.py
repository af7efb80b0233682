"""
models/borrowing.py — Borrowing (loan) table definition and status derivation.

Status is derived, never stored:
  returned  if returned_at is set
  overdue   else if due_date < now
  active    otherwise

At most one Borrowing per (book_id, user_id) may have returned_at IS NULL.
The partial unique index uq_borrowings_active_loan enforces that in storage;
borrowing_service checks first to return DUPLICATE_ACTIVE_LOAN.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shelfwise.app.clock import as_utc, utcnow
from shelfwise.app.extensions import db


class LoanStatus(str, enum.Enum):
    ACTIVE   = "active"
    OVERDUE  = "overdue"
    RETURNED = "returned"


def loan_status(
        returned_at: datetime | None,
        due_date: datetime,
        now: datetime | None = None,
) -> LoanStatus:
    """Pure, total status derivation for a loan."""
    if returned_at is not None:
        return LoanStatus.RETURNED
    now = now or utcnow()
    if as_utc(due_date) < now:
        return LoanStatus.OVERDUE
    return LoanStatus.ACTIVE


class Borrowing(db.Model):
    __tablename__ = "borrowings"

    __table_args__ = (
        Index(
            "uq_borrowings_active_loan",
            "book_id",
            "user_id",
            unique=True,
            postgresql_where=text("returned_at IS NULL"),
            sqlite_where=text("returned_at IS NULL"),
        ),
        Index("idx_borrowings_user_returned", "user_id", "returned_at"),
        Index("idx_borrowings_due_returned", "due_date", "returned_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    book_id: Mapped[int] = mapped_column(
        ForeignKey("books.id", ondelete="CASCADE"),
        nullable=False,
    )

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )

    borrowed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    # borrowed_at + LOAN_PERIOD_DAYS, fixed at issue time.
    due_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # NULL while the loan is outstanding.
    returned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    book: Mapped["Book"] = relationship(  # noqa: F821
        "Book",
        back_populates="borrowings",
    )

    user: Mapped["User"] = relationship(  # noqa: F821
        "User",
        back_populates="borrowings",
    )

    def status(self, now: datetime | None = None) -> LoanStatus:
        return loan_status(self.returned_at, self.due_date, now)

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Borrowing id={self.id} book_id={self.book_id} "
            f"user_id={self.user_id} returned={self.returned_at is not None}>"
        )
