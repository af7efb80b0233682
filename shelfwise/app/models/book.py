"""
models/book.py — Book and BookTag table definitions.

Inventory invariant: 0 <= available_copies <= copies, for every row, at all
times. It is enforced three ways:
  - CHECK constraints (last line of defence),
  - Book.set_copies() for edits to the copy count,
  - conditional UPDATEs in borrowing_service for issue/return.
There is no ORM event hook doing this implicitly.
"""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shelfwise.app.clock import utcnow
from shelfwise.app.extensions import db


class Book(db.Model):
    __tablename__ = "books"

    __table_args__ = (
        CheckConstraint("LENGTH(TRIM(title)) > 0", name="ck_books_title_nonempty"),
        CheckConstraint("copies >= 0", name="ck_books_copies_nonnegative"),
        CheckConstraint(
            "available_copies >= 0 AND available_copies <= copies",
            name="ck_books_available_within_copies",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    author: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Unique when present; NULL allowed for any number of rows.
    isbn: Mapped[str | None] = mapped_column(String(32), nullable=True, unique=True)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    publisher: Mapped[str | None] = mapped_column(String(255), nullable=True)
    published_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    copies: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    available_copies: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # SET NULL — deleting the librarian does not delete the catalogue.
    created_by: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

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

    tag_rows: Mapped[list["BookTag"]] = relationship(
        "BookTag",
        back_populates="book",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="BookTag.tag",
    )

    borrowings: Mapped[list["Borrowing"]] = relationship(  # noqa: F821
        "Borrowing",
        back_populates="book",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    # ── Invariant-preserving mutators ──────────────────────────────────────

    def set_copies(self, copies: int) -> None:
        """
        Changes the total copy count and keeps available_copies in range.

        Lowering copies clamps available_copies down to the new total.
        Raising copies makes the added copies available immediately.
        """
        if copies < 0:
            raise ValueError("copies must be >= 0")

        previous = self.copies if self.copies is not None else 0
        available = self.available_copies if self.available_copies is not None else 0

        if copies >= previous:
            available += copies - previous
        available = max(0, min(available, copies))

        self.copies = copies
        self.available_copies = available

    @property
    def tags(self) -> list[str]:
        return [row.tag for row in self.tag_rows]

    @tags.setter
    def tags(self, values: list[str]) -> None:
        seen: list[str] = []
        for value in values:
            tag = value.strip()
            if tag and tag not in seen:
                seen.append(tag)
        existing = {row.tag: row for row in self.tag_rows}
        self.tag_rows = [existing.get(tag) or BookTag(tag=tag) for tag in seen]

    def touch(self) -> None:
        self.updated_at = utcnow()

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Book id={self.id} title={self.title!r} "
            f"available={self.available_copies}/{self.copies}>"
        )


class BookTag(db.Model):
    __tablename__ = "book_tags"

    book_id: Mapped[int] = mapped_column(
        ForeignKey("books.id", ondelete="CASCADE"),
        primary_key=True,
    )
    tag: Mapped[str] = mapped_column(String(50), primary_key=True, index=True)

    book: Mapped[Book] = relationship("Book", back_populates="tag_rows")

    def __repr__(self) -> str:  # pragma: no cover
        return f"<BookTag book_id={self.book_id} tag={self.tag!r}>"
