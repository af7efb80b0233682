"""
services/book_service.py — Catalogue management.

Invariants enforced here:
  - ISBN is unique when present (DUPLICATE_ISBN, 409); blank ISBN is stored as NULL.
  - 0 <= available_copies <= copies, via Book.set_copies() on every edit.
  - A book with an outstanding loan cannot be deleted (BOOK_HAS_ACTIVE_LOANS, 409).

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
  - Commits are the route's responsibility; only flush here.
"""

from __future__ import annotations

import logging

from sqlalchemy import exists, or_, select
from sqlalchemy.orm import Session

from shelfwise.app.clock import isoformat
from shelfwise.app.errors import AppError, ErrorCode
from shelfwise.app.models.book import Book, BookTag
from shelfwise.app.models.borrowing import Borrowing
from shelfwise.app.pagination import PageRequest, contains_pattern, paginate, parse_sort

logger = logging.getLogger(__name__)

SORT_COLUMNS = {
    "title": Book.title,
    "author": Book.author,
    "createdAt": Book.created_at,
    "publishedDate": Book.published_date,
    "copies": Book.copies,
    "availableCopies": Book.available_copies,
}
DEFAULT_SORT = "-createdAt"

_TEXT_FIELDS = ("author", "description", "publisher")


def build_book_dict(book: Book) -> dict:
    return {
        "id": book.id,
        "title": book.title,
        "author": book.author,
        "isbn": book.isbn,
        "description": book.description,
        "publisher": book.publisher,
        "publishedDate": book.published_date.isoformat() if book.published_date else None,
        "copies": book.copies,
        "availableCopies": book.available_copies,
        "tags": book.tags,
        "createdBy": book.created_by,
        "createdAt": isoformat(book.created_at),
        "updatedAt": isoformat(book.updated_at),
    }


def parse_tags(raw: str | None) -> list[str]:
    """'fiction, classic,,' -> ['fiction', 'classic']"""
    if not raw:
        return []
    return [tag.strip() for tag in raw.split(",") if tag.strip()]


# ── Private helpers ────────────────────────────────────────────────────────

def _get_book_or_404(book_id: int, session: Session, for_update: bool = False) -> Book:
    # for_update: lock the row and overwrite any stale copy in the identity map
    if for_update:
        book = session.get(Book, book_id, with_for_update=True, populate_existing=True)
    else:
        book = session.get(Book, book_id)
    if book is None:
        raise AppError(
            ErrorCode.BOOK_NOT_FOUND,
            f"Book {book_id} not found.",
            404,
        )
    return book


def _normalize_isbn(isbn: str | None) -> str | None:
    if isbn is None:
        return None
    isbn = isbn.strip()
    return isbn or None


def _check_isbn_free(isbn: str | None, session: Session, exclude_book_id: int | None = None) -> None:
    if isbn is None:
        return
    stmt = select(Book.id).where(Book.isbn == isbn)
    if exclude_book_id is not None:
        stmt = stmt.where(Book.id != exclude_book_id)
    if session.execute(stmt).first() is not None:
        raise AppError(
            ErrorCode.DUPLICATE_ISBN,
            f"A book with ISBN {isbn} already exists.",
            409,
            field="isbn",
        )


# ── Public service functions ───────────────────────────────────────────────

def create_book(data: dict, created_by: int | None, session: Session) -> dict:
    """
    Adds a title to the catalogue with all copies available.

    Raises:
      AppError(DUPLICATE_ISBN, 409)
    """
    isbn = _normalize_isbn(data.get("isbn"))
    _check_isbn_free(isbn, session)

    copies = data.get("copies", 1)
    book = Book(
        title=data["title"].strip(),
        isbn=isbn,
        published_date=data.get("published_date"),
        copies=copies,
        available_copies=copies,
        created_by=created_by,
    )
    for field in _TEXT_FIELDS:
        setattr(book, field, data.get(field))
    book.tags = data.get("tags") or []

    session.add(book)
    session.flush()

    logger.info("Created book_id=%s copies=%s", book.id, book.copies)
    return build_book_dict(book)


def list_books(
        session: Session,
        page: PageRequest,
        q: str | None = None,
        tags: list[str] | None = None,
        sort: str | None = None,
) -> tuple[list[dict], int]:
    """
    Lists the catalogue.

    q matches title, author or ISBN (case-insensitive substring).
    tags matches books carrying any of the given tags.

    Returns: (book dicts for the page, total matching)
    """
    stmt = select(Book)

    if q and q.strip():
        pattern = contains_pattern(q)
        stmt = stmt.where(or_(
            Book.title.ilike(pattern, escape="\\"),
            Book.author.ilike(pattern, escape="\\"),
            Book.isbn.ilike(pattern, escape="\\"),
        ))

    if tags:
        stmt = stmt.where(exists().where(
            BookTag.book_id == Book.id,
            BookTag.tag.in_(tags),
        ))

    stmt = stmt.order_by(parse_sort(sort, SORT_COLUMNS, DEFAULT_SORT), Book.id.asc())
    books, total = paginate(stmt, page, session)
    return [build_book_dict(b) for b in books], total


def get_book(book_id: int, session: Session) -> dict:
    return build_book_dict(_get_book_or_404(book_id, session))


def update_book(book_id: int, changes: dict, session: Session) -> dict:
    """
    Applies a partial update. Only keys present in `changes` are touched.

    Raises:
      AppError(BOOK_NOT_FOUND, 404)
      AppError(DUPLICATE_ISBN, 409)
    """
    book = _get_book_or_404(book_id, session, for_update="copies" in changes)

    if "isbn" in changes:
        isbn = _normalize_isbn(changes["isbn"])
        _check_isbn_free(isbn, session, exclude_book_id=book.id)
        book.isbn = isbn

    if "title" in changes:
        book.title = changes["title"].strip()
    for field in _TEXT_FIELDS:
        if field in changes:
            setattr(book, field, changes[field])
    if "published_date" in changes:
        book.published_date = changes["published_date"]
    if "tags" in changes:
        book.tags = changes["tags"] or []
    if "copies" in changes:
        book.set_copies(changes["copies"])

    book.touch()
    session.flush()
    return build_book_dict(book)


def delete_book(book_id: int, session: Session) -> None:
    """
    Removes a book and its returned loan history.

    Raises:
      AppError(BOOK_NOT_FOUND, 404)
      AppError(BOOK_HAS_ACTIVE_LOANS, 409)
    """
    book = _get_book_or_404(book_id, session)

    has_active = session.execute(
        select(exists().where(
            Borrowing.book_id == book.id,
            Borrowing.returned_at.is_(None),
        ))
    ).scalar()
    if has_active:
        raise AppError(
            ErrorCode.BOOK_HAS_ACTIVE_LOANS,
            "Book has copies that are not yet returned.",
            409,
        )

    session.delete(book)
    session.flush()
    logger.info("Deleted book_id=%s", book_id)
