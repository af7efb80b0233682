"""
services/borrowing_service.py — The borrowing ledger: issue, return, list, get.

Invariants enforced here:
  - 0 <= books.available_copies <= books.copies across concurrent requests.
    Issue decrements with a conditional UPDATE (available_copies > 0);
    return increments with min(available_copies + 1, copies).
  - At most one outstanding loan per (book, user). Checked up front for a
    clean 409, and backed by the partial unique index uq_borrowings_active_loan
    for the concurrent case.
  - A loan is returned at most once (conditional UPDATE on returned_at IS NULL).

Status (active / overdue / returned) is derived from due_date and
returned_at at read time; see models.borrowing.loan_status.

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
  - Commits are the route's responsibility; only flush here.
  - `now` is injectable for tests.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import and_, case, exists, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from shelfwise.app.capabilities import Capability, has_capability
from shelfwise.app.clock import isoformat, utcnow
from shelfwise.app.errors import AppError, ErrorCode
from shelfwise.app.models.book import Book
from shelfwise.app.models.borrowing import Borrowing, LoanStatus
from shelfwise.app.models.user import User
from shelfwise.app.pagination import PageRequest, contains_pattern, paginate, parse_sort

logger = logging.getLogger(__name__)

SORT_COLUMNS = {
    "borrowedAt": Borrowing.borrowed_at,
    "dueDate": Borrowing.due_date,
    "returnedAt": Borrowing.returned_at,
    "createdAt": Borrowing.created_at,
}
DEFAULT_SORT = "-borrowedAt"


def build_borrowing_dict(borrowing: Borrowing, now: datetime | None = None) -> dict:
    book = borrowing.book
    user = borrowing.user
    return {
        "id": borrowing.id,
        "bookId": borrowing.book_id,
        "userId": borrowing.user_id,
        "book": {
            "id": book.id,
            "title": book.title,
            "author": book.author,
            "isbn": book.isbn,
            "copies": book.copies,
            "availableCopies": book.available_copies,
        } if book is not None else None,
        "user": {
            "id": user.id,
            "fullname": user.fullname,
            "email": user.email,
            "role": user.role.value,
        } if user is not None else None,
        "borrowedAt": isoformat(borrowing.borrowed_at),
        "dueDate": isoformat(borrowing.due_date),
        "returnedAt": isoformat(borrowing.returned_at),
        "status": borrowing.status(now).value,
    }


def status_clause(status: str | LoanStatus, now: datetime):
    """SQL predicate matching loan_status() for a given `now`."""
    status = LoanStatus(status)
    if status is LoanStatus.RETURNED:
        return Borrowing.returned_at.is_not(None)
    if status is LoanStatus.OVERDUE:
        return and_(Borrowing.returned_at.is_(None), Borrowing.due_date < now)
    return and_(Borrowing.returned_at.is_(None), Borrowing.due_date >= now)


# ── Private helpers ────────────────────────────────────────────────────────

def _has_active_loan(book_id: int, user_id: int, session: Session) -> bool:
    return bool(session.execute(
        select(exists().where(
            Borrowing.book_id == book_id,
            Borrowing.user_id == user_id,
            Borrowing.returned_at.is_(None),
        ))
    ).scalar())


def _duplicate_loan() -> AppError:
    return AppError(
        ErrorCode.DUPLICATE_ACTIVE_LOAN,
        "This user already has this book borrowed and not returned.",
        409,
    )


def _reserve_copy(book_id: int, session: Session) -> bool:
    """Atomically takes one copy. False if none were left."""
    result = session.execute(
        update(Book)
        .where(Book.id == book_id, Book.available_copies > 0)
        .values(available_copies=Book.available_copies - 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _release_copy(book_id: int, session: Session) -> None:
    """Puts one copy back, never above the total."""
    session.execute(
        update(Book)
        .where(Book.id == book_id)
        .values(available_copies=case(
            (Book.available_copies + 1 > Book.copies, Book.copies),
            else_=Book.available_copies + 1,
        ))
        .execution_options(synchronize_session=False)
    )


def _get_borrowing_or_404(borrowing_id: int, session: Session) -> Borrowing:
    borrowing = session.execute(
        select(Borrowing)
        .options(joinedload(Borrowing.book), joinedload(Borrowing.user))
        .where(Borrowing.id == borrowing_id)
    ).scalar_one_or_none()
    if borrowing is None:
        raise AppError(
            ErrorCode.BORROWING_NOT_FOUND,
            f"Borrowing {borrowing_id} not found.",
            404,
        )
    return borrowing


# ── Public service functions ───────────────────────────────────────────────

def issue_book(
        book_id: int,
        user_id: int,
        session: Session,
        loan_period_days: int = 14,
        now: datetime | None = None,
) -> Borrowing:
    """
    Lends one copy of a book to a user.

    Check order: user exists, book exists, a copy is available, no
    outstanding loan for the pair. The decrement itself is conditional, so
    two requests racing for the last copy cannot both win.

    Raises:
      AppError(USER_NOT_FOUND, 404)
      AppError(BOOK_NOT_FOUND, 404)
      AppError(NO_COPIES_AVAILABLE, 409)
      AppError(DUPLICATE_ACTIVE_LOAN, 409)
    """
    now = now or utcnow()

    user = session.get(User, user_id)
    if user is None:
        raise AppError(ErrorCode.USER_NOT_FOUND, f"User {user_id} not found.", 404)

    book = session.get(Book, book_id)
    if book is None:
        raise AppError(ErrorCode.BOOK_NOT_FOUND, f"Book {book_id} not found.", 404)

    if book.available_copies < 1:
        raise AppError(
            ErrorCode.NO_COPIES_AVAILABLE,
            "No copies of this book are available.",
            409,
        )

    if _has_active_loan(book_id, user_id, session):
        raise _duplicate_loan()

    if not _reserve_copy(book_id, session):
        raise AppError(
            ErrorCode.NO_COPIES_AVAILABLE,
            "No copies of this book are available.",
            409,
        )

    if _has_active_loan(book_id, user_id, session):
        _release_copy(book_id, session)
        raise _duplicate_loan()

    borrowing = Borrowing(
        book_id=book_id,
        user_id=user_id,
        borrowed_at=now,
        due_date=now + timedelta(days=loan_period_days),
    )
    try:
        with session.begin_nested():
            session.add(borrowing)
            session.flush()
    except IntegrityError:
        _release_copy(book_id, session)
        raise _duplicate_loan()

    session.refresh(book)
    logger.info(
        "Issued book_id=%s to user_id=%s (borrowing_id=%s, available=%s/%s)",
        book_id, user_id, borrowing.id, book.available_copies, book.copies,
    )
    return borrowing


def return_book(borrowing_id: int, session: Session, now: datetime | None = None) -> Borrowing:
    """
    Marks a loan returned and puts the copy back.

    Raises:
      AppError(BORROWING_NOT_FOUND, 404)
      AppError(ALREADY_RETURNED, 409)
    """
    now = now or utcnow()
    borrowing = _get_borrowing_or_404(borrowing_id, session)

    result = session.execute(
        update(Borrowing)
        .where(Borrowing.id == borrowing_id, Borrowing.returned_at.is_(None))
        .values(returned_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise AppError(
            ErrorCode.ALREADY_RETURNED,
            "This borrowing has already been returned.",
            409,
        )

    _release_copy(borrowing.book_id, session)
    session.refresh(borrowing)
    session.refresh(borrowing.book)

    logger.info(
        "Returned borrowing_id=%s (book_id=%s, user_id=%s)",
        borrowing.id, borrowing.book_id, borrowing.user_id,
    )
    return borrowing


def list_borrowings(
        caller_id: int,
        caller_role: str,
        session: Session,
        page: PageRequest,
        status: str | None = None,
        user_id: int | None = None,
        book_id: int | None = None,
        q: str | None = None,
        sort: str | None = None,
        now: datetime | None = None,
) -> tuple[list[dict], int]:
    """
    Lists loans visible to the caller.

    Callers without borrowings:read_all see only their own loans; their
    userId filter is ignored. Staff may filter by userId / bookId and search
    q over book title, borrower name and borrower email.

    Returns: (borrowing dicts for the page, total matching)
    """
    now = now or utcnow()

    stmt = (
        select(Borrowing)
        .join(Book, Book.id == Borrowing.book_id)
        .join(User, User.id == Borrowing.user_id)
        .options(joinedload(Borrowing.book), joinedload(Borrowing.user))
    )

    if has_capability(caller_role, Capability.BORROWINGS_READ_ALL):
        if user_id is not None:
            stmt = stmt.where(Borrowing.user_id == user_id)
    else:
        stmt = stmt.where(Borrowing.user_id == caller_id)

    if book_id is not None:
        stmt = stmt.where(Borrowing.book_id == book_id)

    if status:
        stmt = stmt.where(status_clause(status, now))

    if q and q.strip():
        pattern = contains_pattern(q)
        stmt = stmt.where(or_(
            Book.title.ilike(pattern, escape="\\"),
            User.fullname.ilike(pattern, escape="\\"),
            User.email.ilike(pattern, escape="\\"),
        ))

    stmt = stmt.order_by(parse_sort(sort, SORT_COLUMNS, DEFAULT_SORT), Borrowing.id.desc())
    borrowings, total = paginate(stmt, page, session)
    return [build_borrowing_dict(b, now) for b in borrowings], total


def get_borrowing(
        borrowing_id: int,
        caller_id: int,
        caller_role: str,
        session: Session,
) -> Borrowing:
    """
    Returns one loan. Students may only read their own.

    Raises:
      AppError(BORROWING_NOT_FOUND, 404)
      AppError(FORBIDDEN, 403)
    """
    borrowing = _get_borrowing_or_404(borrowing_id, session)
    if (
        borrowing.user_id != caller_id
        and not has_capability(caller_role, Capability.BORROWINGS_READ_ALL)
    ):
        raise AppError(
            ErrorCode.FORBIDDEN,
            "You can only view your own borrowings.",
            403,
        )
    return borrowing
