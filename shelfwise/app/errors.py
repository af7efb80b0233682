"""
errors.py — The one exception type the API raises on purpose, and its codes.

Services, middleware and routes raise `AppError(code, message, status)`;
create_app() turns it into `{"error": message, "code": code}` (plus
`"field"` when a single input field is to blame).

`code` is what clients branch on and stays fixed. `message` is for people
and can be reworded.
"""

from __future__ import annotations


class AppError(Exception):

    def __init__(self, code: str, message: str, http_status: int, field: str | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.http_status = http_status
        self.field = field

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code}
        if self.field:
            body["field"] = self.field
        return body

    def __repr__(self) -> str:
        return f"AppError({self.code}, {self.http_status}, {self.message!r})"


# Grouped by the HTTP status they travel with.
# 401 means the caller is unknown; 403 means known but not allowed.
class ErrorCode:

    # ── Input (400) ────────────────────────────────────────────────────────
    VALIDATION_FAILED          = "VALIDATION_FAILED"
    INVALID_SORT               = "INVALID_SORT"
    INVALID_CODE               = "INVALID_CODE"
    CODE_EXPIRED               = "CODE_EXPIRED"
    NO_PENDING_REGISTRATION    = "NO_PENDING_REGISTRATION"
    INVALID_RESET_TOKEN        = "INVALID_RESET_TOKEN"
    INVALID_CURRENT_PASSWORD   = "INVALID_CURRENT_PASSWORD"
    CANNOT_DELETE_SELF         = "CANNOT_DELETE_SELF"

    # ── Conflict (409) ─────────────────────────────────────────────────────
    DUPLICATE_EMAIL            = "DUPLICATE_EMAIL"
    DUPLICATE_MOBILE           = "DUPLICATE_MOBILE"
    DUPLICATE_COLLEGE_ID       = "DUPLICATE_COLLEGE_ID"
    DUPLICATE_ISBN             = "DUPLICATE_ISBN"
    DUPLICATE_ACTIVE_LOAN      = "DUPLICATE_ACTIVE_LOAN"
    NO_COPIES_AVAILABLE        = "NO_COPIES_AVAILABLE"
    ALREADY_RETURNED           = "ALREADY_RETURNED"
    BOOK_HAS_ACTIVE_LOANS      = "BOOK_HAS_ACTIVE_LOANS"
    USER_HAS_ACTIVE_LOANS      = "USER_HAS_ACTIVE_LOANS"

    # ── Not Found (404) ────────────────────────────────────────────────────
    USER_NOT_FOUND             = "USER_NOT_FOUND"
    BOOK_NOT_FOUND             = "BOOK_NOT_FOUND"
    BORROWING_NOT_FOUND        = "BORROWING_NOT_FOUND"

    # ── Auth (401 / 403) ───────────────────────────────────────────────────
    INVALID_CREDENTIALS        = "INVALID_CREDENTIALS"    # 401
    TOKEN_MISSING              = "TOKEN_MISSING"          # 401
    TOKEN_INVALID              = "TOKEN_INVALID"          # 401
    TOKEN_EXPIRED              = "TOKEN_EXPIRED"          # 401
    REFRESH_TOKEN_MISSING      = "REFRESH_TOKEN_MISSING"  # 401
    REFRESH_TOKEN_INVALID      = "REFRESH_TOKEN_INVALID"  # 401
    FORBIDDEN                  = "FORBIDDEN"              # 403

    # ── System (500) ───────────────────────────────────────────────────────
    INTERNAL_ERROR             = "INTERNAL_ERROR"
