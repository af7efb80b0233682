"""
tests/unit/test_validation_schemas.py — Unit tests for the marshmallow schemas.

What this file proves:
  - Every schema accepts valid input and maps camelCase keys to snake_case
  - Field-level rules (type, length, enum, password strength) are enforced here
  - Uniqueness and credential checks are NOT tested here; they need the DB
    and belong to the services

No database and no Flask application context: schemas inherit from
marshmallow.Schema directly.
"""

from __future__ import annotations

import datetime

import pytest
from marshmallow import ValidationError

from shelfwise.app.schemas.auth_schema import (
    ChangePasswordSchema,
    LoginSchema,
    RegisterSchema,
    ResetPasswordSchema,
    UpdateProfileSchema,
    VerifyRegistrationSchema,
)
from shelfwise.app.schemas.book_schema import (
    CreateBookSchema,
    ListBooksQuerySchema,
    UpdateBookSchema,
)
from shelfwise.app.schemas.borrowing_schema import (
    IssueBorrowingSchema,
    ListBorrowingsQuerySchema,
)
from shelfwise.app.schemas.user_schema import CreateUserSchema


# ═══════════════════════════════════════════════════════════════════════════
# RegisterSchema
# ═══════════════════════════════════════════════════════════════════════════

class TestRegisterSchema:

    def _load(self, **overrides):
        data = {
            "fullname": "Ada Student",
            "email": "ada@example.com",
            "password": "Password123",
            **overrides,
        }
        return RegisterSchema().load(data)

    def test_valid_payload(self):
        result = self._load(mobileNumber="+1 555 0100", collegeUserId="STU-1")
        assert result["fullname"] == "Ada Student"
        assert result["mobile_number"] == "+1 555 0100"
        assert result["college_user_id"] == "STU-1"

    def test_optional_fields_default_to_none(self):
        result = self._load()
        assert result["mobile_number"] is None
        assert result["college_user_id"] is None

    @pytest.mark.parametrize("password, message", [
        ("Short1", "at least 8"),
        ("allletters", "one digit"),
        ("12345678", "one letter"),
        ("a1" * 40, "72 bytes"),
    ])
    def test_password_strength(self, password, message):
        with pytest.raises(ValidationError) as exc_info:
            self._load(password=password)
        assert message in exc_info.value.messages["password"][0]

    def test_invalid_email(self):
        with pytest.raises(ValidationError) as exc_info:
            self._load(email="not-an-email")
        assert "email" in exc_info.value.messages

    def test_invalid_mobile(self):
        with pytest.raises(ValidationError) as exc_info:
            self._load(mobileNumber="call me")
        assert "mobileNumber" in exc_info.value.messages

    def test_role_is_unknown_field(self):
        with pytest.raises(ValidationError) as exc_info:
            self._load(role="admin")
        assert "role" in exc_info.value.messages

    def test_password_is_load_only(self):
        assert "password" not in RegisterSchema().dump({"fullname": "A B", "password": "x"})


# ═══════════════════════════════════════════════════════════════════════════
# Other auth schemas
# ═══════════════════════════════════════════════════════════════════════════

class TestAuthSchemas:

    def test_login_requires_both_fields(self):
        with pytest.raises(ValidationError) as exc_info:
            LoginSchema().load({})
        assert set(exc_info.value.messages) == {"email", "password"}

    @pytest.mark.parametrize("code", ["123456", 123456, {"digits": "123456"}, ["1"]])
    def test_verify_accepts_any_code_shape(self, code):
        result = VerifyRegistrationSchema().load({"email": "a@x.com", "code": code})
        assert result["code"] == code

    def test_verify_rejects_null_code(self):
        with pytest.raises(ValidationError):
            VerifyRegistrationSchema().load({"email": "a@x.com", "code": None})

    def test_change_password_maps_camel_case(self):
        result = ChangePasswordSchema().load({"oldPassword": "x", "newPassword": "NewPass123"})
        assert result == {"old_password": "x", "new_password": "NewPass123"}

    def test_reset_password_short_token(self):
        with pytest.raises(ValidationError) as exc_info:
            ResetPasswordSchema().load({"token": "abc", "password": "Password123"})
        assert "token" in exc_info.value.messages

    def test_update_profile_is_partial(self):
        assert UpdateProfileSchema().load({}) == {}

    def test_update_profile_blank_fullname(self):
        with pytest.raises(ValidationError) as exc_info:
            UpdateProfileSchema().load({"fullname": "    "})
        assert "fullname" in exc_info.value.messages

    def test_update_profile_allows_clearing_mobile(self):
        assert UpdateProfileSchema().load({"mobileNumber": ""}) == {"mobile_number": ""}


# ═══════════════════════════════════════════════════════════════════════════
# Book schemas
# ═══════════════════════════════════════════════════════════════════════════

class TestBookSchemas:

    def test_create_defaults(self):
        result = CreateBookSchema().load({"title": "Dune"})
        assert result["copies"] == 1
        assert "tags" not in result

    def test_create_full_payload(self):
        result = CreateBookSchema().load({
            "title": "Dune",
            "author": "Frank Herbert",
            "publishedDate": "1965-08-01",
            "copies": 4,
            "tags": ["sci-fi"],
        })
        assert result["published_date"] == datetime.date(1965, 8, 1)
        assert result["copies"] == 4

    @pytest.mark.parametrize("copies", [-1, "3", 2.5])
    def test_copies_must_be_non_negative_int(self, copies):
        with pytest.raises(ValidationError) as exc_info:
            CreateBookSchema().load({"title": "Dune", "copies": copies})
        assert "copies" in exc_info.value.messages

    def test_blank_title(self):
        with pytest.raises(ValidationError) as exc_info:
            CreateBookSchema().load({"title": "   "})
        assert "title" in exc_info.value.messages

    def test_tag_length(self):
        with pytest.raises(ValidationError) as exc_info:
            CreateBookSchema().load({"title": "Dune", "tags": ["x" * 51]})
        assert "tags" in exc_info.value.messages

    def test_update_is_partial(self):
        assert UpdateBookSchema().load({"copies": 0}) == {"copies": 0}

    def test_update_rejects_available_copies(self):
        with pytest.raises(ValidationError):
            UpdateBookSchema().load({"availableCopies": 3})

    def test_list_query_ignores_unknown_params(self):
        result = ListBooksQuerySchema().load({"page": "2", "utm_source": "mail"})
        assert result["page"] == 2
        assert result["limit"] is None
        assert result["tags"] is None

    @pytest.mark.parametrize("params", [{"page": "0"}, {"limit": "0"}, {"page": "x"}])
    def test_list_query_bounds(self, params):
        with pytest.raises(ValidationError):
            ListBooksQuerySchema().load(params)


# ═══════════════════════════════════════════════════════════════════════════
# Borrowing and user schemas
# ═══════════════════════════════════════════════════════════════════════════

class TestBorrowingSchemas:

    def test_issue_maps_ids(self):
        assert IssueBorrowingSchema().load({"bookId": 3, "userId": "7"}) == {"book_id": 3, "user_id": 7}

    def test_list_status_must_be_known(self):
        with pytest.raises(ValidationError) as exc_info:
            ListBorrowingsQuerySchema().load({"status": "lost"})
        assert "status" in exc_info.value.messages

    def test_list_filters(self):
        result = ListBorrowingsQuerySchema().load({"status": "overdue", "userId": "5"})
        assert result["status"] == "overdue"
        assert result["user_id"] == 5
        assert result["book_id"] is None


class TestCreateUserSchema:

    def test_librarian_allowed(self):
        result = CreateUserSchema().load({
            "fullname": "Lena Librarian",
            "email": "lena@x.com",
            "password": "Password123",
            "role": "librarian",
        })
        assert result["role"] == "librarian"

    def test_admin_not_allowed(self):
        with pytest.raises(ValidationError) as exc_info:
            CreateUserSchema().load({
                "fullname": "Eve",
                "email": "eve@x.com",
                "password": "Password123",
                "role": "admin",
            })
        assert "role" in exc_info.value.messages
