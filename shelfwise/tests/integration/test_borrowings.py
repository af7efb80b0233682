"""
tests/integration/test_borrowings.py — The borrowing ledger.

  POST /borrowings             issue {bookId, userId}   librarian, admin
  POST /borrowings/:id/return  return                   librarian, admin
  GET  /borrowings             list (students: own only)
  GET  /borrowings/:id         borrower or staff

Inventory invariant checked throughout: 0 <= availableCopies <= copies.
"""

from __future__ import annotations

import threading
from datetime import timedelta

from sqlalchemy import update

from shelfwise.app.clock import utcnow
from shelfwise.app.extensions import db
from shelfwise.app.models.borrowing import Borrowing

from .conftest import auth_headers, issue, login, make_book, make_user


def _book(client, token, book_id):
    return client.get(f"/api/v1/books/{book_id}", headers=auth_headers(token)).get_json()["book"]


def _return(client, token, borrowing_id):
    return client.post(f"/api/v1/borrowings/{borrowing_id}/return", headers=auth_headers(token))


def _backdate(app, borrowing_id, days_overdue=1):
    """Moves a loan's due date into the past."""
    with app.app_context():
        db.session.execute(
            update(Borrowing)
            .where(Borrowing.id == borrowing_id)
            .values(due_date=utcnow() - timedelta(days=days_overdue))
        )
        db.session.commit()


# ═══════════════════════════════════════════════════════════════════════════
# Issue and return
# ═══════════════════════════════════════════════════════════════════════════

class TestIssueAndReturn:

    def test_last_copy_lifecycle(self, app, client, librarian_token):
        book = make_book(client, librarian_token, title="Only One", copies=1)
        alice = make_user(app, "alice@test.com")
        bob = make_user(app, "bob@test.com")

        first = issue(client, librarian_token, book["id"], alice)
        assert first.status_code == 201
        loan = first.get_json()["borrowing"]
        assert loan["status"] == "active"
        assert loan["returnedAt"] is None
        assert _book(client, librarian_token, book["id"])["availableCopies"] == 0

        second = issue(client, librarian_token, book["id"], bob)
        assert second.status_code == 409
        assert second.get_json()["code"] == "NO_COPIES_AVAILABLE"

        returned = _return(client, librarian_token, loan["id"])
        assert returned.status_code == 200
        assert returned.get_json()["borrowing"]["status"] == "returned"
        assert returned.get_json()["borrowing"]["returnedAt"] is not None
        assert _book(client, librarian_token, book["id"])["availableCopies"] == 1

    def test_due_date_is_loan_period_after_borrowed_at(self, app, client, librarian_token):
        book = make_book(client, librarian_token)
        user_id = make_user(app, "alice@test.com")

        loan = issue(client, librarian_token, book["id"], user_id).get_json()["borrowing"]

        from datetime import datetime
        borrowed = datetime.fromisoformat(loan["borrowedAt"])
        due = datetime.fromisoformat(loan["dueDate"])
        assert due - borrowed == timedelta(days=app.config["LOAN_PERIOD_DAYS"])

    def test_response_embeds_book_and_user(self, app, client, librarian_token):
        book = make_book(client, librarian_token, title="Emma")
        user_id = make_user(app, "alice@test.com", fullname="Alice Smith")

        loan = issue(client, librarian_token, book["id"], user_id).get_json()["borrowing"]

        assert loan["bookId"] == book["id"]
        assert loan["userId"] == user_id
        assert loan["book"]["title"] == "Emma"
        assert loan["user"]["fullname"] == "Alice Smith"
        assert "password_hash" not in loan["user"]

    def test_same_user_cannot_hold_two_copies_of_a_title(self, app, client, librarian_token):
        book = make_book(client, librarian_token, copies=3)
        user_id = make_user(app, "alice@test.com")
        issue(client, librarian_token, book["id"], user_id)

        resp = issue(client, librarian_token, book["id"], user_id)

        assert resp.status_code == 409
        assert resp.get_json()["code"] == "DUPLICATE_ACTIVE_LOAN"
        assert _book(client, librarian_token, book["id"])["availableCopies"] == 2

    def test_can_borrow_again_after_returning(self, app, client, librarian_token):
        book = make_book(client, librarian_token)
        user_id = make_user(app, "alice@test.com")
        loan = issue(client, librarian_token, book["id"], user_id).get_json()["borrowing"]
        _return(client, librarian_token, loan["id"])

        assert issue(client, librarian_token, book["id"], user_id).status_code == 201

    def test_unknown_book_and_user(self, app, client, librarian_token):
        book = make_book(client, librarian_token)
        user_id = make_user(app, "alice@test.com")

        no_book = issue(client, librarian_token, 99999, user_id)
        no_user = issue(client, librarian_token, book["id"], 99999)

        assert no_book.status_code == 404
        assert no_book.get_json()["code"] == "BOOK_NOT_FOUND"
        assert no_user.status_code == 404
        assert no_user.get_json()["code"] == "USER_NOT_FOUND"

    def test_zero_copy_book_cannot_be_issued(self, app, client, librarian_token):
        book = make_book(client, librarian_token, copies=0)
        user_id = make_user(app, "alice@test.com")
        resp = issue(client, librarian_token, book["id"], user_id)
        assert resp.get_json()["code"] == "NO_COPIES_AVAILABLE"

    def test_return_twice(self, app, client, librarian_token):
        book = make_book(client, librarian_token)
        user_id = make_user(app, "alice@test.com")
        loan = issue(client, librarian_token, book["id"], user_id).get_json()["borrowing"]
        _return(client, librarian_token, loan["id"])

        again = _return(client, librarian_token, loan["id"])

        assert again.status_code == 409
        assert again.get_json()["code"] == "ALREADY_RETURNED"
        assert _book(client, librarian_token, book["id"])["availableCopies"] == 1

    def test_return_unknown(self, client, librarian_token):
        resp = _return(client, librarian_token, 99999)
        assert resp.status_code == 404
        assert resp.get_json()["code"] == "BORROWING_NOT_FOUND"

    def test_student_cannot_issue_or_return(self, app, client, librarian_token):
        book = make_book(client, librarian_token)
        user_id = make_user(app, "alice@test.com")
        token = login(app.test_client(), "alice@test.com")["accessToken"]

        assert issue(client, token, book["id"], user_id).status_code == 403
        loan = issue(client, librarian_token, book["id"], user_id).get_json()["borrowing"]
        assert _return(client, token, loan["id"]).status_code == 403

    def test_missing_ids_are_a_validation_error(self, client, librarian_token):
        resp = client.post("/api/v1/borrowings", json={}, headers=auth_headers(librarian_token))
        assert resp.status_code == 400
        paths = {d["path"] for d in resp.get_json()["details"]}
        assert paths == {"bookId", "userId"}


# ═══════════════════════════════════════════════════════════════════════════
# Concurrency
# ═══════════════════════════════════════════════════════════════════════════

class TestConcurrentIssue:

    def test_last_copy_goes_to_exactly_one_request(self, app, client, librarian_token):
        book = make_book(client, librarian_token, copies=1)
        user_ids = [make_user(app, f"racer{i}@test.com") for i in range(6)]

        statuses: list[int] = []
        lock = threading.Lock()
        start = threading.Barrier(len(user_ids))

        def worker(user_id):
            own_client = app.test_client()
            start.wait()
            resp = issue(own_client, librarian_token, book["id"], user_id)
            with lock:
                statuses.append(resp.status_code)

        threads = [threading.Thread(target=worker, args=(uid,)) for uid in user_ids]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert statuses.count(201) == 1
        assert statuses.count(409) == len(user_ids) - 1
        assert _book(client, librarian_token, book["id"])["availableCopies"] == 0

    def test_same_pair_racing_creates_one_loan(self, app, client, librarian_token):
        book = make_book(client, librarian_token, copies=5)
        user_id = make_user(app, "alice@test.com")

        statuses: list[int] = []
        lock = threading.Lock()
        start = threading.Barrier(4)

        def worker():
            own_client = app.test_client()
            start.wait()
            resp = issue(own_client, librarian_token, book["id"], user_id)
            with lock:
                statuses.append(resp.status_code)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert statuses.count(201) == 1
        assert _book(client, librarian_token, book["id"])["availableCopies"] == 4


# ═══════════════════════════════════════════════════════════════════════════
# Listing and reading
# ═══════════════════════════════════════════════════════════════════════════

class TestListBorrowings:

    def _setup(self, app, client, librarian_token):
        dune = make_book(client, librarian_token, title="Dune", copies=2)
        emma = make_book(client, librarian_token, title="Emma", copies=2)
        alice = make_user(app, "alice@test.com", fullname="Alice Smith")
        bob = make_user(app, "bob@test.com", fullname="Bob Jones")

        a_dune = issue(client, librarian_token, dune["id"], alice).get_json()["borrowing"]
        a_emma = issue(client, librarian_token, emma["id"], alice).get_json()["borrowing"]
        b_dune = issue(client, librarian_token, dune["id"], bob).get_json()["borrowing"]

        _return(client, librarian_token, a_emma["id"])
        _backdate(app, b_dune["id"])
        return {
            "dune": dune, "emma": emma, "alice": alice, "bob": bob,
            "a_dune": a_dune, "a_emma": a_emma, "b_dune": b_dune,
        }

    def test_staff_see_everything(self, app, client, librarian_token):
        self._setup(app, client, librarian_token)
        resp = client.get("/api/v1/borrowings", headers=auth_headers(librarian_token))
        assert resp.get_json()["meta"]["total"] == 3
        assert resp.headers["X-Total-Count"] == "3"

    def test_status_filters(self, app, client, librarian_token):
        ids = self._setup(app, client, librarian_token)
        headers = auth_headers(librarian_token)

        def listed(status):
            items = client.get(f"/api/v1/borrowings?status={status}", headers=headers).get_json()["items"]
            return {item["id"] for item in items}

        assert listed("active") == {ids["a_dune"]["id"]}
        assert listed("overdue") == {ids["b_dune"]["id"]}
        assert listed("returned") == {ids["a_emma"]["id"]}

    def test_overdue_status_reported(self, app, client, librarian_token):
        ids = self._setup(app, client, librarian_token)
        resp = client.get(f"/api/v1/borrowings/{ids['b_dune']['id']}",
                          headers=auth_headers(librarian_token))
        assert resp.get_json()["borrowing"]["status"] == "overdue"

    def test_invalid_status(self, client, librarian_token):
        resp = client.get("/api/v1/borrowings?status=lost", headers=auth_headers(librarian_token))
        assert resp.status_code == 400

    def test_staff_filter_by_user_and_book(self, app, client, librarian_token):
        ids = self._setup(app, client, librarian_token)
        headers = auth_headers(librarian_token)

        by_user = client.get(f"/api/v1/borrowings?userId={ids['alice']}", headers=headers).get_json()
        by_book = client.get(f"/api/v1/borrowings?bookId={ids['dune']['id']}", headers=headers).get_json()

        assert by_user["meta"]["total"] == 2
        assert by_book["meta"]["total"] == 2

    def test_staff_search(self, app, client, librarian_token):
        self._setup(app, client, librarian_token)
        headers = auth_headers(librarian_token)

        by_name = client.get("/api/v1/borrowings?q=jones", headers=headers).get_json()
        by_title = client.get("/api/v1/borrowings?q=emma", headers=headers).get_json()

        assert [b["user"]["fullname"] for b in by_name["items"]] == ["Bob Jones"]
        assert [b["book"]["title"] for b in by_title["items"]] == ["Emma"]

    def test_student_sees_only_own_loans(self, app, client, librarian_token):
        ids = self._setup(app, client, librarian_token)
        token = login(app.test_client(), "alice@test.com")["accessToken"]

        resp = client.get(f"/api/v1/borrowings?userId={ids['bob']}", headers=auth_headers(token))

        body = resp.get_json()
        assert resp.status_code == 200
        assert body["meta"]["total"] == 2
        assert {item["userId"] for item in body["items"]} == {ids["alice"]}

    def test_student_book_filter_and_search_stay_within_own_loans(self, app, client, librarian_token):
        ids = self._setup(app, client, librarian_token)
        headers = auth_headers(login(app.test_client(), "alice@test.com")["accessToken"])

        by_book = client.get(f"/api/v1/borrowings?bookId={ids['dune']['id']}", headers=headers).get_json()
        by_title = client.get("/api/v1/borrowings?q=emma", headers=headers).get_json()

        assert [item["id"] for item in by_book["items"]] == [ids["a_dune"]["id"]]
        assert [item["id"] for item in by_title["items"]] == [ids["a_emma"]["id"]]

    def test_sort_by_due_date(self, app, client, librarian_token):
        self._setup(app, client, librarian_token)
        items = client.get("/api/v1/borrowings?sort=dueDate",
                           headers=auth_headers(librarian_token)).get_json()["items"]
        due = [item["dueDate"] for item in items]
        assert due == sorted(due)

    def test_invalid_sort(self, client, librarian_token):
        resp = client.get("/api/v1/borrowings?sort=title", headers=auth_headers(librarian_token))
        assert resp.get_json()["code"] == "INVALID_SORT"


class TestGetBorrowing:

    def test_borrower_can_read_own_loan(self, app, client, librarian_token):
        book = make_book(client, librarian_token)
        alice = make_user(app, "alice@test.com")
        loan = issue(client, librarian_token, book["id"], alice).get_json()["borrowing"]
        token = login(app.test_client(), "alice@test.com")["accessToken"]

        resp = client.get(f"/api/v1/borrowings/{loan['id']}", headers=auth_headers(token))

        assert resp.status_code == 200
        assert resp.get_json()["borrowing"]["id"] == loan["id"]

    def test_other_student_forbidden(self, app, client, librarian_token):
        book = make_book(client, librarian_token)
        alice = make_user(app, "alice@test.com")
        make_user(app, "bob@test.com")
        loan = issue(client, librarian_token, book["id"], alice).get_json()["borrowing"]
        token = login(app.test_client(), "bob@test.com")["accessToken"]

        resp = client.get(f"/api/v1/borrowings/{loan['id']}", headers=auth_headers(token))

        assert resp.status_code == 403
        assert resp.get_json()["code"] == "FORBIDDEN"

    def test_unknown(self, client, librarian_token):
        resp = client.get("/api/v1/borrowings/99999", headers=auth_headers(librarian_token))
        assert resp.status_code == 404
