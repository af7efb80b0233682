"""
client.py — Synchronous HTTP client for the Shelfwise API.

The access token lives in memory on the client; the refresh token lives only
in the httpx cookie jar (it is an httpOnly cookie scoped to /api/v1/auth).

When a protected call answers 401, the client exchanges the cookie for a new
access token and retries the call exactly once. Concurrent 401s share one
refresh through SingleFlight, so a burst of expired requests costs a single
POST /auth/refresh. If the refresh fails the local session is dropped and
SessionExpired is raised.

Usage:
    client = LibraryClient("http://localhost:5000")
    client.login("admin@library.local", "Password123!")
    books = client.list_books(q="tolkien")
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Hashable

import httpx

logger = logging.getLogger(__name__)

# Calls that must never trigger a refresh-and-retry.
_NO_REFRESH_PATHS = frozenset({
    "/auth/login",
    "/auth/refresh",
    "/auth/logout",
    "/auth/register",
    "/auth/register/resend",
    "/auth/register/verify",
    "/auth/forgot-password",
    "/auth/reset-password",
})


class ApiError(Exception):
    """Non-2xx response; carries the server's error code and message."""

    def __init__(self, status_code: int, code: str | None, message: str, payload: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.payload = payload

    def __repr__(self) -> str:
        return f"ApiError(status_code={self.status_code}, code={self.code!r}, message={self.message!r})"


class SessionExpired(ApiError):
    """The refresh cookie was rejected; the user must sign in again."""


# ── Single-flight ──────────────────────────────────────────────────────────

class _Call:
    __slots__ = ("done", "result", "error", "waiters")

    def __init__(self) -> None:
        self.done = threading.Event()
        self.result: Any = None
        self.error: BaseException | None = None
        self.waiters = 0


class SingleFlight:
    """
    Keyed in-flight call map.

    The first caller for a key runs `fn`. Callers arriving while it runs
    block and receive the same result, or the same exception. The key is
    cleared when the call finishes, so the next caller starts a new call.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._calls: dict[Hashable, _Call] = {}

    def do(self, key: Hashable, fn: Callable[[], Any]) -> Any:
        with self._lock:
            call = self._calls.get(key)
            if call is not None:
                call.waiters += 1
                leader = False
            else:
                call = _Call()
                self._calls[key] = call
                leader = True

        if not leader:
            call.done.wait()
            if call.error is not None:
                raise call.error
            return call.result

        try:
            call.result = fn()
        except BaseException as exc:
            call.error = exc
            raise
        finally:
            with self._lock:
                del self._calls[key]
            call.done.set()
        return call.result

    def in_flight(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._calls


# ── Client ─────────────────────────────────────────────────────────────────

class LibraryClient:

    def __init__(
            self,
            base_url: str,
            transport: httpx.BaseTransport | None = None,
            api_prefix: str = "/api/v1",
            timeout: float = 10.0,
    ) -> None:
        self._http = httpx.Client(
            base_url=base_url.rstrip("/") + api_prefix,
            transport=transport,
            timeout=timeout,
        )
        self._flight = SingleFlight()
        self._token_lock = threading.Lock()
        self.access_token: str | None = None
        self.user: dict | None = None
        self.refresh_count = 0

    # ── Session state ──────────────────────────────────────────────────────

    def _set_session(self, payload: dict) -> None:
        with self._token_lock:
            self.access_token = payload.get("accessToken")
            if "user" in payload:
                self.user = payload["user"]

    def _clear_session(self) -> None:
        with self._token_lock:
            self.access_token = None
            self.user = None
        self._http.cookies.clear()

    # ── Transport ──────────────────────────────────────────────────────────

    def _send(self, method: str, path: str, token: str | None, **kwargs) -> httpx.Response:
        headers = dict(kwargs.pop("headers", None) or {})
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return self._http.request(method, path, headers=headers, **kwargs)

    def request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """
        Sends a request with the current access token. On 401 from a
        protected endpoint: refresh once (shared across threads) and retry once.
        """
        token = self.access_token
        response = self._send(method, path, token, **kwargs)

        if response.status_code != 401 or path in _NO_REFRESH_PATHS:
            return response

        with self._token_lock:
            current = self.access_token
        if current is None or current == token:
            self.refresh()

        return self._send(method, path, self.access_token, **kwargs)

    def refresh(self) -> str:
        """Exchanges the refresh cookie for a new access token (single-flight)."""
        return self._flight.do("refresh", self._do_refresh)

    def _do_refresh(self) -> str:
        self.refresh_count += 1
        response = self._http.post("/auth/refresh")
        if response.status_code != 200:
            self._clear_session()
            body = _json_or_none(response) or {}
            raise SessionExpired(
                response.status_code,
                body.get("code"),
                body.get("error", "Session expired. Please sign in again."),
                body,
            )
        self._set_session(response.json())
        logger.debug("Access token refreshed")
        return self.access_token

    def _call(self, method: str, path: str, **kwargs) -> Any:
        response = self.request(method, path, **kwargs)
        if response.is_success:
            return _json_or_none(response)
        body = _json_or_none(response) or {}
        raise ApiError(
            response.status_code,
            body.get("code"),
            body.get("error", response.reason_phrase),
            body,
        )

    def _list(self, path: str, params: dict) -> dict:
        clean = {k: v for k, v in params.items() if v is not None}
        return self._call("GET", path, params=clean)

    # ── Auth ───────────────────────────────────────────────────────────────

    def login(self, email: str, password: str) -> dict:
        payload = self._call("POST", "/auth/login", json={"email": email, "password": password})
        self._set_session(payload)
        return payload["user"]

    def logout(self) -> None:
        try:
            self._call("POST", "/auth/logout")
        finally:
            self._clear_session()

    def register(self, fullname: str, email: str, password: str, **profile) -> dict:
        body = {"fullname": fullname, "email": email, "password": password, **profile}
        return self._call("POST", "/auth/register", json=body)

    def resend_registration(self, email: str) -> dict:
        return self._call("POST", "/auth/register/resend", json={"email": email})

    def verify_registration(self, email: str, code: str) -> dict:
        payload = self._call("POST", "/auth/register/verify", json={"email": email, "code": code})
        self._set_session(payload)
        return payload["user"]

    def me(self) -> dict:
        return self._call("GET", "/auth/me")["user"]

    # ── Catalogue and ledger ───────────────────────────────────────────────

    def list_books(self, page: int | None = None, limit: int | None = None,
                   q: str | None = None, tags: str | None = None, sort: str | None = None) -> dict:
        return self._list("/books", {"page": page, "limit": limit, "q": q, "tags": tags, "sort": sort})

    def issue(self, book_id: int, user_id: int) -> dict:
        return self._call("POST", "/borrowings", json={"bookId": book_id, "userId": user_id})["borrowing"]

    def return_loan(self, borrowing_id: int) -> dict:
        return self._call("POST", f"/borrowings/{borrowing_id}/return")["borrowing"]

    def list_borrowings(self, **filters) -> dict:
        return self._list("/borrowings", filters)

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "LibraryClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def _json_or_none(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None
