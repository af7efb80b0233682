"""
capabilities.py — Roles and the static role → capability table.

Every role-dependent decision (route guards, list scoping, the menu a client
renders) reads from the tables below instead of branching on role names.
"""

from __future__ import annotations

import enum
from typing import Iterable


class Role(str, enum.Enum):
    STUDENT   = "student"
    LIBRARIAN = "librarian"
    ADMIN     = "admin"


class Capability(str, enum.Enum):
    BOOKS_READ          = "books:read"
    BOOKS_WRITE         = "books:write"
    BORROWINGS_READ_OWN = "borrowings:read_own"
    BORROWINGS_READ_ALL = "borrowings:read_all"
    BORROWINGS_ISSUE    = "borrowings:issue"
    BORROWINGS_RETURN   = "borrowings:return"
    USERS_READ          = "users:read"
    USERS_WRITE         = "users:write"


_STAFF = frozenset({
    Capability.BOOKS_READ,
    Capability.BOOKS_WRITE,
    Capability.BORROWINGS_READ_OWN,
    Capability.BORROWINGS_READ_ALL,
    Capability.BORROWINGS_ISSUE,
    Capability.BORROWINGS_RETURN,
    Capability.USERS_READ,
})

ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.STUDENT: frozenset({
        Capability.BOOKS_READ,
        Capability.BORROWINGS_READ_OWN,
    }),
    Role.LIBRARIAN: _STAFF,
    Role.ADMIN: _STAFF | {Capability.USERS_WRITE},
}

# Landing page after login.
ROLE_HOME: dict[Role, str] = {
    Role.STUDENT:   "/student",
    Role.LIBRARIAN: "/librarian",
    Role.ADMIN:     "/admin",
}

# Sidebar entries per role: (key, path, label).
ROLE_NAV: dict[Role, tuple[tuple[str, str, str], ...]] = {
    Role.STUDENT: (
        ("dashboard",  "/student",            "Dashboard"),
        ("books",      "/student/books",      "Books"),
        ("borrowings", "/student/borrowings", "My Borrowings"),
    ),
    Role.LIBRARIAN: (
        ("dashboard",  "/librarian",            "Dashboard"),
        ("books",      "/librarian/books",      "Books"),
        ("borrowings", "/librarian/borrowings", "Issue / Return"),
    ),
    Role.ADMIN: (
        ("dashboard",  "/admin",            "Dashboard"),
        ("books",      "/admin/books",      "Books"),
        ("borrowings", "/admin/borrowings", "Borrowings"),
        ("users",      "/admin/users",      "Users"),
    ),
}

PRIVILEGED_ROLES: tuple[Role, ...] = (Role.LIBRARIAN, Role.ADMIN)


def _coerce(role: Role | str | None) -> Role | None:
    if role is None:
        return None
    try:
        return Role(role)
    except ValueError:
        return None


def authorize(role: Role | str | None, required_roles: Iterable[Role | str]) -> bool:
    """Pure allow/deny predicate: is `role` one of `required_roles`?"""
    principal = _coerce(role)
    if principal is None:
        return False
    return principal in {Role(r) for r in required_roles}


def has_capability(role: Role | str | None, capability: Capability) -> bool:
    principal = _coerce(role)
    if principal is None:
        return False
    return capability in ROLE_CAPABILITIES[principal]


def describe_role(role: Role | str) -> dict:
    """Client-facing view of a role: sorted capabilities, home path, menu."""
    principal = Role(role)
    return {
        "capabilities": sorted(c.value for c in ROLE_CAPABILITIES[principal]),
        "home": ROLE_HOME[principal],
        "nav": [
            {"key": key, "path": path, "label": label}
            for key, path, label in ROLE_NAV[principal]
        ],
    }
