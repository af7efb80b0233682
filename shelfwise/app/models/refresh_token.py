"""
models/refresh_token.py — RefreshToken table definition.

One row per session grant. The raw secret is never stored: token_hash holds
the SHA-256 hex digest computed by auth_service.hash_secret().

State machine:
  Active  → Revoked   revoked_at set (logout, rotation, password reset,
                      reuse detection). Terminal.
  Active  → Expired   expires_at passed. Terminal, never written.

Rotation links the old row to its successor through replaced_by_token_hash;
a revoked row that has a successor and is presented again is a replay.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shelfwise.app.clock import as_utc, utcnow
from shelfwise.app.extensions import db


class RefreshToken(db.Model):
    __tablename__ = "refresh_tokens"

    id: Mapped[int] = mapped_column(primary_key=True)

    # ON DELETE CASCADE — token is destroyed when its owning user is deleted.
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    token_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
    )

    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    revoked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    replaced_by_token_hash: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    user: Mapped["User"] = relationship(  # noqa: F821
        "User",
        back_populates="refresh_tokens",
    )

    def is_active(self, now: datetime | None = None) -> bool:
        """Active iff not revoked and not expired."""
        now = now or utcnow()
        return self.revoked_at is None and as_utc(self.expires_at) > now

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<RefreshToken id={self.id} "
            f"user_id={self.user_id} "
            f"revoked={self.revoked_at is not None}>"
        )
