"""
models/registration_otp.py — Pending, unconfirmed registrations.

Holds the submitted profile and the already-bcrypt-hashed password until the
emailed code is confirmed. Only the SHA-256 of the code is stored.

A record is active iff unused, unexpired and attempts < max_attempts.
Several records may exist per email over time; only the latest unused one
matters, and issuing a new code marks older unused ones used.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from shelfwise.app.clock import as_utc, utcnow
from shelfwise.app.extensions import db


class RegistrationOTP(db.Model):
    __tablename__ = "registration_otps"

    __table_args__ = (
        CheckConstraint("attempts >= 0", name="ck_registration_otps_attempts"),
        CheckConstraint("max_attempts > 0", name="ck_registration_otps_max_attempts"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    fullname: Mapped[str] = mapped_column(String(100), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    mobile_number: Mapped[str | None] = mapped_column(String(20), nullable=True)
    college_user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    code_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=5)

    # How many times this registration's code has been re-issued.
    resends: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or utcnow()
        return as_utc(self.expires_at) <= now

    def is_active(self, now: datetime | None = None) -> bool:
        return (
            self.used_at is None
            and not self.is_expired(now)
            and self.attempts < self.max_attempts
        )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<RegistrationOTP id={self.id} email={self.email!r} "
            f"attempts={self.attempts}/{self.max_attempts}>"
        )
