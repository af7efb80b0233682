"""
mailer.py — Outbound email collaborator.

Delivery transport is not part of the domain; services only call
`mailer.send(to=..., subject=..., text=...)`. The backend is picked from
MAIL_BACKEND at init_app time:

  console  log the message instead of sending it (development default)
  smtp     deliver through MAIL_SERVER with smtplib
  memory   append to an in-process outbox (testing)
"""

from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage

from flask import Flask, current_app

logger = logging.getLogger(__name__)

_BACKENDS = ("console", "smtp", "memory")


@dataclass
class Message:
    to: str
    subject: str
    text: str
    html: str | None = None
    sender: str | None = None


class _MailState:

    def __init__(self, app: Flask) -> None:
        backend = app.config.get("MAIL_BACKEND", "console")
        if backend not in _BACKENDS:
            raise ValueError(
                f"MAIL_BACKEND must be one of {', '.join(_BACKENDS)}; got {backend!r}."
            )
        self.backend = backend
        self.config = app.config
        self.outbox: list[Message] = []


class Mailer:
    """Flask extension; one instance, state stored per app in app.extensions."""

    def __init__(self, app: Flask | None = None) -> None:
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        app.extensions["shelfwise-mailer"] = _MailState(app)

    @property
    def _state(self) -> _MailState:
        return current_app.extensions["shelfwise-mailer"]

    @property
    def outbox(self) -> list[Message]:
        """Messages captured by the memory backend (current app only)."""
        return self._state.outbox

    def send(
            self,
            to: str,
            subject: str,
            text: str,
            html: str | None = None,
    ) -> None:
        state = self._state
        message = Message(
            to=to,
            subject=subject,
            text=text,
            html=html,
            sender=state.config.get("MAIL_DEFAULT_SENDER"),
        )

        if state.backend == "memory":
            state.outbox.append(message)
        elif state.backend == "console":
            logger.info("[mail not configured] to=%s subject=%r body=%s", to, subject, text)
        else:
            self._send_smtp(message, state)

    @staticmethod
    def _send_smtp(message: Message, state: _MailState) -> None:
        config = state.config
        email = EmailMessage()
        email["From"] = message.sender
        email["To"] = message.to
        email["Subject"] = message.subject
        email.set_content(message.text)
        if message.html:
            email.add_alternative(message.html, subtype="html")

        port = int(config.get("MAIL_PORT", 587))
        if port == 465:
            smtp = smtplib.SMTP_SSL(config["MAIL_SERVER"], port, timeout=10)
        else:
            smtp = smtplib.SMTP(config["MAIL_SERVER"], port, timeout=10)
        with smtp:
            if port != 465 and config.get("MAIL_USE_TLS", True):
                smtp.starttls()
            if config.get("MAIL_USERNAME"):
                smtp.login(config["MAIL_USERNAME"], config.get("MAIL_PASSWORD", ""))
            smtp.send_message(email)
        logger.info("Mail sent to=%s subject=%r", message.to, message.subject)
