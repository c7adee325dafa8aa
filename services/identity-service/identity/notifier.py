"""Outbound email: message templates and the SMTP-backed notifier."""

from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass
from email.mime.text import MIMEText

from .domain.errors import NotificationError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Message:
    subject: str
    body: str


def confirmation_message(base_url: str, token: str, ttl_hours: int) -> Message:
    """Build the verification email sent when registration is initiated."""
    link = f"{base_url.rstrip('/')}/register/complete?token={token}"
    body = (
        "Hello!\n\n"
        "Please confirm your email and choose a password by following the link below:\n"
        f"{link}\n\n"
        f"This link will expire in {ttl_hours} hours.\n\n"
        "If you didn't create this account, please ignore this email.\n"
    )
    return Message(subject="Confirm Your Email", body=body)


def reset_message(base_url: str, token: str, ttl_hours: int) -> Message:
    """Build the password reset email."""
    link = f"{base_url.rstrip('/')}/password/complete?token={token}"
    body = (
        "Hello!\n\n"
        "We received a request to reset your password. Choose a new one here:\n"
        f"{link}\n\n"
        f"This link will expire in {ttl_hours} hours.\n\n"
        "If you didn't request a reset, you can ignore this email.\n"
    )
    return Message(subject="Reset Your Password", body=body)


class SmtpNotifier:
    """Deliver plain-text messages through an SMTP relay."""

    def __init__(
        self,
        *,
        host: str,
        port: int,
        sender: str,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self._host = host
        self._port = port
        self._sender = sender
        self._username = username
        self._password = password
        self._use_tls = use_tls
        self._timeout = timeout

    def send(self, to: str, subject: str, body: str) -> None:
        """Send one message, raising ``NotificationError`` if the relay refuses it."""
        message = MIMEText(body, "plain", "utf-8")
        message["Subject"] = subject
        message["From"] = self._sender
        message["To"] = to

        try:
            with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as smtp:
                if self._use_tls:
                    smtp.starttls()
                if self._username:
                    smtp.login(self._username, self._password)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("failed to send email via %s:%s: %s", self._host, self._port, exc)
            raise NotificationError(str(exc)) from exc
