"""
mail/sender.py -- SMTP notifier for welcome and password-reset emails.

EmailNotifier satisfies the Notifier protocol in auth/flows.py:
    send_welcome(recipient, url)
    send_password_reset(recipient, reset_url)

Both raise MailDeliveryError when the message could not be handed to the SMTP
server. What a failure means is the caller's decision (signup keeps the
account, forgot-password rolls the reset token back).

Dev mode: with no SMTP host configured the message is logged instead of sent
and the call succeeds, so local signup and reset flows work without a mail
server. The reset link in that log line is a live credential -- never enable
dev mode on a shared deployment.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Protocol

logger = logging.getLogger("tourbook.mail")

_SMTP_TIMEOUT = 30


class Recipient(Protocol):
    name: str
    email: str


class MailDeliveryError(Exception):
    """The message could not be delivered to the SMTP server."""


def _redact(email: str) -> str:
    """Redact an address for logging to avoid PII leakage."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


def _first_name(recipient: Recipient) -> str:
    return recipient.name.split(" ")[0] if recipient.name else "there"


class EmailNotifier:
    def __init__(
        self,
        *,
        smtp_host: str = "",
        smtp_port: int = 587,
        smtp_user: str = "",
        smtp_password: str = "",
        smtp_use_tls: bool = True,
        email_from: str = "Tourbook <hello@tourbook.io>",
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.email_from = email_from

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host)

    def send_welcome(self, recipient: Recipient, url: str) -> None:
        self._send(
            recipient,
            subject="Welcome to the Tourbook Family!",
            body=(
                f"Hi {_first_name(recipient)},\n\n"
                "Welcome to Tourbook, we're glad to have you!\n"
                f"Upload a photo and complete your profile here: {url}\n\n"
                "If you need any help with booking your next tour, just reply to this email.\n"
            ),
        )

    def send_password_reset(self, recipient: Recipient, reset_url: str) -> None:
        self._send(
            recipient,
            subject="Your password reset token (valid for only 10 minutes)",
            body=(
                f"Hi {_first_name(recipient)},\n\n"
                "Forgot your password? Submit a PATCH request with your new password "
                f"and passwordConfirm to: {reset_url}\n\n"
                "If you didn't forget your password, please ignore this email.\n"
            ),
        )

    def _send(self, recipient: Recipient, subject: str, body: str) -> None:
        if not self.is_configured:
            logger.info("Email (dev mode, not sent) to=%s subject=%r\n%s", _redact(recipient.email), subject, body)
            return

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.email_from
        msg["To"] = recipient.email
        msg.set_content(body)

        context = ssl.create_default_context()
        try:
            if self.smtp_use_tls:
                with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=_SMTP_TIMEOUT) as server:
                    server.starttls(context=context)
                    self._login(server)
                    server.send_message(msg)
            else:
                with smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, context=context, timeout=_SMTP_TIMEOUT) as server:
                    self._login(server)
                    server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error(
                "Email send failed to=%s host=%s error=%s: %s",
                _redact(recipient.email),
                self.smtp_host,
                type(exc).__name__,
                exc,
            )
            raise MailDeliveryError(str(exc)) from exc

        logger.info("Email sent to=%s subject=%r", _redact(recipient.email), subject)

    def _login(self, server: smtplib.SMTP) -> None:
        if self.smtp_user and self.smtp_password:
            server.login(self.smtp_user, self.smtp_password)
