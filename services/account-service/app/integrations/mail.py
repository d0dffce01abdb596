"""Outbound mail delivery for activation and password restore codes."""

from __future__ import annotations

from email.message import EmailMessage
import logging
import smtplib

from ..config import Settings

logger = logging.getLogger(__name__)

ACTIVATION_SUBJECT = "Activate your account"
RESTORE_SUBJECT = "Confirm your password change"


class SmtpMailSender:
    """Sends one message per SMTP connection; callers decide how to handle failures."""

    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        *,
        username: str = "",
        password: str = "",
        use_tls: bool = False,
        timeout: float = 10.0,
    ) -> None:
        self._host = host
        self._port = port
        self._sender = sender
        self._username = username
        self._password = password
        self._use_tls = use_tls
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "SmtpMailSender":
        return cls(
            settings.smtp_host,
            settings.smtp_port,
            settings.mail_sender,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
        )

    def send_activation(self, email: str, code: str) -> None:
        self._send(
            email,
            ACTIVATION_SUBJECT,
            f"Your activation code is {code}. It expires in a few minutes.",
        )

    def send_restore(self, email: str, code: str) -> None:
        self._send(
            email,
            RESTORE_SUBJECT,
            f"Use the code {code} to confirm your new password. "
            "If you did not ask for a password change you can ignore this message.",
        )

    def _send(self, recipient: str, subject: str, body: str) -> None:
        message = EmailMessage()
        message["From"] = self._sender
        message["To"] = recipient
        message["Subject"] = subject
        message.set_content(body)

        with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as conn:
            if self._use_tls:
                conn.starttls()
            if self._username:
                conn.login(self._username, self._password)
            conn.send_message(message)
        logger.debug("sent %r to %s", subject, recipient)


class LoggingMailSender:
    """Stand-in used when mail delivery is switched off; codes only reach the log."""

    def send_activation(self, email: str, code: str) -> None:
        logger.info("activation code for %s is %s", email, code)

    def send_restore(self, email: str, code: str) -> None:
        logger.info("restore code for %s is %s", email, code)
