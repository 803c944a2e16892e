"""
auth/mail.py -- Activation email composition and best-effort delivery.

MailSender talks SMTP through the standard library's smtplib. When no
SMTP_HOST is configured (local development) the message is written to the
log instead, so the activation link is still reachable.

Delivery is best-effort. MailSender.send() raises NotificationDeliveryFailed
on any transport error; deliver() is the wrapper the AuthService schedules,
and it logs that failure and returns. A signup that reached the database has
succeeded whether or not the mail went out.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage

from auth.errors import NotificationDeliveryFailed
from auth.models import NotificationEmail, User
from core.config import Settings

logger = logging.getLogger("tokengate.auth.mail")

ACTIVATION_SUBJECT = "Please activate your account"


def build_activation_email(user: User, token: str, activation_base_url: str) -> NotificationEmail:
    """Compose the activation message for a freshly registered user."""
    activation_url = f"{activation_base_url.rstrip('/')}/{token}"
    body = (
        f"Hi {user.username},\n\n"
        "Thank you for signing up, click on the link below to activate your account:\n"
        f"{activation_url}\n\n"
        "If you did not create an account, you can ignore this email.\n"
    )
    return NotificationEmail(subject=ACTIVATION_SUBJECT, recipient=user.email, body=body)


class MailSender:
    """Send NotificationEmail messages over SMTP."""

    def __init__(
        self,
        host: str = "",
        port: int = 587,
        username: str = "",
        password: str = "",
        from_address: str = "no-reply@tokengate.local",
        starttls: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_address = from_address
        self.starttls = starttls
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> MailSender:
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            from_address=settings.mail_from,
            starttls=settings.smtp_starttls,
            timeout=settings.smtp_timeout_seconds,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.host)

    def send(self, email: NotificationEmail) -> None:
        """Hand one message to the SMTP server.

        Raises:
            NotificationDeliveryFailed: connection, TLS, auth, or send error.
        """
        if not self.enabled:
            logger.info(
                "SMTP not configured; activation mail for %s not sent:\n%s",
                email.recipient,
                email.body,
            )
            return

        msg = EmailMessage()
        msg["Subject"] = email.subject
        msg["From"] = self.from_address
        msg["To"] = email.recipient
        msg.set_content(email.body)

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                if self.starttls:
                    server.starttls()
                if self.username:
                    server.login(self.username, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationDeliveryFailed(f"Could not send email to {email.recipient}: {exc}") from exc
        logger.info("Activation email sent to %s", email.recipient)


def deliver(sender: MailSender, email: NotificationEmail) -> bool:
    """Send `email`, logging instead of raising on failure.

    Returns True when the sender accepted the message.
    """
    try:
        sender.send(email)
    except NotificationDeliveryFailed:
        logger.exception("Notification delivery failed for %s", email.recipient)
        return False
    return True
