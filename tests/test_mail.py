"""Unit tests for auth/mail.py -- activation mail composition and delivery.

SMTP is patched with unittest.mock; no network connection is made.
"""

from __future__ import annotations

import logging
import smtplib
from unittest.mock import patch

import pytest

from auth.errors import NotificationDeliveryFailed
from auth.mail import ACTIVATION_SUBJECT, MailSender, build_activation_email, deliver
from auth.models import NotificationEmail, User

_EMAIL = NotificationEmail(subject="Hello", recipient="alice@example.com", body="body text")


def test_activation_email_embeds_link() -> None:
    user = User(username="alice", email="alice@example.com", hashed_password="x")
    email = build_activation_email(user, "abc123", "https://auth.example.com/verify/")
    assert email.subject == ACTIVATION_SUBJECT
    assert email.recipient == "alice@example.com"
    assert "https://auth.example.com/verify/abc123" in email.body


class TestMailSender:
    def test_disabled_sender_logs_instead_of_sending(self, caplog: pytest.LogCaptureFixture) -> None:
        sender = MailSender(host="")
        with patch("auth.mail.smtplib.SMTP") as smtp_cls, caplog.at_level(logging.INFO, logger="tokengate.auth.mail"):
            sender.send(_EMAIL)
        smtp_cls.assert_not_called()
        assert "alice@example.com" in caplog.text

    def test_sends_via_smtp(self) -> None:
        sender = MailSender(host="smtp.example.com", port=2525, username="mailer", password="pw")
        with patch("auth.mail.smtplib.SMTP") as smtp_cls:
            sender.send(_EMAIL)
        smtp_cls.assert_called_once_with("smtp.example.com", 2525, timeout=10.0)
        server = smtp_cls.return_value.__enter__.return_value
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("mailer", "pw")
        message = server.send_message.call_args.args[0]
        assert message["To"] == "alice@example.com"
        assert message["Subject"] == "Hello"

    def test_transport_error_raises_delivery_failed(self) -> None:
        sender = MailSender(host="smtp.example.com")
        with patch("auth.mail.smtplib.SMTP", side_effect=OSError("connection refused")):
            with pytest.raises(NotificationDeliveryFailed):
                sender.send(_EMAIL)

    def test_smtp_error_raises_delivery_failed(self) -> None:
        sender = MailSender(host="smtp.example.com", starttls=False)
        with patch("auth.mail.smtplib.SMTP") as smtp_cls:
            server = smtp_cls.return_value.__enter__.return_value
            server.send_message.side_effect = smtplib.SMTPRecipientsRefused({})
            with pytest.raises(NotificationDeliveryFailed):
                sender.send(_EMAIL)
        server.starttls.assert_not_called()


def test_deliver_swallows_and_logs_failure(caplog: pytest.LogCaptureFixture) -> None:
    sender = MailSender(host="smtp.example.com")
    with patch("auth.mail.smtplib.SMTP", side_effect=OSError("down")):
        assert deliver(sender, _EMAIL) is False
    assert "Notification delivery failed" in caplog.text


def test_deliver_reports_success() -> None:
    with patch("auth.mail.smtplib.SMTP"):
        assert deliver(MailSender(host="smtp.example.com"), _EMAIL) is True
