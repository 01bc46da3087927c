import smtplib
from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlparse

import pytest

from lending.errors import DeliveryError
from lending.services import notifications
from lending.services.notifications import LogEmailService, SmtpEmailService, build_link


def test_build_link_encodes_token_and_email():
    link = build_link("account/reset-password", "a+b@example.com", "tok/en=")
    query = parse_qs(urlparse(link).query)
    assert query["email"] == ["a+b@example.com"]
    assert query["token"] == ["tok/en="]
    assert urlparse(link).path.endswith("/account/reset-password")


def test_smtp_service_sends_message(monkeypatch):
    client = MagicMock()
    smtp = MagicMock()
    smtp.return_value.__enter__.return_value = client
    monkeypatch.setattr(notifications.smtplib, "SMTP", smtp)

    service = SmtpEmailService(host="mail.local", port=2525, username="bot", password="pw", use_tls=True)
    service.send_password_creation_link("reader@example.com", "reader", "abc")

    smtp.assert_called_once_with("mail.local", 2525, timeout=30)
    client.starttls.assert_called_once()
    client.login.assert_called_once_with("bot", "pw")
    message = client.send_message.call_args[0][0]
    assert message["To"] == "reader@example.com"
    assert message["Subject"].endswith("Password Creation")
    assert "token=abc" in message.get_content()


def test_smtp_failure_becomes_delivery_error(monkeypatch):
    smtp = MagicMock(side_effect=smtplib.SMTPConnectError(421, b"down"))
    monkeypatch.setattr(notifications.smtplib, "SMTP", smtp)

    service = SmtpEmailService(host="mail.local", port=25, username="", use_tls=False)
    with pytest.raises(DeliveryError, match="sending email"):
        service.send_password_reset_link("reader@example.com", "reader", "abc")


def test_log_service_keeps_outbox():
    service = LogEmailService()
    service.send_password_reset_link("reader@example.com", "reader", "abc")
    assert service.outbox[0]["kind"] == "reset"
    assert "token=abc" in service.outbox[0]["link"]


def test_default_email_service_follows_settings(monkeypatch):
    monkeypatch.setattr(notifications.settings, "enable_email_notifications", False)
    assert isinstance(notifications.default_email_service(), LogEmailService)
    monkeypatch.setattr(notifications.settings, "enable_email_notifications", True)
    assert isinstance(notifications.default_email_service(), SmtpEmailService)
