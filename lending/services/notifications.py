import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr
from typing import List, Tuple
from urllib.parse import urlencode

from lending.config import settings
from lending.errors import DeliveryError

logger = logging.getLogger(__name__)


def build_link(path: str, email: str, token: str) -> str:
    query = urlencode({"token": token, "email": email})
    return f"{settings.app_base_url.rstrip('/')}/{path.lstrip('/')}?{query}"


def creation_message(username: str, link: str) -> Tuple[str, str]:
    subject = f"{settings.app_name} - Password Creation"
    body = (
        f"<h3>Hello {username},</h3>"
        f"<p>Your {settings.app_name} account has been created.</p>"
        "<p>To set your password:</p>"
        f"<a href='{link}'>Set My Password</a>"
        "<br/><br/><small>This link may expire after a short period.</small>"
    )
    return subject, body


def reset_message(username: str, link: str) -> Tuple[str, str]:
    subject = f"{settings.app_name} - Password Reset"
    body = (
        f"<h3>Hello {username},</h3>"
        "<p>We received a password reset request.</p>"
        "<p>Click the link below to set a new password:</p>"
        f"<a href='{link}'>Reset My Password</a>"
        "<br/><br/><small>If you did not request this, you can safely ignore this email.</small>"
    )
    return subject, body


class SmtpEmailService:
    """Sends password links through the configured SMTP server."""

    def __init__(self, host: str = None, port: int = None, username: str = None, password: str = None,
                 use_tls: bool = None):
        self.host = host or settings.smtp_host
        self.port = port or settings.smtp_port
        self.username = username if username is not None else settings.smtp_username
        self.password = password if password is not None else settings.smtp_password
        self.use_tls = settings.smtp_use_tls if use_tls is None else use_tls

    def send_password_creation_link(self, email: str, username: str, token: str) -> None:
        subject, body = creation_message(username, build_link("account/create-password", email, token))
        self._send(email, subject, body)

    def send_password_reset_link(self, email: str, username: str, token: str) -> None:
        subject, body = reset_message(username, build_link("account/reset-password", email, token))
        self._send(email, subject, body)

    def _send(self, to_email: str, subject: str, html_body: str) -> None:
        message = EmailMessage()
        message["From"] = formataddr((settings.smtp_from_name, settings.smtp_from_email))
        message["To"] = to_email
        message["Subject"] = subject
        message.set_content(html_body, subtype="html")

        try:
            with smtplib.SMTP(self.host, self.port, timeout=30) as client:
                if self.use_tls:
                    client.starttls()
                if self.username:
                    client.login(self.username, self.password or "")
                client.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("E-posta gönderilemedi (%s): %s", to_email, exc)
            raise DeliveryError(f"An error occurred while sending email: {exc}") from exc
        logger.info("E-posta gönderildi: %s (%s)", to_email, subject)


class LogEmailService:
    """Writes password links to the log instead of sending mail.

    Used when ENABLE_EMAIL_NOTIFICATIONS is off; the sent messages are also
    kept in ``outbox`` for inspection.
    """

    def __init__(self) -> None:
        self.outbox: List[dict] = []

    def send_password_creation_link(self, email: str, username: str, token: str) -> None:
        self._record("creation", email, username, token, build_link("account/create-password", email, token))

    def send_password_reset_link(self, email: str, username: str, token: str) -> None:
        self._record("reset", email, username, token, build_link("account/reset-password", email, token))

    def _record(self, kind: str, email: str, username: str, token: str, link: str) -> None:
        self.outbox.append({"kind": kind, "email": email, "username": username, "token": token, "link": link})
        logger.info("E-posta bildirimleri kapalı; %s bağlantısı %s için: %s", kind, email, link)


def default_email_service():
    if settings.enable_email_notifications:
        return SmtpEmailService()
    return LogEmailService()
