from __future__ import annotations

import smtplib
import ssl
from email.mime.text import MIMEText
from typing import Optional, Protocol

from estategate.logging import get_logger
from estategate.storage.models import SecurityToken, User

logger = get_logger(__name__)


class MailSender(Protocol):
    """Outbound notifications sent by the account workflows."""

    def send_account_created(self, user: User, token: SecurityToken) -> bool: ...

    def send_account_confirmed(self, user: User) -> bool: ...

    def send_password_recover_code(self, user: User, token: SecurityToken) -> bool: ...

    def send_password_changed(self, user: User) -> bool: ...


class SmtpMailSender:
    """SMTP mail sender; logs instead of sending when SMTP is not configured."""

    def __init__(
        self,
        *,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        smtp_use_tls: bool = True,
        from_email: Optional[str] = None,
        from_name: str = "MyHome",
        base_url: Optional[str] = None,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.base_url = (base_url or "http://localhost:8080").rstrip("/")

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def _connect(self) -> smtplib.SMTP:
        context = ssl.create_default_context()
        if self.smtp_use_tls:
            server = smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30)
        else:
            server = smtplib.SMTP_SSL(
                self.smtp_host, self.smtp_port, context=context, timeout=30
            )
        try:
            if self.smtp_use_tls:
                server.starttls(context=context)
            if self.smtp_user and self.smtp_password:
                server.login(self.smtp_user, self.smtp_password)
        except Exception:
            server.close()
            raise
        return server

    def _send_email(self, to_email: str, subject: str, body: str) -> bool:
        """Deliver one plain-text message; False when delivery failed."""
        if not self.is_configured:
            logger.info("email_dev_mode", to=to_email, subject=subject)
            return True

        msg = MIMEText(body, "plain")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        try:
            with self._connect() as server:
                server.sendmail(self.from_email, to_email, msg.as_string())
        except (smtplib.SMTPException, ssl.SSLError, OSError) as exc:
            logger.error(
                "email_send_failed",
                to=to_email,
                host=self.smtp_host,
                port=self.smtp_port,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return False

        logger.info("email_sent", to=to_email, subject=subject)
        return True

    def send_account_created(self, user: User, token: SecurityToken) -> bool:
        link = f"{self.base_url}/users/{user.id}/email-confirm/{token.value}"
        body = (
            "Your account has been created.\n\n"
            f"Confirm your email address by visiting:\n{link}\n\n"
            f"This link expires at {token.expires_at.isoformat()}.\n"
        )
        return self._send_email(user.email, "Confirm your account", body)

    def send_account_confirmed(self, user: User) -> bool:
        body = "Your email address has been confirmed.\n"
        return self._send_email(user.email, "Account confirmed", body)

    def send_password_recover_code(self, user: User, token: SecurityToken) -> bool:
        body = (
            "We received a request to reset your password.\n\n"
            f"Your recovery code: {token.value}\n\n"
            f"The code expires at {token.expires_at.isoformat()}. "
            "If you didn't request this, you can ignore this email.\n"
        )
        return self._send_email(user.email, "Password recovery code", body)

    def send_password_changed(self, user: User) -> bool:
        body = "Your password has been changed.\n"
        return self._send_email(user.email, "Password changed", body)


__all__ = ["MailSender", "SmtpMailSender"]
