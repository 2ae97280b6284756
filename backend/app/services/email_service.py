"""Transactional email delivery over SMTP"""

from __future__ import annotations

import html
import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from app.config import settings

logger = logging.getLogger(__name__)


def redact_email(email: str) -> str:
    """Keep enough of an address to correlate logs without exposing it."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class EmailService:
    """Sends the password reset email; reports delivery with a boolean."""

    def __init__(
        self,
        *,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_username: Optional[str] = None,
        smtp_password: Optional[str] = None,
        from_email: Optional[str] = None,
        from_name: str = "ToDo Center",
        use_tls: bool = True,
        timeout: int = 10,
        frontend_url: str = "http://localhost:5173",
        reset_ttl_minutes: int = 15,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_username = smtp_username or ""
        self.smtp_password = smtp_password or ""
        self.from_email = from_email or smtp_username
        self.from_name = from_name
        self.use_tls = use_tls
        self.timeout = timeout
        self.frontend_url = frontend_url.rstrip("/")
        self.reset_ttl_minutes = reset_ttl_minutes

    @classmethod
    def from_settings(cls) -> "EmailService":
        return cls(
            smtp_host=settings.SMTP_HOST,
            smtp_port=settings.SMTP_PORT,
            smtp_username=settings.SMTP_USERNAME,
            smtp_password=settings.SMTP_PASSWORD,
            from_email=settings.SMTP_FROM_EMAIL,
            from_name=settings.SMTP_FROM_NAME,
            use_tls=settings.SMTP_USE_TLS,
            timeout=settings.SMTP_TIMEOUT_SECONDS,
            frontend_url=settings.FRONTEND_URL,
            reset_ttl_minutes=settings.PASSWORD_RESET_TOKEN_MINUTES,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def reset_url(self, token: str) -> str:
        return f"{self.frontend_url}/reset?token={token}"

    def build_reset_message(self, to_email: str, token: str, display_name: str) -> MIMEMultipart:
        reset_url = self.reset_url(token)
        name = html.escape(display_name or "")

        text_body = (
            f"Hello {display_name},\n\n"
            "We received a request to reset your ToDo Center password.\n"
            f"Open this link to choose a new one: {reset_url}\n\n"
            f"The link expires in {self.reset_ttl_minutes} minutes and works only once.\n"
            "If you did not ask for this, you can ignore this email.\n"
        )
        html_body = f"""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
  <h2 style="color: #333;">Reset your password</h2>
  <p>Hello <strong>{name}</strong>,</p>
  <p>We received a request to reset your ToDo Center password.</p>
  <p style="text-align: center; margin: 30px 0;">
    <a href="{html.escape(reset_url)}"
       style="background-color: #4CAF50; color: white; padding: 15px 30px; text-decoration: none; border-radius: 5px;">
      Reset password
    </a>
  </p>
  <ul style="color: #666;">
    <li>This link expires in <strong>{self.reset_ttl_minutes} minutes</strong>.</li>
    <li>It can be used only once.</li>
    <li>If you did not ask for this, ignore this email.</li>
  </ul>
</div>
"""
        msg = MIMEMultipart("alternative")
        msg["Subject"] = "Reset your password - ToDo Center"
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))
        return msg

    def send_reset_email(self, to_email: str, token: str, display_name: str) -> bool:
        """
        Deliver the reset link

        Returns:
            bool: True once the SMTP server accepted the message
        """
        if not self.is_configured:
            logger.warning("SMTP not configured; reset email to %s not sent", redact_email(to_email))
            return False

        msg = self.build_reset_message(to_email, token, display_name)
        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls(context=ssl.create_default_context())
                if self.smtp_username and self.smtp_password:
                    server.login(self.smtp_username, self.smtp_password)
                server.sendmail(self.from_email, [to_email], msg.as_string())
        except (smtplib.SMTPException, ssl.SSLError, OSError) as exc:
            logger.error(
                "Reset email to %s failed: %s: %s",
                redact_email(to_email),
                type(exc).__name__,
                exc,
            )
            return False

        logger.info("Reset email sent to %s", redact_email(to_email))
        return True
