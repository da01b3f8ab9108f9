"""
Email Service
=============

Transactional email over SMTP. ``smtplib`` is blocking, so each send
runs in a worker thread. Without SMTP configuration messages are
logged instead of sent.
"""

import asyncio
import html
import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from app.config import settings

logger = logging.getLogger(__name__)

FROM_NAME = "ClawDeck"


class EmailService:
    """Sends sign-in codes and invites."""

    def __init__(self):
        self.smtp_host = settings.SMTP_HOST
        self.smtp_port = settings.SMTP_PORT
        self.smtp_user = settings.SMTP_USER
        self.smtp_password = settings.SMTP_PASSWORD
        self.from_email = settings.SMTP_FROM_EMAIL
        self.use_tls = settings.SMTP_USE_TLS

    def _build_message(self, to_email: str, subject: str, text_content: str, html_content: str) -> MIMEMultipart:
        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = f"{FROM_NAME} <{self.from_email}>"
        message["To"] = to_email
        message.attach(MIMEText(text_content, "plain", "utf-8"))
        message.attach(MIMEText(html_content, "html", "utf-8"))
        return message

    def _deliver(self, to_email: str, message: MIMEMultipart) -> None:
        with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=15) as server:
            if self.use_tls:
                server.starttls(context=ssl.create_default_context())
            if self.smtp_user and self.smtp_password:
                server.login(self.smtp_user, self.smtp_password)
            server.sendmail(self.from_email, [to_email], message.as_string())

    async def send_email(
        self,
        to_email: str,
        subject: str,
        text_content: str,
        html_content: Optional[str] = None,
    ) -> bool:
        """
        Send a multipart email.

        Returns:
            True if sent (or logged when SMTP is not configured), False on failure
        """
        if not settings.smtp_configured:
            logger.info("Email not sent (SMTP not configured) to=%s subject=%s\n%s", to_email, subject, text_content)
            return True

        message = self._build_message(
            to_email,
            subject,
            text_content,
            html_content or f"<pre>{html.escape(text_content)}</pre>",
        )
        try:
            await asyncio.to_thread(self._deliver, to_email, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed to send email to %s: %s", to_email, e)
            return False

        logger.info("Email sent to %s", to_email)
        return True

    async def send_sign_in_code(self, email: str, code: str, ttl_minutes: int) -> bool:
        subject = "Your ClawDeck sign-in code"
        text_content = (
            f"Your ClawDeck sign-in code is: {code}\n\n"
            f"It expires in {ttl_minutes} minutes. "
            "If you didn't request this, you can ignore this email."
        )
        html_content = (
            "<p>Your ClawDeck sign-in code is:</p>"
            f'<p style="font-size:28px;font-weight:bold;letter-spacing:4px">{html.escape(code)}</p>'
            f"<p>It expires in {html.escape(str(ttl_minutes))} minutes. "
            "If you didn't request this, you can ignore this email.</p>"
        )
        return await self.send_email(email, subject, text_content, html_content)

    async def send_invite(self, email: str, code: str) -> bool:
        signup_url = f"{settings.FRONTEND_URL.rstrip('/')}/signup?invite={code}"
        subject = "You're invited to ClawDeck"
        text_content = (
            "You've been invited to ClawDeck.\n\n"
            f"Your invite code: {code}\n"
            f"Sign up here: {signup_url}\n"
        )
        html_content = (
            "<p>You've been invited to ClawDeck.</p>"
            f"<p>Your invite code: <strong>{html.escape(code)}</strong></p>"
            f'<p><a href="{html.escape(signup_url, quote=True)}">Create your account</a></p>'
        )
        return await self.send_email(email, subject, text_content, html_content)
