"""Transactional email over SMTP."""

import html
import logging
from email.message import EmailMessage
from email.utils import formataddr
from urllib.parse import urlencode

import aiosmtplib

from src.config.settings import settings

logger = logging.getLogger(__name__)


class EmailDeliveryError(Exception):
    """Raised when the SMTP server could not be reached or refused the message."""


def _layout(title: str, body_html: str) -> str:
    return (
        "<!DOCTYPE html>"
        '<html><body style="font-family: Arial, sans-serif; color: #333; max-width: 600px; margin: 0 auto;">'
        f'<h2 style="color: #2c3e50;">{html.escape(title)}</h2>'
        f"{body_html}"
        f'<p style="color: #888; font-size: 12px;">{html.escape(settings.email_from_name)}</p>'
        "</body></html>"
    )


def _button(url: str, label: str) -> str:
    return (
        f'<p><a href="{html.escape(url)}" style="background: #3498db; color: #fff; padding: 10px 20px; '
        f'text-decoration: none; border-radius: 4px;">{html.escape(label)}</a></p>'
        f'<p style="font-size: 12px;">Or copy this link into your browser: {html.escape(url)}</p>'
    )


def client_link(path: str, token: str) -> str:
    """Build a link into the web client carrying ``token`` as a query parameter."""
    return f"{settings.client_url.rstrip('/')}{path}?{urlencode({'token': token})}"


class EmailService:
    """Sends the account emails (verification, password reset, welcome)."""

    async def send_email(self, to: str, subject: str, html_body: str, text_body: str | None = None) -> bool:
        """Send one multipart (text + HTML) message.

        Returns:
            True if the message was handed to the SMTP server, False if SMTP
            is not configured and sending was skipped

        Raises:
            EmailDeliveryError: If the SMTP exchange fails

        """
        if not settings.smtp_host:
            logger.warning(f"SMTP host not configured, skipping email '{subject}'")
            return False

        message = EmailMessage()
        message["From"] = formataddr((settings.email_from_name, settings.email_from))
        message["To"] = to
        message["Subject"] = subject
        message.set_content(text_body or subject)
        message.add_alternative(html_body, subtype="html")

        try:
            await aiosmtplib.send(
                message,
                hostname=settings.smtp_host,
                port=settings.smtp_port,
                username=settings.smtp_username or None,
                password=settings.smtp_password or None,
                use_tls=settings.smtp_use_tls,
            )
        except (aiosmtplib.SMTPException, OSError) as err:
            logger.error(f"Failed to send email '{subject}': {err}")
            raise EmailDeliveryError(str(err)) from err

        logger.info(f"Email sent: '{subject}'")
        return True

    async def send_verification_email(self, to: str, token: str) -> bool:
        url = client_link("/verify-email", token)
        minutes = settings.verify_email_token_expire_minutes
        body = _layout(
            "Verify your email",
            "<p>Thanks for signing up. Please confirm your email address.</p>"
            f"{_button(url, 'Verify email')}"
            f"<p>This link expires in {minutes} minutes.</p>",
        )
        text = f"Confirm your email address by visiting {url}\nThis link expires in {minutes} minutes."
        return await self.send_email(to, "Email Verification", body, text)

    async def send_reset_password_email(self, to: str, token: str) -> bool:
        url = client_link("/reset-password", token)
        minutes = settings.reset_password_token_expire_minutes
        body = _layout(
            "Reset your password",
            "<p>We received a request to reset your password.</p>"
            f"{_button(url, 'Reset password')}"
            f"<p>This link expires in {minutes} minutes. If you did not ask for it, you can ignore this email.</p>",
        )
        text = (
            f"Reset your password by visiting {url}\n"
            f"This link expires in {minutes} minutes. If you did not ask for it, you can ignore this email."
        )
        return await self.send_email(to, "Reset password", body, text)

    async def send_welcome_email(self, to: str, name: str) -> bool:
        body = _layout(
            f"Welcome, {name}!",
            "<p>Your email address is verified and your account is ready.</p>"
            f"{_button(settings.client_url, 'Start shopping')}",
        )
        text = f"Welcome, {name}! Your email address is verified and your account is ready."
        return await self.send_email(to, f"Welcome to {settings.email_from_name}", body, text)


email_service = EmailService()
