"""
Email Service using Resend

Delivers one-time passcodes. When no Resend API key is configured the
notifier logs the message and reports the ``fallback`` channel, which lets
non-production responses echo the code for local testing.
"""

import asyncio
import logging
from dataclasses import dataclass
from html import escape
from typing import Literal

import resend
from fastapi import Request

from ums.core.config import settings

logger = logging.getLogger(__name__)

DeliveryChannel = Literal["external", "fallback"]


class DeliveryError(Exception):
    """Raised when an email could not be handed to the provider."""


@dataclass(frozen=True)
class DeliveryResult:
    channel: DeliveryChannel


async def send_email(to_email: str, subject: str, html_content: str, text_content: str) -> None:
    """
    Send an email using Resend.

    Raises:
        DeliveryError: If the provider rejected the request
    """
    params: resend.Emails.SendParams = {
        "from": settings.email_from,
        "to": [to_email],
        "subject": subject,
        "html": html_content,
        "text": text_content,
    }

    try:
        # Resend's client is synchronous
        email = await asyncio.to_thread(resend.Emails.send, params)
    except Exception as e:
        logger.error(f"Failed to send email to {to_email}: {e}")
        raise DeliveryError(str(e)) from e

    logger.info(f"Email sent to {to_email}, id: {email['id']}")


def _render_otp_email(name: str, code: str, purpose_label: str, ttl_minutes: int) -> tuple[str, str]:
    safe_name = escape(name or "User")
    safe_purpose = escape(purpose_label)

    text_content = "\n".join(
        [
            f"Hello {name or 'User'},",
            "",
            f"A {purpose_label} was requested for your UMS account.",
            f"Verification code: {code}",
            f"This code expires in {ttl_minutes} minutes.",
            "",
            "If you did not request this, please ignore this email.",
        ]
    )
    html_content = f"""
    <div style="font-family: system-ui, -apple-system, sans-serif; line-height: 1.5; color: #111827;">
        <p>Hello {safe_name},</p>
        <p>A {safe_purpose} was requested for your UMS account.</p>
        <p style="font-size: 20px; font-weight: 700; letter-spacing: 2px;">{code}</p>
        <p>This code expires in {ttl_minutes} minutes.</p>
        <p>If you did not request this, please ignore this email.</p>
    </div>
    """
    return html_content, text_content


class EmailNotifier:
    """Sends one-time codes to an email destination."""

    def __init__(self, api_key: str | None = None):
        self.api_key = api_key

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def deliver(
        self,
        destination: str,
        code: str,
        purpose_label: str,
        ttl_minutes: int,
        name: str = "",
    ) -> DeliveryResult:
        """
        Deliver a code to ``destination``.

        Raises:
            DeliveryError: If a configured provider failed to accept the email
        """
        if not destination:
            raise DeliveryError("Missing recipient email address.")

        if not self.is_configured:
            logger.warning(f"[EMAIL_FALLBACK] {purpose_label} code for {destination}: {code}")
            return DeliveryResult(channel="fallback")

        resend.api_key = self.api_key
        html_content, text_content = _render_otp_email(name, code, purpose_label, ttl_minutes)
        await send_email(
            to_email=destination,
            subject=f"UMS {purpose_label.title()}",
            html_content=html_content,
            text_content=text_content,
        )
        return DeliveryResult(channel="external")


def get_notifier(request: Request) -> EmailNotifier:
    """FastAPI dependency returning the application's notifier."""
    return request.app.state.notifier


__all__ = ["DeliveryError", "DeliveryResult", "EmailNotifier", "get_notifier", "send_email"]
