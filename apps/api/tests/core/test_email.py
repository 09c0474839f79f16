"""
Tests for code delivery through EmailNotifier.
"""

from unittest.mock import AsyncMock, patch

import pytest

from ums.core.email import DeliveryError, DeliveryResult, EmailNotifier, _render_otp_email


class TestEmailNotifier:
    @pytest.mark.asyncio
    async def test_fallback_without_api_key(self):
        notifier = EmailNotifier(api_key=None)

        with patch("ums.core.email.send_email", new_callable=AsyncMock) as send:
            result = await notifier.deliver("a@uni.edu", "123456", "password reset", 10)

        assert result == DeliveryResult(channel="fallback")
        send.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_destination(self):
        with pytest.raises(DeliveryError):
            await EmailNotifier(api_key=None).deliver("", "123456", "password reset", 10)

    @pytest.mark.asyncio
    async def test_external_delivery(self):
        notifier = EmailNotifier(api_key="re_test")

        with patch("ums.core.email.send_email", new_callable=AsyncMock) as send:
            result = await notifier.deliver(
                "a@uni.edu", "123456", "email verification", 10, name="Asha"
            )

        assert result == DeliveryResult(channel="external")
        kwargs = send.await_args.kwargs
        assert kwargs["to_email"] == "a@uni.edu"
        assert kwargs["subject"] == "UMS Email Verification"
        assert "123456" in kwargs["text_content"]
        assert "123456" in kwargs["html_content"]

    @pytest.mark.asyncio
    async def test_provider_failure_propagates(self):
        notifier = EmailNotifier(api_key="re_test")

        with patch("ums.core.email.resend.Emails.send", side_effect=RuntimeError("rejected")):
            with pytest.raises(DeliveryError):
                await notifier.deliver("a@uni.edu", "123456", "password reset", 10)


class TestRenderOtpEmail:
    def test_name_is_escaped_in_html(self):
        html_content, text_content = _render_otp_email("<b>Eve</b>", "654321", "password reset", 5)

        assert "&lt;b&gt;Eve&lt;/b&gt;" in html_content
        assert "<b>Eve</b>" in text_content
        assert "expires in 5 minutes" in text_content

    def test_default_name(self):
        _, text_content = _render_otp_email("", "654321", "password reset", 5)

        assert text_content.startswith("Hello User,")
