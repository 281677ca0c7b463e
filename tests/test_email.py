"""
邮件服务测试（不连接真实 SMTP）
"""
import smtplib

import pytest

from sj_core.services.email_service import (
    EmailConfig,
    EmailSender,
    generate_password_reset_email,
    generate_welcome_email,
    get_email_subject,
)
from sj_core.utils.errors import EmailDeliveryError


def _config(enabled=True) -> EmailConfig:
    return EmailConfig(
        host="smtp.example.com",
        port=587,
        secure=False,
        user="mailer",
        password="secret",
        from_name="Sharq Aljazeera",
        from_address="noreply@example.com",
        enabled=enabled,
    )


def test_from_header():
    assert _config().from_header == '"Sharq Aljazeera" <noreply@example.com>'


def test_subjects():
    assert get_email_subject("password_reset") == "Reset Your Password"
    assert get_email_subject("welcome") == "Welcome to Sharq Aljazeera!"
    assert get_email_subject("newsletter") == "Notification from Sharq Aljazeera"


async def test_disabled_sender_does_not_connect(monkeypatch):
    sender = EmailSender(_config(enabled=False))

    def fail(message):
        raise AssertionError("SMTP must not be used when email is disabled")

    monkeypatch.setattr(sender, "_send_sync", fail)
    await sender.send("user@example.com", "Hi", "<p>Hi</p>")


async def test_send_builds_message(monkeypatch):
    sender = EmailSender(_config())
    sent = []
    monkeypatch.setattr(sender, "_send_sync", sent.append)

    await sender.send("user@example.com", "Reset Your Password", "<p>reset</p>", text="reset")

    assert len(sent) == 1
    message = sent[0]
    assert message["To"] == "user@example.com"
    assert message["Subject"] == "Reset Your Password"
    assert message["From"] == '"Sharq Aljazeera" <noreply@example.com>'


async def test_smtp_failure_raises_delivery_error(monkeypatch):
    sender = EmailSender(_config())

    def refuse(message):
        raise smtplib.SMTPRecipientsRefused({"user@example.com": (550, b"no such user")})

    monkeypatch.setattr(sender, "_send_sync", refuse)

    with pytest.raises(EmailDeliveryError) as exc_info:
        await sender.send("user@example.com", "Hi", "<p>Hi</p>")

    assert exc_info.value.status_code == 503
    assert exc_info.value.code == "EMAIL_DELIVERY_FAILED"
    assert exc_info.value.detail.startswith("Failed to send email: ")


async def test_verify_reports_connection_errors(monkeypatch):
    sender = EmailSender(_config())

    def unreachable():
        raise ConnectionRefusedError("refused")

    monkeypatch.setattr(sender, "_verify_sync", unreachable)
    assert await sender.verify() is False

    monkeypatch.setattr(sender, "_verify_sync", lambda: None)
    assert await sender.verify() is True


def test_templates_escape_user_input():
    html = generate_welcome_email("<script>x</script>", "https://shop.example/verify?token=a&b=1")
    assert "<script>" not in html
    assert "&lt;script&gt;" in html
    assert "token=a&amp;b=1" in html

    reset = generate_password_reset_email("Ali", "https://shop.example/reset?token=t", "1 hour")
    assert "Hello Ali," in reset
    assert "This link will expire in 1 hour." in reset
