"""
邮件发送服务与邮件模板
通过 SMTP 发送（STARTTLS 或 SMTPS），email_enabled 关闭时只记录日志
"""
import asyncio
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage
from html import escape
from typing import Optional

from sj_core.config import Settings, get_settings
from sj_core.utils.errors import EmailDeliveryError
from sj_core.utils.logger import get_logger

logger = get_logger(__name__)

BRAND_NAME = "Sharq Aljazeera"

EMAIL_TEMPLATE_TYPES = (
    "welcome",
    "email_verification",
    "password_reset",
    "password_changed",
    "account_locked",
    "two_factor_code",
    "login_notification",
)

EMAIL_SUBJECTS = {
    "welcome": f"Welcome to {BRAND_NAME}!",
    "email_verification": "Verify Your Email Address",
    "password_reset": "Reset Your Password",
    "password_changed": "Password Changed Successfully",
    "account_locked": "Your Account Has Been Locked",
    "two_factor_code": "Your Verification Code",
    "login_notification": "New Login Detected",
}


@dataclass(frozen=True)
class EmailConfig:
    """SMTP 配置"""
    host: str
    port: int
    secure: bool
    user: str
    password: str
    from_name: str
    from_address: str
    enabled: bool = True
    timeout: int = 10

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "EmailConfig":
        settings = settings or get_settings()
        return cls(
            host=settings.email_host,
            port=settings.email_port,
            secure=settings.email_secure,
            user=settings.email_user,
            password=settings.email_password,
            from_name=settings.email_from_name,
            from_address=settings.email_from_address,
            enabled=settings.email_enabled,
            timeout=settings.email_timeout,
        )

    @property
    def from_header(self) -> str:
        return f'"{self.from_name}" <{self.from_address}>'


class EmailSender:
    """SMTP 邮件发送器"""

    def __init__(self, config: EmailConfig):
        self.config = config

    def _build_message(self, to: str, subject: str, html: str, text: Optional[str]) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.config.from_header
        message["To"] = to
        message["Subject"] = subject
        message.set_content(text or "This message requires an HTML capable email client.")
        message.add_alternative(html, subtype="html")
        return message

    def _connect(self) -> smtplib.SMTP:
        """建立已登录的 SMTP 连接"""
        context = ssl.create_default_context()
        if self.config.secure:
            client = smtplib.SMTP_SSL(
                self.config.host, self.config.port, timeout=self.config.timeout, context=context
            )
        else:
            client = smtplib.SMTP(self.config.host, self.config.port, timeout=self.config.timeout)
            client.starttls(context=context)
        if self.config.user:
            client.login(self.config.user, self.config.password)
        return client

    def _send_sync(self, message: EmailMessage) -> None:
        with self._connect() as client:
            client.send_message(message)

    def _verify_sync(self) -> None:
        with self._connect() as client:
            client.noop()

    async def send(self, to: str, subject: str, html: str, text: Optional[str] = None) -> None:
        """发送邮件

        Raises:
            EmailDeliveryError: SMTP 发送失败
        """
        if not self.config.enabled:
            logger.info("Email delivery disabled, message logged only", to=to, subject=subject)
            return

        message = self._build_message(to, subject, html, text)
        try:
            await asyncio.to_thread(self._send_sync, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed to send email", to=to, subject=subject, error=str(e))
            raise EmailDeliveryError(str(e) or "Unknown error") from e

        logger.info("Email sent", to=to, subject=subject)

    async def verify(self) -> bool:
        """检查 SMTP 连接是否可用"""
        try:
            await asyncio.to_thread(self._verify_sync)
            return True
        except (smtplib.SMTPException, OSError) as e:
            logger.warning("SMTP verification failed", error=str(e))
            return False


def get_email_sender(settings: Optional[Settings] = None) -> EmailSender:
    return EmailSender(EmailConfig.from_settings(settings))


def get_email_subject(template_type: str) -> str:
    """按模板类型获取邮件主题"""
    return EMAIL_SUBJECTS.get(template_type, f"Notification from {BRAND_NAME}")


# ========== 邮件模板 ==========

def _layout(title: str, header: str, color: str, body: str) -> str:
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{title}</title>
</head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
  <div style="background: {color}; padding: 30px; text-align: center; border-radius: 10px 10px 0 0;">
    <h1 style="color: white; margin: 0;">{header}</h1>
  </div>
  <div style="background: #f9f9f9; padding: 30px; border-radius: 0 0 10px 10px;">
{body}
  </div>
</body>
</html>
"""


def _paragraph(text: str, muted: bool = False) -> str:
    if muted:
        return f'    <p style="font-size: 14px; color: #666;">{text}</p>'
    return f'    <p style="font-size: 16px;">{text}</p>'


def _button(url: str, label: str, color: str) -> str:
    return (
        '    <div style="text-align: center; margin: 30px 0;">\n'
        f'      <a href="{escape(url, quote=True)}" style="background: {color}; color: white; padding: 12px 30px; '
        'text-decoration: none; border-radius: 5px; display: inline-block; font-weight: bold;">'
        f'{label}</a>\n'
        '    </div>'
    )


def _greeting(first_name: str) -> str:
    return _paragraph(f"Hello {escape(first_name)},")


def _signature() -> str:
    return _paragraph(f"Best regards,<br>The {BRAND_NAME} Team")


def generate_welcome_email(first_name: str, verification_url: Optional[str] = None) -> str:
    parts = [
        _greeting(first_name),
        _paragraph(f"Thank you for joining {BRAND_NAME}! We're excited to have you as part of our community."),
    ]
    if verification_url:
        parts.append(_paragraph("To get started, please verify your email address:"))
        parts.append(_button(verification_url, "Verify Email", "#667eea"))
    parts.append(_paragraph(
        "Start exploring our collection of quality products and enjoy a seamless shopping experience."
    ))
    parts.append(_signature())
    return _layout(
        f"Welcome to {BRAND_NAME}",
        f"Welcome to {BRAND_NAME}!",
        "linear-gradient(135deg, #667eea 0%, #764ba2 100%)",
        "\n".join(parts),
    )


def generate_email_verification_email(first_name: str, verification_url: str, expires_in: str) -> str:
    body = "\n".join([
        _greeting(first_name),
        _paragraph("Please verify your email address to activate your account."),
        _button(verification_url, "Verify Email", "#667eea"),
        _paragraph(f"This link will expire in {escape(expires_in)}.", muted=True),
        _paragraph("If you didn't create an account, please ignore this email.", muted=True),
    ])
    return _layout("Verify Your Email", "Verify Your Email", "#667eea", body)


def generate_password_reset_email(first_name: str, reset_url: str, expires_in: str) -> str:
    body = "\n".join([
        _greeting(first_name),
        _paragraph(
            "We received a request to reset your password. Click the button below to create a new password:"
        ),
        _button(reset_url, "Reset Password", "#f59e0b"),
        _paragraph(f"This link will expire in {escape(expires_in)}.", muted=True),
        _paragraph(
            "If you didn't request a password reset, please ignore this email "
            "or contact support if you have concerns.",
            muted=True,
        ),
    ])
    return _layout("Reset Your Password", "Reset Your Password", "#f59e0b", body)


def generate_password_changed_email(first_name: str, changed_at: str) -> str:
    body = "\n".join([
        _greeting(first_name),
        _paragraph(f"Your password was successfully changed on {escape(changed_at)}."),
        _paragraph("If you didn't make this change, please contact our support team immediately."),
        _signature(),
    ])
    return _layout("Password Changed", "Password Changed Successfully", "#10b981", body)


def generate_account_locked_email(first_name: str, reason: str, unlock_url: Optional[str] = None) -> str:
    parts = [
        _greeting(first_name),
        _paragraph(f"Your account has been temporarily locked. Reason: {escape(reason)}"),
    ]
    if unlock_url:
        parts.append(_button(unlock_url, "Unlock Account", "#ef4444"))
    parts.append(_paragraph("If you believe this was a mistake, please contact our support team."))
    return _layout("Account Locked", "Account Locked", "#ef4444", "\n".join(parts))


def generate_two_factor_code_email(first_name: str, code: str, expires_in: str) -> str:
    code_box = (
        '    <div style="text-align: center; margin: 30px 0;">\n'
        '      <div style="background: white; border: 2px solid #8b5cf6; padding: 20px; '
        'border-radius: 5px; display: inline-block;">\n'
        '        <span style="font-size: 32px; font-weight: bold; letter-spacing: 8px; color: #8b5cf6;">'
        f'{escape(code)}</span>\n'
        '      </div>\n'
        '    </div>'
    )
    body = "\n".join([
        _greeting(first_name),
        _paragraph("Your verification code is:"),
        code_box,
        _paragraph(f"This code will expire in {escape(expires_in)}.", muted=True),
        _paragraph("If you didn't request this code, please ignore this email.", muted=True),
    ])
    return _layout("Your Verification Code", "Your Verification Code", "#8b5cf6", body)


def generate_login_notification_email(
    first_name: str,
    timestamp: str,
    location: Optional[str] = None,
    device: Optional[str] = None
) -> str:
    rows = [f'      <p style="margin: 5px 0;"><strong>Time:</strong> {escape(timestamp)}</p>']
    if location:
        rows.append(f'      <p style="margin: 5px 0;"><strong>Location:</strong> {escape(location)}</p>')
    if device:
        rows.append(f'      <p style="margin: 5px 0;"><strong>Device:</strong> {escape(device)}</p>')
    details = (
        '    <div style="background: white; padding: 20px; border-radius: 5px; margin: 20px 0;">\n'
        + "\n".join(rows)
        + "\n    </div>"
    )
    body = "\n".join([
        _greeting(first_name),
        _paragraph("We detected a new login to your account:"),
        details,
        _paragraph(
            "If this was you, you can safely ignore this email. "
            "If you don't recognize this activity, please secure your account immediately."
        ),
    ])
    return _layout("New Login Detected", "New Login Detected", "#3b82f6", body)
