from dataclasses import dataclass
from fastapi import Request
from fastapi_mail import FastMail, MessageSchema, ConnectionConfig, MessageType
from typing import Optional
import logging

from quicksnack.core.config import settings
from quicksnack.utils.helpers import mask_email

logger = logging.getLogger(__name__)


@dataclass
class DeliveryResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class DeliveryChannel:
    """Outbound email transport used by the OTP and account services."""

    async def send(self, to: str, subject: str, html: str) -> DeliveryResult:
        raise NotImplementedError


class MailDeliveryChannel(DeliveryChannel):
    """SMTP delivery through fastapi-mail. Never raises on send failure."""

    def __init__(self, conf: Optional[ConnectionConfig] = None):
        self.conf = conf
        self.fm = FastMail(conf) if conf else None

    @classmethod
    def from_settings(cls) -> "MailDeliveryChannel":
        # Check if email is configured
        if not settings.MAIL_USERNAME or not settings.MAIL_FROM:
            logger.warning("Email not configured. Email delivery will fail until MAIL_* is set.")
            return cls()

        try:
            conf = ConnectionConfig(
                MAIL_USERNAME=settings.MAIL_USERNAME,
                MAIL_PASSWORD=settings.MAIL_PASSWORD or "",
                MAIL_FROM=settings.MAIL_FROM,
                MAIL_PORT=settings.MAIL_PORT,
                MAIL_SERVER=settings.MAIL_SERVER,
                MAIL_FROM_NAME=settings.MAIL_FROM_NAME,
                MAIL_STARTTLS=settings.MAIL_STARTTLS,
                MAIL_SSL_TLS=settings.MAIL_SSL_TLS,
                USE_CREDENTIALS=settings.USE_CREDENTIALS,
                VALIDATE_CERTS=settings.VALIDATE_CERTS,
            )
        except ValueError as e:
            logger.error(f"Email configuration error: {e}. Email delivery is disabled.")
            return cls()
        return cls(conf)

    async def send(self, to: str, subject: str, html: str) -> DeliveryResult:
        if not self.fm:
            logger.warning(f"Email not configured, dropping '{subject}' for {mask_email(to)}")
            return DeliveryResult(success=False, error="Email delivery is not configured")

        message = MessageSchema(
            subject=subject,
            recipients=[to],
            body=html,
            subtype=MessageType.html,
        )
        try:
            await self.fm.send_message(message)
        except Exception as e:
            logger.error(f"Failed to send '{subject}' to {mask_email(to)}: {e}")
            return DeliveryResult(success=False, error=str(e) or "Failed to send email")

        logger.info(f"Email '{subject}' sent to {mask_email(to)}")
        return DeliveryResult(success=True)


async def deliver(channel: DeliveryChannel, to: str, subject: str, html: str) -> DeliveryResult:
    """Send through a channel, turning any failure into a logged DeliveryResult."""
    try:
        result = await channel.send(to, subject, html)
    except Exception as e:
        logger.exception(f"Delivery channel raised while sending '{subject}' to {mask_email(to)}")
        result = DeliveryResult(success=False, error=str(e) or "Failed to send email")

    if not result.success:
        logger.warning(f"Email '{subject}' was not delivered to {mask_email(to)}: {result.error}")
    return result


def get_delivery_channel(request: Request) -> DeliveryChannel:
    """Dependency returning the channel built during application start-up."""
    return request.app.state.delivery_channel


def generate_otp_email(otp_code: str, purpose: str = "Verification") -> str:
    title = "Password Reset OTP" if purpose == "Password Reset" else "Your QuickSnack OTP"
    message = "Use this OTP to reset your password:" if purpose == "Password Reset" else "Your OTP is:"
    return f"""
    <html>
        <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; color: #333;">
            <div style="padding: 20px;">
                <h2>{title}</h2>
                <p>{message}</p>
                <div style="font-size: 24px; font-weight: bold; color: #6B90A7; text-align: center;
                            padding: 20px; background: #F1F5F9; border-radius: 8px; margin: 20px 0;">{otp_code}</div>
                <p>This OTP is valid for {settings.OTP_EXPIRE_MINUTES} minutes.</p>
                <p>If you didn't request this, please ignore this email.</p>
                <p style="margin-top: 30px; font-size: 12px; color: #666;"><strong>QuickSnack</strong></p>
            </div>
        </body>
    </html>
    """


def generate_welcome_email(name: Optional[str]) -> str:
    return f"""
    <html>
        <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; color: #333;">
            <div style="background: linear-gradient(135deg, #B9F8CF, #BFDBFF); padding: 30px;
                        border-radius: 8px; text-align: center;">
                <h1 style="color: #6B90A7; margin: 0;">Welcome to QuickSnack!</h1>
            </div>
            <div style="padding: 20px;">
                <p>Hi {name or 'Customer'},</p>
                <p>Thanks for joining QuickSnack! We bring snacks, groceries and daily essentials
                   to your door quickly.</p>
                <div style="text-align: center; margin: 30px 0;">
                    <a href="{settings.FRONTEND_URL}/products"
                       style="background-color: #6B90A7; color: white; padding: 15px 30px;
                              text-decoration: none; border-radius: 8px; font-weight: bold;">
                        Start Shopping
                    </a>
                </div>
            </div>
        </body>
    </html>
    """


def generate_password_reset_success_email(name: Optional[str]) -> str:
    return f"""
    <html>
        <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
            <h2 style="color: #10B981;">Password Reset Successful</h2>
            <p>Hello {name or 'Customer'},</p>
            <p>Your password has been successfully reset. You can now log in with your new password.</p>
            <p>If you didn't request this password reset, please contact our support team immediately.</p>
            <p>Best regards,<br>The QuickSnack Team</p>
        </body>
    </html>
    """
