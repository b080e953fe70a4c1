from fastapi import APIRouter, Depends, Request
import redis.asyncio as redis
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from quicksnack.db.database import get_async_session, get_redis
from quicksnack.core.email_utils import DeliveryChannel, get_delivery_channel
from quicksnack.schemas.auth import (
    AuthResponse, ForgotPasswordRequest, LoginRequest, LoginResponse, MessageResponse,
    OTPRequest, OTPResponse, OTPVerifiedResponse, OTPVerify, PurposeOTPVerify,
    ResetPasswordRequest, SignupRequest, SignupVerify, UserResponse
)
from quicksnack.services import accounts
from quicksnack.services.otp import OTPService
from quicksnack.utils.helpers import mask_email
from quicksnack.utils.rate_limit import enforce_otp_rate_limit, otp_rate_limit

logger = logging.getLogger(__name__)

router = APIRouter()


def _sent_message(sent: bool, message: str) -> str:
    if sent:
        return message
    return f"{message} Email delivery failed, please request a new code if it does not arrive."


@router.post("/signup", response_model=MessageResponse, dependencies=[Depends(otp_rate_limit)])
async def signup(
    data: SignupRequest,
    db: AsyncSession = Depends(get_async_session),
    channel: DeliveryChannel = Depends(get_delivery_channel)
):
    """Start signup: send a signup OTP. The account is created on verification."""
    result = await accounts.request_signup(
        db, channel, data.email, data.name, data.phone, data.password
    )
    return {
        "message": _sent_message(
            result.delivered, "OTP sent to your email. Please verify to complete signup."
        ),
        "email_sent": result.delivered
    }


@router.post("/verify-otp", response_model=AuthResponse)
async def verify_signup_otp(
    data: SignupVerify,
    db: AsyncSession = Depends(get_async_session),
    channel: DeliveryChannel = Depends(get_delivery_channel)
):
    """Verify signup OTP and create the account."""
    profile = data.user_data.model_dump(exclude_none=True) if data.user_data else None
    token, user = await accounts.complete_signup(db, channel, data.email, data.otp, profile)
    return {
        "message": "Account created successfully",
        "token": token,
        "user": UserResponse.model_validate(user)
    }


@router.post("/login", response_model=LoginResponse)
async def login(
    data: LoginRequest,
    request: Request,
    db: AsyncSession = Depends(get_async_session),
    channel: DeliveryChannel = Depends(get_delivery_channel),
    redis_conn: redis.Redis = Depends(get_redis)
):
    """Log in with a password, or request a login OTP with use_otp."""
    logger.info(f"Login attempt for {mask_email(data.email)}, use_otp={data.use_otp}")

    if data.use_otp:
        await enforce_otp_rate_limit(request, redis_conn)
        result = await accounts.request_login_otp(db, channel, data.email)
        return {
            "message": _sent_message(result.delivered, "OTP sent to your email"),
            "requires_otp": True,
            "email_sent": result.delivered
        }

    token, user = await accounts.login_with_password(db, data.email, data.password)
    return {
        "message": "Login successful",
        "token": token,
        "user": UserResponse.model_validate(user)
    }


@router.post("/verify-login-otp", response_model=AuthResponse)
async def verify_login_otp(
    data: OTPVerify,
    db: AsyncSession = Depends(get_async_session),
    channel: DeliveryChannel = Depends(get_delivery_channel)
):
    """Verify login OTP and return a session token."""
    token, user = await accounts.complete_login_otp(db, channel, data.email, data.otp)
    return {
        "message": "Login successful",
        "token": token,
        "user": UserResponse.model_validate(user)
    }


@router.post("/forgot-password", response_model=MessageResponse, dependencies=[Depends(otp_rate_limit)])
async def forgot_password(
    data: ForgotPasswordRequest,
    db: AsyncSession = Depends(get_async_session),
    channel: DeliveryChannel = Depends(get_delivery_channel)
):
    """Send password reset OTP via email."""
    result = await accounts.request_password_reset(db, channel, data.email)
    return {
        "message": _sent_message(result.delivered, "Password reset OTP sent to your email"),
        "email_sent": result.delivered
    }


@router.post("/verify-reset-otp", response_model=MessageResponse)
async def verify_reset_otp(
    data: OTPVerify,
    db: AsyncSession = Depends(get_async_session),
    channel: DeliveryChannel = Depends(get_delivery_channel)
):
    """Check a reset OTP. The code stays valid for /reset-password."""
    await accounts.verify_reset_otp(db, channel, data.email, data.otp)
    return {"message": "OTP verified successfully"}


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(
    data: ResetPasswordRequest,
    db: AsyncSession = Depends(get_async_session),
    channel: DeliveryChannel = Depends(get_delivery_channel)
):
    """Reset password using the OTP from /forgot-password."""
    await accounts.reset_password(db, channel, data.email, data.otp, data.new_password)
    return {"message": "Password reset successful. You can now log in with your new password."}


@router.post("/request-otp", response_model=OTPResponse, dependencies=[Depends(otp_rate_limit)])
async def request_otp(
    data: OTPRequest,
    db: AsyncSession = Depends(get_async_session),
    channel: DeliveryChannel = Depends(get_delivery_channel)
):
    """Issue an OTP for any purpose, e.g. order verification at checkout."""
    result = await OTPService(db, channel).issue_otp(data.email, data.purpose)
    return {
        "email_sent": result.delivered,
        "expires_in": result.expires_in
    }


@router.post("/verify", response_model=OTPVerifiedResponse)
async def verify_otp(
    data: PurposeOTPVerify,
    db: AsyncSession = Depends(get_async_session),
    channel: DeliveryChannel = Depends(get_delivery_channel)
):
    """Verify an OTP for its purpose without any follow-up action."""
    await OTPService(db, channel).verify_otp(data.email, data.purpose, data.otp)
    return {"verified": True}
