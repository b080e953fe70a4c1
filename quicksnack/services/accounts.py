"""Account workflows composed from OTP tickets, users and sessions."""
import logging
from typing import Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from quicksnack.core.email_utils import (
    DeliveryChannel, deliver, generate_password_reset_success_email, generate_welcome_email
)
from quicksnack.core.exceptions import (
    AccountNotVerified, Conflict, InvalidCredentials, UserNotFound, ValidationFailed
)
from quicksnack.core.config import settings
from quicksnack.core.security import get_password_hash, issue_session, verify_password
from quicksnack.models.otp_ticket import OTPPurpose
from quicksnack.models.user import User, UserRole
from quicksnack.services.otp import IssueResult, OTPService
from quicksnack.utils.helpers import is_strong_password, is_valid_phone, mask_email, normalize_email

logger = logging.getLogger(__name__)


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.email == normalize_email(email)))
    return result.scalar_one_or_none()


async def get_verified_user(db: AsyncSession, email: str) -> User:
    user = await get_user_by_email(db, email)
    if not user:
        raise UserNotFound()
    if not user.is_verified:
        raise AccountNotVerified()
    return user


def check_password(password: str):
    if not is_strong_password(password):
        raise ValidationFailed(
            f"Password must be at least {settings.PASSWORD_MIN_LENGTH} characters long"
        )


def _merge_profile(profile: Optional[dict], pending: Optional[dict]) -> dict:
    """Client-supplied fields win; gaps are filled from the stored signup form."""
    profile = profile or {}
    pending = pending or {}

    merged = {
        "name": profile.get("name") or pending.get("name"),
        "phone": profile.get("phone") or pending.get("phone"),
        "password_hash": pending.get("password_hash"),
    }
    if profile.get("password"):
        check_password(profile["password"])
        merged["password_hash"] = get_password_hash(profile["password"])

    if not merged["name"] or not merged["phone"]:
        raise ValidationFailed("Name and phone are required to complete signup")
    if not is_valid_phone(merged["phone"]):
        raise ValidationFailed("Phone number must be 10 digits")
    return merged


async def request_signup(
    db: AsyncSession,
    channel: DeliveryChannel,
    email: str,
    name: str,
    phone: str,
    password: Optional[str] = None,
) -> IssueResult:
    email = normalize_email(email)
    existing = await get_user_by_email(db, email)
    if existing and existing.is_verified:
        raise Conflict()

    if not is_valid_phone(phone):
        raise ValidationFailed("Phone number must be 10 digits")
    pending = {"name": name, "phone": phone, "password_hash": None}
    if password:
        check_password(password)
        pending["password_hash"] = get_password_hash(password)

    return await OTPService(db, channel).issue_otp(email, OTPPurpose.SIGNUP, pending_profile=pending)


async def complete_signup(
    db: AsyncSession,
    channel: DeliveryChannel,
    email: str,
    code: str,
    profile: Optional[dict] = None,
) -> Tuple[str, User]:
    """Verify a signup OTP and create the verified account.

    Returns the session token and the new user.
    """
    email = normalize_email(email)
    existing = await get_user_by_email(db, email)
    if existing and existing.is_verified:
        raise Conflict()

    service = OTPService(db, channel)
    ticket = await service.verify_otp(email, OTPPurpose.SIGNUP, code, consume=False)
    fields = _merge_profile(profile, ticket.pending_profile)

    user = existing or User(email=email)
    user.name = fields["name"]
    user.phone = fields["phone"]
    user.password_hash = fields["password_hash"]
    user.is_verified = True
    user.role = user.role or UserRole.USER
    db.add(user)
    try:
        await service.discard(email, OTPPurpose.SIGNUP, commit=False)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise Conflict()
    await db.refresh(user)
    logger.info(f"Created account {user.id} for {mask_email(email)}")

    # Welcome mail is best effort
    await deliver(
        channel, email, "Welcome to QuickSnack - Thanks for joining!", generate_welcome_email(user.name)
    )

    return issue_session(user.id, user.email), user


async def login_with_password(db: AsyncSession, email: str, password: Optional[str]) -> Tuple[str, User]:
    user = await get_verified_user(db, email)
    if not password:
        raise ValidationFailed("Password is required")
    if not verify_password(password, user.password_hash):
        logger.info(f"Invalid password for {mask_email(user.email)}")
        raise InvalidCredentials()
    return issue_session(user.id, user.email), user


async def request_login_otp(db: AsyncSession, channel: DeliveryChannel, email: str) -> IssueResult:
    user = await get_verified_user(db, email)
    return await OTPService(db, channel).issue_otp(user.email, OTPPurpose.LOGIN)


async def complete_login_otp(
    db: AsyncSession, channel: DeliveryChannel, email: str, code: str
) -> Tuple[str, User]:
    await OTPService(db, channel).verify_otp(email, OTPPurpose.LOGIN, code)
    user = await get_user_by_email(db, email)
    if not user:
        raise UserNotFound("User not found")
    return issue_session(user.id, user.email), user


async def request_password_reset(db: AsyncSession, channel: DeliveryChannel, email: str) -> IssueResult:
    user = await get_user_by_email(db, email)
    if not user or not user.is_verified:
        raise UserNotFound("User not found or not verified")
    return await OTPService(db, channel).issue_otp(user.email, OTPPurpose.RESET_PASSWORD)


async def verify_reset_otp(db: AsyncSession, channel: DeliveryChannel, email: str, code: str):
    """First phase of a reset: confirm the code but keep the ticket."""
    await OTPService(db, channel).verify_otp(email, OTPPurpose.RESET_PASSWORD, code, consume=False)


async def reset_password(
    db: AsyncSession,
    channel: DeliveryChannel,
    email: str,
    code: str,
    new_password: str,
) -> User:
    """Second phase of a reset: re-check the retained ticket and change the password."""
    check_password(new_password)

    service = OTPService(db, channel)
    await service.verify_otp(email, OTPPurpose.RESET_PASSWORD, code, consume=False)

    user = await get_user_by_email(db, email)
    if not user:
        raise UserNotFound("User not found")

    user.password_hash = get_password_hash(new_password)
    await service.discard(email, OTPPurpose.RESET_PASSWORD, commit=False)
    await db.commit()
    logger.info(f"Password reset for account {user.id}")

    await deliver(
        channel, user.email, "Password Reset Successful", generate_password_reset_success_email(user.name)
    )
    return user
