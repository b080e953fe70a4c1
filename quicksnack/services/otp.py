"""One-time passcode tickets: issuance, verification and cleanup.

A ticket is keyed by (email, purpose). Issuing a new code replaces any
previous ticket for the same key. Verification is evaluated lazily against
the wall clock; the periodic sweep only reclaims storage.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from quicksnack.core.config import settings
from quicksnack.core.email_utils import DeliveryChannel, deliver, generate_otp_email
from quicksnack.core.exceptions import (
    InvalidOTP, OTPExpired, OTPNotFound, OTPTooManyAttempts, ValidationFailed
)
from quicksnack.core.security import generate_email_otp, hash_otp, verify_otp_hash
from quicksnack.models.base import utcnow
from quicksnack.models.otp_ticket import OTPPurpose, OTPTicket
from quicksnack.utils.helpers import mask_email, normalize_email

logger = logging.getLogger(__name__)

OTP_EMAIL_SUBJECTS = {
    OTPPurpose.SIGNUP: "Your QuickSnack OTP",
    OTPPurpose.LOGIN: "Your QuickSnack OTP",
    OTPPurpose.ORDER_VERIFICATION: "Confirm your QuickSnack order",
    OTPPurpose.RESET_PASSWORD: "Reset Your QuickSnack Password",
}


@dataclass
class IssueResult:
    delivered: bool
    expires_in: int
    error: Optional[str] = None


@dataclass
class VerifiedTicket:
    email: str
    purpose: OTPPurpose
    pending_profile: Optional[dict] = None


def parse_purpose(purpose) -> OTPPurpose:
    if isinstance(purpose, OTPPurpose):
        return purpose
    try:
        return OTPPurpose(purpose)
    except ValueError:
        allowed = ", ".join(p.value for p in OTPPurpose)
        raise ValidationFailed(f"Invalid OTP purpose '{purpose}'. Expected one of: {allowed}")


class OTPService:
    def __init__(
        self,
        db: AsyncSession,
        channel: Optional[DeliveryChannel] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.channel = channel
        self.clock = clock

    async def _find(self, email: str, purpose: OTPPurpose) -> Optional[OTPTicket]:
        result = await self.db.execute(
            select(OTPTicket).where(
                OTPTicket.email == email,
                OTPTicket.purpose == purpose.value,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def _delete(self, ticket: OTPTicket):
        await self.db.execute(delete(OTPTicket).where(OTPTicket.id == ticket.id))
        await self.db.commit()

    async def _store_ticket(
        self, email: str, purpose: OTPPurpose, code: str, pending_profile: Optional[dict]
    ) -> OTPTicket:
        otp_hash = hash_otp(code)

        # A racing issuance can slip a row in between our purge and insert.
        for retry in range(2):
            await self.db.execute(
                delete(OTPTicket).where(
                    OTPTicket.email == email,
                    OTPTicket.purpose == purpose.value,
                )
            )
            ticket = OTPTicket(
                email=email,
                purpose=purpose.value,
                otp_hash=otp_hash,
                attempts=0,
                expires_at=self.clock() + timedelta(minutes=settings.OTP_EXPIRE_MINUTES),
                pending_profile=pending_profile,
            )
            self.db.add(ticket)
            try:
                await self.db.commit()
                return ticket
            except IntegrityError:
                await self.db.rollback()
                if retry:
                    raise
                logger.info(f"Concurrent {purpose.value} OTP issuance for {mask_email(email)}, retrying")

    async def issue_otp(self, email: str, purpose, pending_profile: Optional[dict] = None) -> IssueResult:
        """Replace any ticket for (email, purpose) and send a fresh code.

        The ticket is kept even when delivery fails so the user can still
        verify a code that arrives late, or request another.
        """
        email = normalize_email(email)
        purpose = parse_purpose(purpose)

        code = generate_email_otp()
        await self._store_ticket(email, purpose, code, pending_profile)
        logger.info(f"Issued {purpose.value} OTP for {mask_email(email)}")

        expires_in = settings.OTP_EXPIRE_MINUTES * 60
        if self.channel is None:
            return IssueResult(delivered=False, expires_in=expires_in, error="No delivery channel")

        label = "Password Reset" if purpose is OTPPurpose.RESET_PASSWORD else "Verification"
        result = await deliver(
            self.channel, email, OTP_EMAIL_SUBJECTS[purpose], generate_otp_email(code, label)
        )
        return IssueResult(delivered=result.success, expires_in=expires_in, error=result.error)

    async def verify_otp(
        self, email: str, purpose, candidate: str, consume: Optional[bool] = None
    ) -> VerifiedTicket:
        """Check a candidate code against the ticket for (email, purpose).

        On success the ticket is deleted, except for reset-password tickets,
        which stay until the password change consumes them (consume=True).
        """
        email = normalize_email(email)
        purpose = parse_purpose(purpose)
        if consume is None:
            consume = purpose is not OTPPurpose.RESET_PASSWORD

        ticket = await self._find(email, purpose)
        if ticket is None:
            raise OTPNotFound()

        if ticket.is_expired(self.clock()):
            await self._delete(ticket)
            raise OTPExpired()

        max_attempts = settings.OTP_MAX_ATTEMPTS
        if ticket.attempts >= max_attempts:
            await self._delete(ticket)
            raise OTPTooManyAttempts()

        if not verify_otp_hash((candidate or "").strip(), ticket.otp_hash):
            result = await self.db.execute(
                update(OTPTicket)
                .where(OTPTicket.id == ticket.id, OTPTicket.attempts < max_attempts)
                .values(attempts=OTPTicket.attempts + 1)
                .returning(OTPTicket.attempts)
                .execution_options(synchronize_session=False)
            )
            attempts = result.scalar_one_or_none()
            await self.db.commit()
            # No row: a concurrent request exhausted or removed the ticket.
            if attempts is None:
                raise OTPTooManyAttempts()

            logger.info(
                f"Invalid {purpose.value} OTP for {mask_email(email)} "
                f"(attempt {attempts}/{max_attempts})"
            )
            if attempts >= max_attempts:
                raise OTPTooManyAttempts()
            raise InvalidOTP()

        verified = VerifiedTicket(
            email=ticket.email,
            purpose=purpose,
            pending_profile=ticket.pending_profile,
        )
        if consume:
            await self._delete(ticket)
        logger.info(f"Verified {purpose.value} OTP for {mask_email(email)}")
        return verified

    async def discard(self, email: str, purpose, commit: bool = True):
        """Drop the ticket for (email, purpose) once its workflow has finished."""
        purpose = parse_purpose(purpose)
        await self.db.execute(
            delete(OTPTicket).where(
                OTPTicket.email == normalize_email(email),
                OTPTicket.purpose == purpose.value,
            )
        )
        if commit:
            await self.db.commit()


async def purge_expired_tickets(db: AsyncSession, now: Optional[datetime] = None) -> int:
    """Delete tickets whose expiry has passed. Returns the number removed."""
    result = await db.execute(
        delete(OTPTicket)
        .where(OTPTicket.expires_at <= (now or utcnow()))
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount or 0


async def run_ticket_sweeper(session_maker: async_sessionmaker, interval: int):
    """Background loop reclaiming expired tickets until cancelled."""
    while True:
        await asyncio.sleep(interval)
        try:
            async with session_maker() as db:
                removed = await purge_expired_tickets(db)
            if removed:
                logger.info(f"Swept {removed} expired OTP tickets")
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("OTP ticket sweep failed")
