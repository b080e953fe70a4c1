from sqlalchemy import Column, Integer, String, DateTime, JSON, UniqueConstraint
from datetime import datetime
from typing import Optional
import enum

from quicksnack.models.base import Base, TimestampMixin, as_utc, utcnow


class OTPPurpose(str, enum.Enum):
    SIGNUP = "signup"
    LOGIN = "login"
    ORDER_VERIFICATION = "orderVerification"
    RESET_PASSWORD = "reset-password"


class OTPTicket(TimestampMixin, Base):
    __tablename__ = "otp_tickets"
    __table_args__ = (
        UniqueConstraint("email", "purpose", name="uq_otp_tickets_email_purpose"),
    )

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), nullable=False, index=True)  # bound to email, not user id
    purpose = Column(String(32), nullable=False)

    # Only the bcrypt hash of the code is kept
    otp_hash = Column(String(255), nullable=False)
    attempts = Column(Integer, default=0, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)

    # Signup form captured with the request: name, phone, password_hash
    pending_profile = Column(JSON, nullable=True)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= as_utc(self.expires_at)

    def __repr__(self):
        return f"<OTPTicket(id={self.id}, email='{self.email}', purpose='{self.purpose}')>"
