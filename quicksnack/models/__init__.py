# Models module
from .user import User, UserRole
from .otp_ticket import OTPTicket, OTPPurpose

__all__ = [
    "User",
    "UserRole",
    "OTPTicket",
    "OTPPurpose",
]
