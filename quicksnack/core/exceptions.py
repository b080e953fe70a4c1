from fastapi import Request, status
from fastapi.responses import JSONResponse


class QuickSnackError(Exception):
    """Per-request failure with a machine-friendly kind."""

    kind = "Error"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Request failed"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class OTPNotFound(QuickSnackError):
    kind = "NotFound"
    default_message = "OTP not found or expired"


class OTPExpired(QuickSnackError):
    kind = "Expired"
    default_message = "OTP has expired"


class OTPTooManyAttempts(QuickSnackError):
    kind = "TooManyAttempts"
    default_message = "Too many failed attempts. Please request a new OTP."


class InvalidOTP(QuickSnackError):
    kind = "InvalidCode"
    default_message = "Invalid OTP"


class ValidationFailed(QuickSnackError):
    kind = "ValidationError"
    default_message = "Invalid input"


class UserNotFound(QuickSnackError):
    kind = "UserNotFound"
    default_message = "User not found with this email"


class AccountNotVerified(QuickSnackError):
    kind = "NotVerified"
    default_message = "Account not verified. Please complete verification."


class InvalidCredentials(QuickSnackError):
    kind = "InvalidCredentials"
    default_message = "Invalid credentials"


class RateLimited(QuickSnackError):
    kind = "RateLimited"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Too many OTP requests, please try again later."


class Conflict(QuickSnackError):
    kind = "Conflict"
    default_message = "User already exists with this email"


async def quicksnack_error_handler(request: Request, exc: QuickSnackError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "detail": exc.message, "error": exc.kind},
    )
