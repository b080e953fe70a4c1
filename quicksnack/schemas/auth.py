from pydantic import BaseModel, ConfigDict, EmailStr, Field
from typing import Optional

from quicksnack.models.otp_ticket import OTPPurpose
from quicksnack.models.user import UserRole


# User schemas
class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: EmailStr
    phone: str
    is_verified: bool
    role: UserRole = UserRole.USER


class UserUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    phone: Optional[str] = Field(None, pattern=r"^\d{10}$")


# Signup schemas
class SignupRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    email: EmailStr
    phone: str
    password: Optional[str] = None


class PendingProfile(BaseModel):
    name: Optional[str] = Field(None, max_length=50)
    phone: Optional[str] = None
    password: Optional[str] = None


class SignupVerify(BaseModel):
    email: EmailStr
    otp: str
    user_data: Optional[PendingProfile] = None


# Login schemas
class LoginRequest(BaseModel):
    email: EmailStr
    password: Optional[str] = None
    use_otp: bool = False


class OTPVerify(BaseModel):
    email: EmailStr
    otp: str


class LoginResponse(BaseModel):
    success: bool = True
    message: str
    token: Optional[str] = None
    user: Optional[UserResponse] = None
    requires_otp: bool = False
    email_sent: Optional[bool] = None


# Generic OTP schemas
class OTPRequest(BaseModel):
    email: EmailStr
    purpose: OTPPurpose


class PurposeOTPVerify(BaseModel):
    email: EmailStr
    purpose: OTPPurpose
    otp: str


class OTPResponse(BaseModel):
    success: bool = True
    sent: bool = True
    email_sent: bool
    expires_in: int


class OTPVerifiedResponse(BaseModel):
    success: bool = True
    verified: bool = True


# Password schemas
class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    email: EmailStr
    otp: str
    new_password: str


# Response schemas
class MessageResponse(BaseModel):
    success: bool = True
    message: str
    email_sent: Optional[bool] = None


class AuthResponse(BaseModel):
    success: bool = True
    message: str
    token: str
    user: UserResponse


class ProfileResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
    user: UserResponse


class ErrorResponse(BaseModel):
    success: bool = False
    detail: str
    error: Optional[str] = None
