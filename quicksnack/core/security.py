from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import JWTError, jwt
from passlib.context import CryptContext
from fastapi import HTTPException, status, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import logging
import secrets

from quicksnack.core.config import settings

logger = logging.getLogger(__name__)

# Password and OTP hashing
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.BCRYPT_ROUNDS,
)

# Security scheme
security = HTTPBearer()


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """Verify a password against its hash."""
    if not plain_password or not hashed_password:
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError as e:
        logger.warning(f"Password hash could not be checked: {e}")
        return False


def get_password_hash(password: str) -> str:
    """Hash a password."""
    return pwd_context.hash(password)


def hash_otp(code: str) -> str:
    """One-way hash of an OTP code for storage."""
    return pwd_context.hash(code)


def verify_otp_hash(candidate: str, otp_hash: str) -> bool:
    """Compare a submitted OTP against its stored hash."""
    if not candidate:
        return False
    return pwd_context.verify(candidate, otp_hash)


def generate_email_otp() -> str:
    """Generate 6-digit OTP for email verification."""
    return str(secrets.randbelow(900000) + 100000)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token."""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(days=settings.SESSION_EXPIRE_DAYS)

    to_encode.update({"exp": expire, "type": "access"})
    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return encoded_jwt


def issue_session(user_id: int, email: Optional[str] = None) -> str:
    """Mint a signed session token for a user.

    Sessions are stateless; rotating SECRET_KEY invalidates every
    outstanding token.
    """
    data = {"sub": str(user_id)}
    if email:
        data["email"] = email
    return create_access_token(data)


def verify_token(token: str, token_type: str = "access") -> Optional[dict]:
    """Verify and decode JWT token."""
    if not token:
        logger.debug("Empty token provided for verification")
        return None

    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        if payload.get("type") != token_type:
            logger.debug(f"Token type mismatch: expected {token_type}, got {payload.get('type')}")
            return None
        return payload
    except JWTError as e:
        logger.debug(f"JWT verification error: {e}")
        return None


async def get_current_user_from_token(credentials: HTTPAuthorizationCredentials = Depends(security)) -> dict:
    """Extract current user from JWT token."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if not credentials:
        raise credentials_exception

    payload = verify_token(credentials.credentials, "access")
    if payload is None:
        raise credentials_exception

    user_id = payload.get("sub")
    if user_id is None:
        logger.info("Token verification failed: no subject in payload")
        raise credentials_exception

    try:
        return {
            "user_id": int(user_id),
            "email": payload.get("email"),
        }
    except ValueError:
        raise credentials_exception
