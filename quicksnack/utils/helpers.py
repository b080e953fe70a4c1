from fastapi import Request
from typing import Optional, Dict
import re

from quicksnack.core.config import settings


def get_client_ip(request: Request, trust_forwarded: bool = False) -> Optional[str]:
    """Extract the client IP address from request.

    Forwarding headers are client-controlled unless a proxy rewrites them, so
    they are only read when trust_forwarded is set.
    """
    ip_address = request.client.host if request.client else None
    if not trust_forwarded:
        return ip_address

    # Check for forwarded IP (behind proxy)
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        ip_address = forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        ip_address = real_ip

    return ip_address


def normalize_email(email: str) -> str:
    return email.strip().lower()


def is_valid_phone(phone: Optional[str]) -> bool:
    """Phone numbers are exactly 10 digits."""
    return bool(phone) and re.fullmatch(r"\d{10}", phone) is not None


def validate_password_strength(password: str) -> Dict[str, bool]:
    """Validate password strength."""
    checks = {
        "min_length": len(password or "") >= settings.PASSWORD_MIN_LENGTH,
        "not_blank": bool((password or "").strip()),
    }

    return checks


def is_strong_password(password: str) -> bool:
    """Check if password meets strength requirements."""
    checks = validate_password_strength(password)
    return all(checks.values())


def mask_email(email: str) -> str:
    """Mask email for privacy (e.g., j***@example.com)."""
    if '@' not in email:
        return email

    local, domain = email.split('@', 1)
    if len(local) <= 2:
        masked_local = local[0] + '*' if local else '*'
    else:
        masked_local = local[0] + '*' * (len(local) - 2) + local[-1]

    return f"{masked_local}@{domain}"
