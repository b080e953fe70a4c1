from datetime import datetime, timedelta, timezone

from jose import jwt

from quicksnack.core.config import settings
from quicksnack.core.security import (
    create_access_token, generate_email_otp, get_password_hash, issue_session,
    verify_otp_hash, verify_password, verify_token, hash_otp
)
from quicksnack.db.init_db import create_admin
from quicksnack.models.user import UserRole
from quicksnack.utils.helpers import is_valid_phone, mask_email


def test_session_token_carries_user_and_expiry():
    token = issue_session(42, "a@x.com")
    payload = verify_token(token)

    assert payload["sub"] == "42"
    assert payload["email"] == "a@x.com"
    expires = datetime.fromtimestamp(payload["exp"], tz=timezone.utc)
    expected = datetime.now(timezone.utc) + timedelta(days=settings.SESSION_EXPIRE_DAYS)
    assert abs((expires - expected).total_seconds()) < 60


def test_token_signed_with_other_secret_is_rejected():
    forged = jwt.encode({"sub": "1", "type": "access"}, "other-secret", algorithm="HS256")
    assert verify_token(forged) is None


def test_expired_token_is_rejected():
    token = create_access_token({"sub": "1"}, expires_delta=timedelta(seconds=-1))
    assert verify_token(token) is None


def test_otp_codes_are_six_digits():
    for _ in range(50):
        code = generate_email_otp()
        assert len(code) == 6 and code.isdigit()


def test_hashes_verify():
    assert verify_password("secret123", get_password_hash("secret123"))
    assert not verify_password("secret123", None)
    assert verify_otp_hash("123456", hash_otp("123456"))
    assert not verify_otp_hash("", hash_otp("123456"))


def test_helpers():
    assert mask_email("john@x.com") == "j**n@x.com"
    assert is_valid_phone("9999999999")
    assert not is_valid_phone("99999")


async def test_create_admin_promotes_account(db):
    admin = await create_admin(db, "Boss@QuickSnack.in", "secret123")

    assert admin.email == "boss@quicksnack.in"
    assert admin.role == UserRole.ADMIN
    assert admin.is_verified is True

    again = await create_admin(db, "boss@quicksnack.in", "another123")
    assert again.id == admin.id
    assert verify_password("another123", again.password_hash)
