import pytest
from sqlalchemy import select

from quicksnack.core.config import settings
from quicksnack.core.security import verify_token
from quicksnack.models.otp_ticket import OTPTicket
from quicksnack.models.user import User

PROFILE = {"name": "A", "phone": "9999999999"}


async def _ticket_count(session_maker, email):
    async with session_maker() as db:
        result = await db.execute(select(OTPTicket).where(OTPTicket.email == email))
        return len(result.scalars().all())


async def _user(session_maker, email):
    async with session_maker() as db:
        result = await db.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()


async def _signup(client, channel, email="shopper@x.com", password="secret123"):
    response = await client.post(
        "/api/auth/signup", json={**PROFILE, "email": email, "password": password}
    )
    assert response.status_code == 200
    code = channel.last_code(email)
    response = await client.post(
        "/api/auth/verify-otp", json={"email": email, "otp": code, "user_data": PROFILE}
    )
    assert response.status_code == 200
    return response.json()


async def test_health(client):
    response = await client.get("/api/health")
    assert response.json()["status"] == "healthy"


async def test_signup_creates_verified_user(client, channel, session_maker):
    response = await client.post(
        "/api/auth/signup", json={**PROFILE, "email": "new@x.com"}
    )
    assert response.status_code == 200
    assert response.json()["email_sent"] is True
    assert await _user(session_maker, "new@x.com") is None

    code = channel.last_code("new@x.com")
    response = await client.post(
        "/api/auth/verify-otp", json={"email": "new@x.com", "otp": code, "user_data": PROFILE}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["user"]["email"] == "new@x.com"
    assert body["user"]["is_verified"] is True
    assert body["user"]["role"] == "user"
    assert verify_token(body["token"])["sub"] == str(body["user"]["id"])
    assert await _ticket_count(session_maker, "new@x.com") == 0
    assert channel.sent[-1]["subject"].startswith("Welcome to QuickSnack")


async def test_signup_uses_stored_profile_when_client_omits_it(client, channel, session_maker):
    await client.post(
        "/api/auth/signup",
        json={"name": "Stored", "phone": "8888888888", "email": "s@x.com", "password": "secret123"},
    )
    response = await client.post(
        "/api/auth/verify-otp", json={"email": "s@x.com", "otp": channel.last_code("s@x.com")}
    )

    assert response.status_code == 200
    assert response.json()["user"]["name"] == "Stored"
    user = await _user(session_maker, "s@x.com")
    assert user.password_hash and user.password_hash != "secret123"


async def test_second_signup_is_a_conflict(client, channel):
    await _signup(client, channel)

    response = await client.post(
        "/api/auth/signup", json={**PROFILE, "email": "shopper@x.com"}
    )
    assert response.status_code == 400
    assert response.json()["error"] == "Conflict"


async def test_replayed_signup_verification_fails(client, channel):
    await client.post("/api/auth/signup", json={**PROFILE, "email": "dup@x.com"})
    code = channel.last_code("dup@x.com")
    payload = {"email": "dup@x.com", "otp": code, "user_data": PROFILE}

    assert (await client.post("/api/auth/verify-otp", json=payload)).status_code == 200
    response = await client.post("/api/auth/verify-otp", json=payload)

    assert response.status_code == 400
    assert response.json()["error"] == "Conflict"


async def test_signup_delivery_failure_is_not_fatal(client, channel, session_maker):
    channel.fail = True
    response = await client.post("/api/auth/signup", json={**PROFILE, "email": "f@x.com"})

    assert response.status_code == 200
    assert response.json()["email_sent"] is False
    assert await _ticket_count(session_maker, "f@x.com") == 1


async def test_signup_rejects_bad_phone(client):
    response = await client.post(
        "/api/auth/signup", json={"name": "A", "phone": "123", "email": "p@x.com"}
    )
    assert response.status_code == 400
    assert response.json()["error"] == "ValidationError"


async def test_password_login(client, channel):
    await _signup(client, channel)

    response = await client.post(
        "/api/auth/login", json={"email": "Shopper@x.com", "password": "secret123"}
    )
    assert response.status_code == 200
    assert response.json()["token"]

    response = await client.post(
        "/api/auth/login", json={"email": "shopper@x.com", "password": "wrong-pass"}
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid credentials"


async def test_login_unknown_user(client):
    response = await client.post(
        "/api/auth/login", json={"email": "ghost@x.com", "password": "secret123"}
    )
    assert response.status_code == 400
    assert response.json()["error"] == "UserNotFound"


async def test_login_otp_wrong_twice_then_correct(client, channel):
    await _signup(client, channel)
    response = await client.post("/api/auth/login", json={"email": "shopper@x.com", "use_otp": True})
    assert response.json()["requires_otp"] is True
    code = channel.last_code("shopper@x.com")
    wrong = "000000" if code != "000000" else "000001"

    for _ in range(2):
        response = await client.post(
            "/api/auth/verify-login-otp", json={"email": "shopper@x.com", "otp": wrong}
        )
        assert response.json()["error"] == "InvalidCode"

    response = await client.post(
        "/api/auth/verify-login-otp", json={"email": "shopper@x.com", "otp": code}
    )
    assert response.status_code == 200
    assert response.json()["message"] == "Login successful"


async def test_login_otp_locked_after_three_failures(client, channel):
    await _signup(client, channel)
    await client.post("/api/auth/login", json={"email": "shopper@x.com", "use_otp": True})
    code = channel.last_code("shopper@x.com")
    wrong = "000000" if code != "000000" else "000001"

    errors = []
    for _ in range(3):
        response = await client.post(
            "/api/auth/verify-login-otp", json={"email": "shopper@x.com", "otp": wrong}
        )
        errors.append(response.json()["error"])
    assert errors == ["InvalidCode", "InvalidCode", "TooManyAttempts"]

    response = await client.post(
        "/api/auth/verify-login-otp", json={"email": "shopper@x.com", "otp": code}
    )
    assert response.status_code == 400
    assert response.json()["error"] == "TooManyAttempts"


async def test_password_reset_two_phase(client, channel, session_maker):
    await _signup(client, channel)

    response = await client.post("/api/auth/forgot-password", json={"email": "shopper@x.com"})
    assert response.status_code == 200
    assert channel.sent[-1]["subject"] == "Reset Your QuickSnack Password"
    code = channel.last_code("shopper@x.com")

    response = await client.post(
        "/api/auth/verify-reset-otp", json={"email": "shopper@x.com", "otp": code}
    )
    assert response.status_code == 200
    assert await _ticket_count(session_maker, "shopper@x.com") == 1

    reset = {"email": "shopper@x.com", "otp": code, "new_password": "fresh-pass"}
    response = await client.post("/api/auth/reset-password", json=reset)
    assert response.status_code == 200
    assert await _ticket_count(session_maker, "shopper@x.com") == 0

    response = await client.post("/api/auth/reset-password", json=reset)
    assert response.status_code == 400
    assert response.json()["error"] == "NotFound"

    response = await client.post(
        "/api/auth/login", json={"email": "shopper@x.com", "password": "fresh-pass"}
    )
    assert response.status_code == 200


async def test_reset_password_rejects_weak_password(client, channel, session_maker):
    await _signup(client, channel)
    await client.post("/api/auth/forgot-password", json={"email": "shopper@x.com"})
    code = channel.last_code("shopper@x.com")

    response = await client.post(
        "/api/auth/reset-password",
        json={"email": "shopper@x.com", "otp": code, "new_password": "123"},
    )

    assert response.status_code == 400
    assert response.json()["error"] == "ValidationError"
    assert await _ticket_count(session_maker, "shopper@x.com") == 1


async def test_forgot_password_requires_known_user(client):
    response = await client.post("/api/auth/forgot-password", json={"email": "ghost@x.com"})
    assert response.status_code == 400
    assert response.json()["detail"] == "User not found or not verified"


async def test_generic_order_verification(client, channel):
    response = await client.post(
        "/api/auth/request-otp", json={"email": "buyer@x.com", "purpose": "orderVerification"}
    )
    assert response.status_code == 200
    assert response.json()["sent"] is True
    code = channel.last_code("buyer@x.com")

    payload = {"email": "buyer@x.com", "purpose": "orderVerification", "otp": code}
    response = await client.post("/api/auth/verify", json=payload)
    assert response.json() == {"success": True, "verified": True}

    response = await client.post("/api/auth/verify", json=payload)
    assert response.json()["error"] == "NotFound"


async def test_generic_request_rejects_unknown_purpose(client):
    response = await client.post(
        "/api/auth/request-otp", json={"email": "buyer@x.com", "purpose": "checkout"}
    )
    assert response.status_code == 422


async def test_otp_requests_are_rate_limited(client, monkeypatch):
    monkeypatch.setattr(settings, "OTP_RATE_LIMIT", 2)
    payload = {"email": "buyer@x.com", "purpose": "login"}

    statuses = [
        (await client.post("/api/auth/request-otp", json=payload)).status_code
        for _ in range(3)
    ]

    assert statuses == [200, 200, 429]


async def test_profile_roundtrip(client, channel):
    token = (await _signup(client, channel))["token"]
    headers = {"Authorization": f"Bearer {token}"}

    response = await client.get("/api/user/me", headers=headers)
    assert response.json()["user"]["email"] == "shopper@x.com"

    response = await client.put("/api/user/me", json={"name": "B"}, headers=headers)
    assert response.json()["user"]["name"] == "B"


@pytest.mark.parametrize("header", [None, "Bearer not-a-token"])
async def test_profile_requires_session(client, header):
    headers = {"Authorization": header} if header else {}
    response = await client.get("/api/user/me", headers=headers)
    assert response.status_code in (401, 403)


async def test_rate_limit_ignores_spoofed_forwarding_headers(client, monkeypatch):
    monkeypatch.setattr(settings, "OTP_RATE_LIMIT", 2)
    payload = {"email": "buyer@x.com", "purpose": "login"}

    statuses = []
    for i in range(4):
        headers = {"X-Real-IP": f"10.0.0.{i}", "X-Forwarded-For": f"10.1.0.{i}"}
        response = await client.post("/api/auth/request-otp", json=payload, headers=headers)
        statuses.append(response.status_code)

    assert statuses == [200, 200, 429, 429]


async def test_rate_limit_uses_forwarded_ip_behind_trusted_proxy(client, monkeypatch):
    monkeypatch.setattr(settings, "OTP_RATE_LIMIT", 1)
    monkeypatch.setattr(settings, "TRUST_PROXY_HEADERS", True)
    payload = {"email": "buyer@x.com", "purpose": "login"}

    async def post(ip):
        response = await client.post(
            "/api/auth/request-otp", json=payload, headers={"X-Real-IP": ip}
        )
        return response.status_code

    assert [await post("10.0.0.1"), await post("10.0.0.2"), await post("10.0.0.1")] == [200, 200, 429]


async def test_rate_limit_repairs_counter_without_expiry(client, redis_conn):
    # Counter left behind by an INCR whose EXPIRE never landed
    await redis_conn.set("otp-rate:127.0.0.1", 3)

    response = await client.post(
        "/api/auth/request-otp", json={"email": "buyer@x.com", "purpose": "login"}
    )

    assert response.status_code == 200
    assert await redis_conn.get("otp-rate:127.0.0.1") == "4"
    assert 0 < await redis_conn.ttl("otp-rate:127.0.0.1") <= settings.OTP_RATE_WINDOW_SECONDS
