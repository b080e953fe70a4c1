import os
import re

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

import fakeredis
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from quicksnack.core.email_utils import DeliveryChannel, DeliveryResult, get_delivery_channel
from quicksnack.db.database import get_async_session, get_redis
from quicksnack.main import app
from quicksnack.models.base import Base

CODE_PATTERN = re.compile(r">(\d{6})</div>")


class RecordingChannel(DeliveryChannel):
    """Delivery channel that keeps every message in memory."""

    def __init__(self):
        self.sent = []
        self.fail = False
        self.explode = False

    async def send(self, to, subject, html):
        if self.explode:
            raise ConnectionError("smtp down")
        self.sent.append({"to": to, "subject": subject, "html": html})
        if self.fail:
            return DeliveryResult(success=False, error="mailbox unavailable")
        return DeliveryResult(success=True, message_id=f"<{len(self.sent)}@test>")

    def last_code(self, to=None):
        for message in reversed(self.sent):
            if to and message["to"] != to:
                continue
            match = CODE_PATTERN.search(message["html"])
            if match:
                return match.group(1)
        raise AssertionError(f"no OTP sent to {to}")


@pytest_asyncio.fixture
async def session_maker():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest_asyncio.fixture
async def redis_conn():
    conn = fakeredis.FakeAsyncRedis(decode_responses=True)
    yield conn
    await conn.flushall()


@pytest_asyncio.fixture
async def client(session_maker, channel, redis_conn):
    async def override_session():
        async with session_maker() as session:
            yield session

    async def override_redis():
        return redis_conn

    app.dependency_overrides[get_async_session] = override_session
    app.dependency_overrides[get_redis] = override_redis
    app.dependency_overrides[get_delivery_channel] = lambda: channel

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
