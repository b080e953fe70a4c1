"""Storage handles shared by the API: the async engine and session factory
for users and OTP tickets, and the Redis client used by the OTP rate limiter.
"""
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from typing import AsyncGenerator
import redis.asyncio as redis

from quicksnack.core.config import settings
from quicksnack.models.base import Base
import quicksnack.models  # noqa: F401  registers tables on Base.metadata


# Database engine
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DB_ECHO,
    future=True
)

# Session factory
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False
)

# Redis connection
redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get database session."""
    async with async_session_maker() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def get_redis() -> redis.Redis:
    """Redis client for the OTP rate limiter; overridden in tests."""
    return redis_client


async def init_db():
    """Create missing users/otp_tickets tables. Runs from the app lifespan."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db():
    """Release pooled connections and the rate-limit Redis client on shutdown."""
    await engine.dispose()
    await redis_client.aclose()
