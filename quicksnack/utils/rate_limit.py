from fastapi import Depends, Request
from redis.exceptions import RedisError
import redis.asyncio as redis
import logging

from quicksnack.core.config import settings
from quicksnack.core.exceptions import RateLimited
from quicksnack.db.database import get_redis
from quicksnack.utils.helpers import get_client_ip

logger = logging.getLogger(__name__)


async def enforce_otp_rate_limit(request: Request, redis_conn: redis.Redis):
    """Fixed-window limit on OTP-issuing requests per client IP."""
    client_ip = get_client_ip(request, trust_forwarded=settings.TRUST_PROXY_HEADERS)
    key = f"otp-rate:{client_ip or 'unknown'}"
    window = settings.OTP_RATE_WINDOW_SECONDS
    try:
        async with redis_conn.pipeline(transaction=True) as pipe:
            count, ttl = await pipe.incr(key).ttl(key).execute()
        # -1: the key exists without an expiry (first hit, or a lost EXPIRE)
        if ttl < 0:
            await redis_conn.expire(key, window)
    except (RedisError, OSError) as e:
        logger.warning(f"OTP rate limiter unavailable, allowing request: {e}")
        return

    if count > settings.OTP_RATE_LIMIT:
        logger.info(f"OTP rate limit hit for {key}")
        raise RateLimited()


async def otp_rate_limit(request: Request, redis_conn: redis.Redis = Depends(get_redis)):
    await enforce_otp_rate_limit(request, redis_conn)
