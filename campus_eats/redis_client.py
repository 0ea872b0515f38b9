"""
Shared Redis connection: the event queue (LPUSH) and the notifier's pub/sub.
Subscriptions are long-lived, so idle connections are health-checked.
"""
import redis.asyncio as redis
from campus_eats.config import settings

PUBSUB_HEALTH_CHECK_INTERVAL = 30

_redis: redis.Redis | None = None


async def get_redis() -> redis.Redis:
    global _redis
    if _redis is None:
        _redis = redis.from_url(
            settings.redis_url,
            decode_responses=True,
            health_check_interval=PUBSUB_HEALTH_CHECK_INTERVAL,
        )
    return _redis


async def redis_available() -> bool:
    """True if Redis answers PING; used by /health when a Redis backend is configured."""
    try:
        return bool(await (await get_redis()).ping())
    except redis.RedisError:
        return False


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None
