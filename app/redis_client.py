import logging

import redis.asyncio as aioredis
from app.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

_redis_pool: aioredis.Redis | None = None


async def get_redis() -> aioredis.Redis:
    global _redis_pool
    if _redis_pool is None:
        _redis_pool = aioredis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=100,
        )
    return _redis_pool


async def close_redis() -> None:
    global _redis_pool
    if _redis_pool:
        await _redis_pool.aclose()
        _redis_pool = None


# ---------------------------------------------------------------------------
# Cache keys
# ---------------------------------------------------------------------------

ALL_BOOKINGS_KEY = "bookings:all"
ALL_DRIVERS_KEY = "drivers:all"


def booking_key(booking_id: int) -> str:
    return f"booking:{booking_id}"


def driver_key(driver_id: int) -> str:
    return f"driver:{driver_id}"


# ---------------------------------------------------------------------------
# Cache-aside helpers
# ---------------------------------------------------------------------------

async def cache_set(redis: aioredis.Redis, key: str, value: str, ttl: int | None = None) -> None:
    await redis.setex(key, ttl or settings.cache_ttl_seconds, value)


async def cache_get(redis: aioredis.Redis, key: str) -> str | None:
    return await redis.get(key)


async def cache_delete(redis: aioredis.Redis, *keys: str) -> None:
    if keys:
        await redis.delete(*keys)


async def invalidate_booking(redis: aioredis.Redis, booking_id: int | None = None) -> None:
    """Drop the booking list and, if given, the single booking entry."""
    keys = [ALL_BOOKINGS_KEY]
    if booking_id is not None:
        keys.append(booking_key(booking_id))
    await cache_delete(redis, *keys)


async def invalidate_driver(redis: aioredis.Redis, *driver_ids: int | None) -> None:
    keys = [ALL_DRIVERS_KEY] + [driver_key(d) for d in driver_ids if d is not None]
    await cache_delete(redis, *keys)
    logger.debug("Invalidated driver cache keys %s", keys)
