"""
Redis caching service for listing search results.

CACHING STRATEGY
================

What we cache:
  - Listing search responses (paginated, JSON-serialized)
  - Cache key pattern: "listings:list:<sorted query parameters>"

Invalidation:
  - Any listing create/update/delete, inventory change, or booking status
    change deletes every "listings:list:*" key (availability-filtered
    searches depend on Confirmed bookings).
  - TTL-based expiry as safety net (5 minutes)

Why NOT cache availability for a single listing:
  - Booking and confirmation need the live set of held units.
  - A stale answer there is a double booking, not just a slow page.

Redis is optional: with REDIS_ENABLED=false or Redis down every call is a miss.
"""

import json
from typing import Any, Optional

import redis.asyncio as redis

from reservations.core.config import get_settings
from reservations.core.logging import get_logger
from reservations.core.metrics import record_cache_operation

logger = get_logger(__name__)
settings = get_settings()

_redis_client: Optional[redis.Redis] = None

LISTING_LIST_PREFIX = "listings:list:"


async def get_redis() -> Optional[redis.Redis]:
    """Get or create Redis connection. Returns None if Redis is disabled."""
    global _redis_client

    if not settings.REDIS_ENABLED:
        return None

    if _redis_client is None:
        try:
            _redis_client = redis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
            )
            await _redis_client.ping()
            logger.info("redis_connected", url=settings.REDIS_URL)
        except Exception as e:
            logger.error("redis_connection_failed", error=str(e))
            _redis_client = None
            return None

    return _redis_client


async def close_redis() -> None:
    """Close Redis connection on shutdown."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


def make_listing_list_key(params: dict[str, Any]) -> str:
    parts = [f"{name}={params[name]}" for name in sorted(params) if params[name] is not None]
    return LISTING_LIST_PREFIX + "&".join(parts)


async def get_cached_listings(params: dict[str, Any]) -> Optional[dict]:
    client = await get_redis()
    if not client:
        return None

    key = make_listing_list_key(params)
    try:
        data = await client.get(key)
        record_cache_operation("get", hit=bool(data))
        if data:
            logger.debug("cache_hit", key=key)
            return json.loads(data)
        logger.debug("cache_miss", key=key)
    except Exception as e:
        logger.error("cache_get_error", key=key, error=str(e))

    return None


async def set_cached_listings(params: dict[str, Any], data: dict) -> None:
    client = await get_redis()
    if not client:
        return

    key = make_listing_list_key(params)
    try:
        await client.setex(key, settings.REDIS_CACHE_TTL, json.dumps(data, default=str))
        logger.debug("cache_set", key=key, ttl=settings.REDIS_CACHE_TTL)
    except Exception as e:
        logger.error("cache_set_error", key=key, error=str(e))


async def invalidate_listing_cache() -> None:
    """Delete every cached listing search page."""
    client = await get_redis()
    if not client:
        return

    try:
        deleted = 0
        async for key in client.scan_iter(match=f"{LISTING_LIST_PREFIX}*", count=100):
            await client.delete(key)
            deleted += 1
        logger.info("cache_invalidated", keys_deleted=deleted)
    except Exception as e:
        logger.error("cache_invalidation_error", error=str(e))


async def get_cache_stats() -> dict:
    """Get Redis cache statistics for monitoring."""
    client = await get_redis()
    if not client:
        return {"status": "disabled"}

    try:
        info = await client.info("stats")
        hits = info.get("keyspace_hits", 0)
        misses = info.get("keyspace_misses", 0)
        return {
            "status": "connected",
            "hits": hits,
            "misses": misses,
            "hit_rate": round(hits / max(hits + misses, 1) * 100, 2),
        }
    except Exception as e:
        return {"status": "error", "error": str(e)}
