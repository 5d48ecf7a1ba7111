"""
Redis caching for show metadata.

CACHING STRATEGY
================

What we cache:
  - Show metadata (name, schedule, price, total seats), JSON-serialized
  - Cache key pattern: "shows:info:{show_id}"

Why:
  - Every booking attempt looks the show up before validating seats
  - Show metadata is owned by catalog management and effectively read-only
    for this service, so TTL expiry is the only invalidation we need

Why NOT cache booked seats:
  - The seat ledger is the source of truth for availability; a stale seat map
    would only turn into SeatsUnavailable at reserve time, but serving it as
    authoritative would mislead clients. Seat maps are always read live.

Failure policy:
  Redis is advisory. Any Redis error is logged and the lookup falls through
  to the underlying catalog ("fail open").
"""

import json
from typing import Optional

import redis.asyncio as redis

from reservations.core.config import Settings, get_settings
from reservations.core.logging import get_logger
from reservations.core.metrics import record_cache_operation
from reservations.services.interfaces import ShowCatalog, ShowInfo

logger = get_logger(__name__)


def _make_show_key(show_id: int) -> str:
    return f"shows:info:{show_id}"


class RedisShowCache:
    """Owns one Redis connection. `client` is None when caching is off or unreachable."""

    def __init__(self, url: str, ttl: int):
        self.url = url
        self.ttl = ttl
        self.client: Optional[redis.Redis] = None

    async def connect(self) -> Optional[redis.Redis]:
        if self.client is None:
            client = redis.from_url(
                self.url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
            )
            try:
                await client.ping()
            except Exception as e:
                logger.error("redis_connection_failed", error=str(e))
                await client.aclose()
                return None
            self.client = client
            logger.info("redis_connected", url=self.url)
        return self.client

    async def close(self) -> None:
        if self.client is not None:
            await self.client.aclose()
            self.client = None

    async def get_show(self, show_id: int) -> Optional[ShowInfo]:
        if self.client is None:
            return None

        key = _make_show_key(show_id)
        try:
            data = await self.client.get(key)
        except Exception as e:
            record_cache_operation("get", "error")
            logger.error("cache_get_error", key=key, error=str(e))
            return None

        if data:
            record_cache_operation("get", "hit")
            logger.debug("cache_hit", key=key)
            return ShowInfo.from_dict(json.loads(data))
        record_cache_operation("get", "miss")
        logger.debug("cache_miss", key=key)
        return None

    async def set_show(self, show: ShowInfo) -> None:
        if self.client is None:
            return

        key = _make_show_key(show.id)
        try:
            await self.client.setex(key, self.ttl, json.dumps(show.to_dict()))
            record_cache_operation("set", "ok")
            logger.debug("cache_set", key=key, ttl=self.ttl)
        except Exception as e:
            record_cache_operation("set", "error")
            logger.error("cache_set_error", key=key, error=str(e))

    async def stats(self) -> dict:
        """Redis cache statistics for the health endpoint."""
        if self.client is None:
            return {"status": "disabled"}

        try:
            info = await self.client.info("stats")
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


class CachedShowCatalog(ShowCatalog):
    """Read-through cache in front of another catalog."""

    def __init__(self, inner: ShowCatalog, cache: RedisShowCache):
        self.inner = inner
        self.cache = cache

    async def get_show(self, show_id: int) -> ShowInfo:
        cached = await self.cache.get_show(show_id)
        if cached is not None:
            return cached
        show = await self.inner.get_show(show_id)
        await self.cache.set_show(show)
        return show


def build_show_cache(settings: Optional[Settings] = None) -> Optional[RedisShowCache]:
    settings = settings or get_settings()
    if not settings.REDIS_ENABLED:
        return None
    return RedisShowCache(settings.REDIS_URL, settings.REDIS_CACHE_TTL)
