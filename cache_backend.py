"""Caching interface for aggregate reads (leaderboard, dashboard statistics).

When REDIS_URL is configured and reachable the cache is shared through Redis,
otherwise it lives in-process on top of ai_resilience.TTLCache.

Usage:
    from cache_backend import init_cache, get_cache
    init_cache(app)          # called once in create_app()
    cache = get_cache()
    cache.set("key", value, ttl=300)
    value = cache.get("key")
"""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol

import redis

from ai_resilience import TTLCache

logger = logging.getLogger(__name__)

LEADERBOARD_KEY = "studypair:leaderboard"
NOTES_STATS_KEY = "studypair:dashboard:notes-stats"
CONTRIBUTORS_KEY = "studypair:dashboard:top-contributors"


class CacheBackend(Protocol):
    def get(self, key: str) -> Any | None: ...
    def set(self, key: str, value: Any, ttl: int = 300) -> None: ...
    def delete(self, *keys: str) -> None: ...
    def clear(self) -> None: ...


class InMemoryCache:
    """JSON values stored in a process-local TTLCache."""

    def __init__(self) -> None:
        self._store = TTLCache()

    def get(self, key: str) -> Any | None:
        raw = self._store.get(key)
        return None if raw is None else json.loads(raw)

    def set(self, key: str, value: Any, ttl: int = 300) -> None:
        self._store.set(key, json.dumps(value), ttl)

    def delete(self, *keys: str) -> None:
        for key in keys:
            self._store.pop(key)

    def clear(self) -> None:
        self._store.clear()


class RedisCache:
    """JSON values in Redis. Errors are logged and treated as cache misses."""

    def __init__(self, client: redis.Redis) -> None:
        self._redis = client

    def get(self, key: str) -> Any | None:
        try:
            raw = self._redis.get(key)
        except redis.RedisError as e:
            logger.warning("Redis GET error (key=%s): %s", key, e)
            return None
        return None if raw is None else json.loads(raw)

    def set(self, key: str, value: Any, ttl: int = 300) -> None:
        try:
            self._redis.setex(key, ttl, json.dumps(value))
        except redis.RedisError as e:
            logger.warning("Redis SET error (key=%s): %s", key, e)

    def delete(self, *keys: str) -> None:
        if not keys:
            return
        try:
            self._redis.delete(*keys)
        except redis.RedisError as e:
            logger.warning("Redis DELETE error (keys=%s): %s", keys, e)

    def clear(self) -> None:
        try:
            for key in self._redis.scan_iter("studypair:*"):
                self._redis.delete(key)
        except redis.RedisError as e:
            logger.warning("Redis CLEAR error: %s", e)


_cache: CacheBackend | None = None


def init_cache(app) -> None:
    """Initialize the cache backend. Call once from create_app()."""
    global _cache

    redis_url = app.config.get("REDIS_URL", "")
    if redis_url:
        try:
            client = redis.Redis.from_url(redis_url)
            client.ping()
            _cache = RedisCache(client)
            app.logger.info("Cache backend: Redis (%s)", redis_url)
            return
        except redis.RedisError as e:
            app.logger.warning("Redis connection failed (%s), using in-memory cache.", e)

    _cache = InMemoryCache()
    app.logger.info("Cache backend: in-memory")


def get_cache() -> CacheBackend:
    """Return the active cache backend. Lazily initializes if needed."""
    global _cache
    if _cache is None:
        _cache = InMemoryCache()
    return _cache
