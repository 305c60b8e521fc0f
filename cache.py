"""
Caching layer for explorer aggregates
In-memory TTL cache with an optional Redis tier
"""

import json
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Optional

import redis

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """Cache entry with metadata"""

    value: Any
    expires_at: float
    hit_count: int = 0


class MemoryCache:
    """In-memory LRU cache with per-entry TTL"""

    def __init__(self, max_size: int = 1000):
        self.max_size = max_size
        self.entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self.lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache"""
        with self.lock:
            entry = self.entries.get(key)
            if entry is None:
                return None
            if time.time() >= entry.expires_at:
                del self.entries[key]
                return None
            self.entries.move_to_end(key)
            entry.hit_count += 1
            return entry.value

    def set(self, key: str, value: Any, ttl: int = 300) -> None:
        """Set value in cache"""
        with self.lock:
            if key in self.entries:
                self.entries.move_to_end(key)
            elif len(self.entries) >= self.max_size:
                self.entries.popitem(last=False)
            self.entries[key] = CacheEntry(value=value, expires_at=time.time() + ttl)

    def delete(self, key: str) -> None:
        with self.lock:
            self.entries.pop(key, None)

    def clear(self) -> None:
        with self.lock:
            self.entries.clear()

    def get_or_set(self, key: str, ttl: int, compute: Callable[[], Any]) -> Any:
        """Cached value for key, computing and storing it on a miss"""
        value = self.get(key)
        if value is None:
            value = compute()
            self.set(key, value, ttl)
        return value

    def get_stats(self) -> dict:
        """Get cache statistics"""
        with self.lock:
            return {
                "mode": "memory",
                "size": len(self.entries),
                "max_size": self.max_size,
                "total_hits": sum(entry.hit_count for entry in self.entries.values()),
            }


class RedisCache(MemoryCache):
    """Redis-backed cache that degrades to the in-memory cache on failure"""

    def __init__(self, redis_url: str, key_prefix: str = "ledger-explorer:", max_size: int = 1000):
        super().__init__(max_size=max_size)
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self.fallback_mode = False
        self.client = redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
        try:
            self.client.ping()
            logger.info(f"Redis cache initialized: {redis_url}")
        except redis.RedisError as e:
            logger.warning(f"Redis connection failed ({e}), using in-memory cache")
            self.fallback_mode = True

    def _degrade(self, action: str, key: str, error: Exception) -> None:
        logger.error(f"Redis {action} error for key {key}: {error}")
        self.fallback_mode = True

    def get(self, key: str) -> Optional[Any]:
        if self.fallback_mode:
            return super().get(key)
        try:
            value = self.client.get(self.key_prefix + key)
        except redis.RedisError as e:
            self._degrade("get", key, e)
            return super().get(key)
        if value is None:
            return None
        try:
            return json.loads(value)
        except json.JSONDecodeError as e:
            logger.error(f"Redis JSON decode error for key {key}: {e}")
            return None

    def set(self, key: str, value: Any, ttl: int = 300) -> None:
        if self.fallback_mode:
            super().set(key, value, ttl)
            return
        try:
            self.client.setex(self.key_prefix + key, ttl, json.dumps(value))
        except (TypeError, ValueError) as e:
            logger.error(f"Redis serialization error for key {key}: {e}")
        except redis.RedisError as e:
            self._degrade("set", key, e)
            super().set(key, value, ttl)

    def delete(self, key: str) -> None:
        super().delete(key)
        if self.fallback_mode:
            return
        try:
            self.client.delete(self.key_prefix + key)
        except redis.RedisError as e:
            self._degrade("delete", key, e)

    def clear(self) -> None:
        super().clear()
        if self.fallback_mode:
            return
        try:
            for key in self.client.scan_iter(match=f"{self.key_prefix}*", count=100):
                self.client.delete(key)
        except redis.RedisError as e:
            self._degrade("clear", "*", e)

    def get_stats(self) -> dict:
        if self.fallback_mode:
            stats = super().get_stats()
            stats["mode"] = "fallback"
            return stats
        return {"mode": "redis", "url": self.redis_url, "key_prefix": self.key_prefix}


def create_cache(redis_url: str = "", max_size: int = 1000) -> MemoryCache:
    """Redis cache when a URL is configured, otherwise in-memory"""
    if redis_url:
        return RedisCache(redis_url, max_size=max_size)
    return MemoryCache(max_size=max_size)
