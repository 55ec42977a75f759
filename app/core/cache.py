"""Key/value cache used for geocoding results, extraction results and rate limits.

Two backends:
- InMemoryCache: per-process. Values and counters are NOT shared between
  instances of the service, so limits enforced through it are per instance.
- RedisCache: shared across instances; selected when REDIS_URL is configured.
"""

import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple

import redis

from app.core.config import settings

logger = logging.getLogger("app.cache")


class Cache(ABC):
    """Minimal cache contract. Values must be JSON-serializable."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        ...

    @abstractmethod
    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        ...

    @abstractmethod
    def ttl(self, key: str) -> Optional[int]:
        """Seconds until `key` expires; None when missing or without expiry."""

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def incr(self, key: str, ttl: Optional[int] = None) -> int:
        """Increment a counter, setting `ttl` only when the counter is created."""


class InMemoryCache(Cache):
    """Thread-safe dict with lazy expiry. Per-process only.

    Expired entries are dropped when read, and by a sweep run from writes at
    most once every `sweep_interval` seconds, so keys that are never read
    again do not accumulate.
    """

    def __init__(self, sweep_interval: float = 60.0):
        self._data: Dict[str, Tuple[Any, Optional[float]]] = {}
        self._lock = threading.Lock()
        self.sweep_interval = sweep_interval
        self._next_sweep = time.monotonic() + sweep_interval

    def size(self) -> int:
        """Number of stored entries, expired or not."""
        with self._lock:
            return len(self._data)

    def _sweep(self) -> None:
        now = time.monotonic()
        if now < self._next_sweep:
            return
        self._next_sweep = now + self.sweep_interval
        expired = [k for k, (_, exp) in self._data.items() if exp is not None and exp <= now]
        for key in expired:
            del self._data[key]

    def _live(self, key: str) -> Optional[Tuple[Any, Optional[float]]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and expires_at <= time.monotonic():
            self._data.pop(key, None)
            return None
        return entry

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._live(key)
            return None if entry is None else entry[0]

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        expires_at = time.monotonic() + ttl if ttl else None
        with self._lock:
            self._sweep()
            self._data[key] = (value, expires_at)

    def ttl(self, key: str) -> Optional[int]:
        with self._lock:
            entry = self._live(key)
            if entry is None or entry[1] is None:
                return None
            return max(0, int(round(entry[1] - time.monotonic())))

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def incr(self, key: str, ttl: Optional[int] = None) -> int:
        with self._lock:
            self._sweep()
            entry = self._live(key)
            if entry is None:
                expires_at = time.monotonic() + ttl if ttl else None
                value = 1
            else:
                value = int(entry[0]) + 1
                expires_at = entry[1]
            self._data[key] = (value, expires_at)
            return value


class RedisCache(Cache):
    """Redis-backed cache; values are stored as JSON strings."""

    def __init__(self, client: "redis.Redis", prefix: str = "extraction"):
        self.client = client
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    def get(self, key: str) -> Optional[Any]:
        raw = self.client.get(self._key(key))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            return raw

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        self.client.set(self._key(key), json.dumps(value), ex=ttl or None)

    def ttl(self, key: str) -> Optional[int]:
        remaining = self.client.ttl(self._key(key))
        # -2: missing, -1: no expiry
        if remaining is None or remaining < 0:
            return None
        return int(remaining)

    def delete(self, key: str) -> None:
        self.client.delete(self._key(key))

    def incr(self, key: str, ttl: Optional[int] = None) -> int:
        full_key = self._key(key)
        value = int(self.client.incr(full_key))
        if value == 1 and ttl:
            self.client.expire(full_key, ttl)
        return value


def build_cache(redis_url: Optional[str] = None) -> Cache:
    url = redis_url if redis_url is not None else settings.REDIS_URL
    if url:
        logger.info("Using Redis cache", extra={"backend": "redis"})
        return RedisCache(redis.from_url(url, decode_responses=True))
    logger.info("Using in-memory cache (per instance)", extra={"backend": "memory"})
    return InMemoryCache()


_cache: Optional[Cache] = None
_cache_lock = threading.Lock()


def get_cache() -> Cache:
    """Process-wide cache, built on first use."""
    global _cache
    if _cache is None:
        with _cache_lock:
            if _cache is None:
                _cache = build_cache()
    return _cache
