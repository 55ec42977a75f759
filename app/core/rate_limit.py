"""Fixed-window request limiter on top of `Cache`.

With the in-memory cache, windows are counted per instance.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional

from app.core.cache import Cache, get_cache
from app.services.exceptions import RateLimitExceededError

logger = logging.getLogger("app.rate_limit")


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_seconds: int


class RateLimiter:
    def __init__(self, name: str, limit: int, window_seconds: int, cache: Optional[Cache] = None):
        self.name = name
        self.limit = limit
        self.window_seconds = window_seconds
        self._cache = cache

    @property
    def cache(self) -> Cache:
        return self._cache if self._cache is not None else get_cache()

    def hit(self, identifier: str, now: Optional[float] = None) -> RateLimitResult:
        current = time.time() if now is None else now
        window = int(current // self.window_seconds)
        prefix = f"ratelimit:{self.name}:{identifier}"
        count = self.cache.incr(f"{prefix}:{window}", ttl=self.window_seconds)
        if count == 1:
            # First hit of a window; the previous counter is finished
            self.cache.delete(f"{prefix}:{window - 1}")
        reset = int((window + 1) * self.window_seconds - current)
        return RateLimitResult(
            allowed=count <= self.limit,
            remaining=max(0, self.limit - count),
            reset_seconds=max(1, reset),
        )

    def enforce(self, identifier: str, correlation_id: Optional[str] = None) -> RateLimitResult:
        """Count a hit and raise RateLimitExceededError once over the limit."""
        result = self.hit(identifier)
        if not result.allowed:
            logger.warning(
                "Rate limit exceeded",
                extra={
                    "correlation_id": correlation_id,
                    "limiter": self.name,
                    "identifier": identifier,
                    "retry_after": result.reset_seconds
                }
            )
            raise RateLimitExceededError(self.name, result.reset_seconds, correlation_id=correlation_id)
        return result


# Queueing triggers paid model calls downstream
queue_rate_limiter = RateLimiter("job_queue", limit=10, window_seconds=10)
worker_rate_limiter = RateLimiter("extraction_worker", limit=30, window_seconds=60)
