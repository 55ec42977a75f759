import pytest

from app.core import cache as cache_module
from app.core.cache import InMemoryCache, RedisCache
from app.core.rate_limit import RateLimiter
from app.services.exceptions import RateLimitExceededError


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now


class FakeRedis:
    """Just enough of redis.Redis for RedisCache."""

    def __init__(self):
        self.values = {}
        self.expiry = {}

    def get(self, key):
        return self.values.get(key)

    def set(self, key, value, ex=None):
        self.values[key] = value
        if ex:
            self.expiry[key] = ex
        else:
            self.expiry.pop(key, None)

    def ttl(self, key):
        if key not in self.values:
            return -2
        return self.expiry.get(key, -1)

    def delete(self, key):
        self.values.pop(key, None)
        self.expiry.pop(key, None)

    def incr(self, key):
        self.values[key] = int(self.values.get(key, 0)) + 1
        return self.values[key]

    def expire(self, key, seconds):
        self.expiry[key] = seconds


@pytest.fixture
def clock(monkeypatch):
    fake = FakeClock()
    monkeypatch.setattr(cache_module.time, "monotonic", fake)
    return fake


def test_in_memory_expiry(clock):
    cache = InMemoryCache()
    cache.set("k", {"v": 1}, ttl=10)
    cache.set("forever", "x")

    assert cache.get("k") == {"v": 1}
    assert cache.ttl("k") == 10
    assert cache.ttl("forever") is None

    clock.now += 10
    assert cache.get("k") is None
    assert cache.ttl("k") is None
    assert cache.get("forever") == "x"


def test_in_memory_incr_keeps_first_ttl(clock):
    cache = InMemoryCache()
    assert cache.incr("c", ttl=5) == 1
    clock.now += 3
    assert cache.incr("c", ttl=5) == 2
    clock.now += 2
    assert cache.incr("c", ttl=5) == 1


def test_in_memory_delete():
    cache = InMemoryCache()
    cache.set("k", 1)
    cache.delete("k")
    cache.delete("missing")
    assert cache.get("k") is None


def test_redis_cache_round_trip_and_prefix():
    client = FakeRedis()
    cache = RedisCache(client, prefix="test")

    cache.set("geocode:x", {"lat": 1.5}, ttl=60)
    assert client.values["test:geocode:x"] == '{"lat": 1.5}'
    assert cache.get("geocode:x") == {"lat": 1.5}
    assert cache.ttl("geocode:x") == 60
    assert cache.ttl("missing") is None

    cache.set("plain", "v")
    assert cache.ttl("plain") is None

    cache.delete("geocode:x")
    assert cache.get("geocode:x") is None


def test_redis_incr_sets_expiry_once():
    client = FakeRedis()
    cache = RedisCache(client)
    assert cache.incr("n", ttl=30) == 1
    client.expiry["extraction:n"] = 12
    assert cache.incr("n", ttl=30) == 2
    assert client.expiry["extraction:n"] == 12


def test_build_cache_without_redis_url():
    assert isinstance(cache_module.build_cache(""), InMemoryCache)


def test_rate_limiter_fixed_window():
    limiter = RateLimiter("t", limit=2, window_seconds=10, cache=InMemoryCache())

    first = limiter.hit("u", now=100.0)
    second = limiter.hit("u", now=101.0)
    third = limiter.hit("u", now=102.0)
    assert (first.allowed, second.allowed, third.allowed) == (True, True, False)
    assert first.remaining == 1
    assert third.remaining == 0
    assert third.reset_seconds == 8

    # New window, fresh count
    assert limiter.hit("u", now=110.0).allowed
    # Identifiers are counted separately
    assert limiter.hit("other", now=102.0).allowed


def test_in_memory_sweep_drops_keys_never_read_again(clock):
    cache = InMemoryCache(sweep_interval=30)
    for i in range(100):
        cache.set(f"k{i}", i, ttl=5)
    cache.set("forever", "x")
    assert cache.size() == 101

    clock.now += 30
    cache.set("fresh", 1, ttl=5)

    assert cache.size() == 2
    assert cache.get("forever") == "x"


def test_rate_limiter_memory_stays_bounded_across_windows():
    cache = InMemoryCache()
    limiter = RateLimiter("t", limit=10, window_seconds=10, cache=cache)

    for i in range(1000):
        assert limiter.hit("user-1", now=1000.0 + i * 10).allowed

    assert cache.size() == 1


def test_rate_limiter_stale_windows_swept_for_many_identifiers(clock):
    cache = InMemoryCache(sweep_interval=60)
    limiter = RateLimiter("t", limit=10, window_seconds=10, cache=cache)

    for i in range(50):
        limiter.hit(f"user-{i}", now=1000.0)
    clock.now += 60
    limiter.hit("late", now=1060.0)

    assert cache.size() == 1


def test_rate_limiter_enforce_raises_with_retry_after():
    limiter = RateLimiter("t", limit=1, window_seconds=3600, cache=InMemoryCache())
    limiter.enforce("u")

    with pytest.raises(RateLimitExceededError) as excinfo:
        limiter.enforce("u", correlation_id="cid")

    err = excinfo.value
    assert err.http_status.value == 429
    assert int(err.headers["Retry-After"]) >= 1
    assert err.correlation_id == "cid"
