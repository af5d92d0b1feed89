import logging

from quizplatform.rate_limit import InMemoryCounterStore, RateLimiter, RedisCounterStore, build_rate_limiter


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def test_in_memory_limiter_blocks_after_limit_and_resets_with_window():
    clock = FakeClock()
    limiter = RateLimiter(InMemoryCounterStore(clock=clock), limit=2, window_seconds=60)

    first = limiter.hit("user:1")
    second = limiter.hit("user:1")
    third = limiter.hit("user:1")

    assert (first.allowed, first.remaining) == (True, 1)
    assert (second.allowed, second.remaining) == (True, 0)
    assert (third.allowed, third.remaining) == (False, 0)
    assert third.reset_at == 1060.0
    assert limiter.hit("user:2").allowed

    clock.now = 1061.0
    assert limiter.hit("user:1").allowed


class FakePipeline:
    def __init__(self, backend):
        self.backend = backend
        self.ops = []

    def incr(self, key):
        self.ops.append(("incr", key))

    def ttl(self, key):
        self.ops.append(("ttl", key))

    def execute(self):
        results = []
        for op, key in self.ops:
            if op == "incr":
                self.backend.counts[key] = self.backend.counts.get(key, 0) + 1
                results.append(self.backend.counts[key])
            else:
                results.append(self.backend.ttls.get(key, -1))
        return results


class FakeRedis:
    def __init__(self):
        self.counts = {}
        self.ttls = {}
        self.expire_calls = 0

    def pipeline(self):
        return FakePipeline(self)

    def expire(self, key, seconds):
        self.expire_calls += 1
        self.ttls[key] = seconds


def test_redis_store_shares_counters_under_namespaced_keys():
    backend = FakeRedis()
    limiter_a = RateLimiter(RedisCounterStore(backend, prefix="quiz"), limit=2)
    limiter_b = RateLimiter(RedisCounterStore(backend, prefix="quiz"), limit=2)

    assert limiter_a.hit("user:9").allowed
    assert limiter_b.hit("user:9").allowed
    assert not limiter_a.hit("user:9").allowed
    assert backend.counts == {"quiz:user:9": 3}
    assert backend.ttls == {"quiz:user:9": 60}
    assert backend.expire_calls == 1


def test_redis_store_rearms_a_key_without_expiry():
    backend = FakeRedis()
    backend.counts["ratelimit:user:4"] = 5

    RedisCounterStore(backend).increment("user:4", 30)

    assert backend.ttls == {"ratelimit:user:4": 30}


def test_redis_url_credentials_stay_out_of_logs(monkeypatch, caplog):
    monkeypatch.setenv("QUIZPLATFORM_REDIS_URL", "redis://:s3cret@cache.internal:6379/0")
    monkeypatch.setattr("redis.from_url", lambda url, **kwargs: FakeRedis())

    with caplog.at_level(logging.INFO, logger="quizplatform.rate_limit"):
        limiter = build_rate_limiter()

    assert isinstance(limiter.store, RedisCounterStore)
    assert "cache.internal" in caplog.text
    assert "s3cret" not in caplog.text
