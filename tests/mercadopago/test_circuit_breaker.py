"""Tests for the Redis-backed circuit breaker storage."""
from datetime import datetime, timezone

import pybreaker
import pytest

from wardrobe_billing.services.circuit_breaker import CircuitBreakerListener, RedisCircuitBreakerStorage


class FakeRedis:
    def __init__(self):
        self.data = {}

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value, ex=None):
        self.data[key] = str(value)

    def incr(self, key):
        self.data[key] = str(int(self.data.get(key, 0)) + 1)

    def expire(self, key, seconds):
        pass

    def delete(self, key):
        self.data.pop(key, None)


class TestRedisStorage:
    def test_defaults(self):
        storage = RedisCircuitBreakerStorage("mp", client=FakeRedis())
        assert storage.state == pybreaker.STATE_CLOSED
        assert storage.counter == 0
        assert storage.success_counter == 0
        assert storage.opened_at is None

    def test_counters(self):
        storage = RedisCircuitBreakerStorage("mp", client=FakeRedis())
        storage.increment_counter()
        storage.increment_counter()
        storage.increment_success_counter()
        assert (storage.counter, storage.success_counter) == (2, 1)
        storage.reset_counter()
        storage.reset_success_counter()
        assert (storage.counter, storage.success_counter) == (0, 0)

    def test_opened_at_roundtrip(self):
        storage = RedisCircuitBreakerStorage("mp", client=FakeRedis())
        opened = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        storage.opened_at = opened
        assert storage.opened_at == opened

    def test_shared_state_across_instances(self):
        redis_client = FakeRedis()
        first = pybreaker.CircuitBreaker(
            fail_max=1,
            reset_timeout=60,
            state_storage=RedisCircuitBreakerStorage("mp", client=redis_client),
            listeners=[CircuitBreakerListener("mp")],
        )

        def failing():
            raise RuntimeError("down")

        with pytest.raises((RuntimeError, pybreaker.CircuitBreakerError)):
            first.call(failing)

        second = pybreaker.CircuitBreaker(
            fail_max=1,
            reset_timeout=60,
            state_storage=RedisCircuitBreakerStorage("mp", client=redis_client),
        )
        with pytest.raises(pybreaker.CircuitBreakerError):
            second.call(lambda: "ok")
