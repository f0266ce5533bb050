"""Tests for the sliding-window rate limiter and its counter stores."""

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest
from hypothesis import given, settings, strategies as st
from prometheus_client import CollectorRegistry

from src.webhook_server.metrics import WebhookMetrics
from src.webhook_server.ratelimit import (
    AtomicCounterStore,
    InMemoryCounterStore,
    RateLimiter,
    RedisCounterStore,
)
from src.webhook_server.ratelimit.store import SLIDING_WINDOW_SCRIPT


def run_async(coro):
    return asyncio.run(coro)


class SequentialStore:
    """Counter store without an atomic admit, backed by an in-memory store."""

    def __init__(self):
        self._inner = InMemoryCounterStore()
        self.calls = []

    async def remove_older_than(self, key, cutoff):
        self.calls.append("remove_older_than")
        return await self._inner.remove_older_than(key, cutoff)

    async def count(self, key):
        self.calls.append("count")
        return await self._inner.count(key)

    async def insert(self, key, score, value):
        self.calls.append("insert")
        await self._inner.insert(key, score, value)

    async def expire(self, key, seconds):
        self.calls.append("expire")
        await self._inner.expire(key, seconds)

    async def ping(self):
        return True

    async def close(self):
        pass


class FailingStore:
    """Counter store whose every call fails like an unreachable Redis."""

    async def remove_older_than(self, key, cutoff):
        raise ConnectionError("redis unreachable")

    async def count(self, key):
        raise ConnectionError("redis unreachable")

    async def insert(self, key, score, value):
        raise ConnectionError("redis unreachable")

    async def expire(self, key, seconds):
        raise ConnectionError("redis unreachable")

    async def admit(self, key, cutoff, limit, score, value, ttl_seconds):
        raise ConnectionError("redis unreachable")

    async def ping(self):
        return False

    async def close(self):
        pass


class HangingStore(FailingStore):
    async def admit(self, key, cutoff, limit, score, value, ttl_seconds):
        await asyncio.sleep(10)
        return False


class TestRateLimiter:
    def test_admits_up_to_max_then_rejects(self):
        limiter = RateLimiter(InMemoryCounterStore(), max_requests=3, window_seconds=900)

        async def scenario():
            return [
                await limiter.try_admit("u1:42:7", now=1000.0 + i) for i in range(4)
            ]

        assert run_async(scenario()) == [True, True, True, False]

    def test_admits_again_after_window(self):
        limiter = RateLimiter(InMemoryCounterStore(), max_requests=3, window_seconds=900)

        async def scenario():
            for i in range(3):
                assert await limiter.try_admit("k", now=1000.0 + i)
            at_boundary = await limiter.try_admit("k", now=1900.0)
            after_first_expired = await limiter.try_admit("k", now=1900.5)
            return at_boundary, after_first_expired

        assert run_async(scenario()) == (False, True)

    def test_keys_are_independent(self):
        limiter = RateLimiter(InMemoryCounterStore(), max_requests=1, window_seconds=60)

        async def scenario():
            return (
                await limiter.try_admit("u1:42:7", now=10.0),
                await limiter.try_admit("u1:42:8", now=10.0),
                await limiter.try_admit("u2:42:7", now=10.0),
                await limiter.try_admit("u1:42:7", now=11.0),
            )

        assert run_async(scenario()) == (True, True, True, False)

    def test_concurrent_admissions_never_exceed_limit(self):
        limiter = RateLimiter(InMemoryCounterStore(), max_requests=3, window_seconds=900)

        async def scenario():
            return await asyncio.gather(
                *(limiter.try_admit("k", now=50.0) for _ in range(10))
            )

        assert sum(run_async(scenario())) == 3

    def test_sequential_store_path(self):
        store = SequentialStore()
        limiter = RateLimiter(store, max_requests=1, window_seconds=60)

        async def scenario():
            return (
                await limiter.try_admit("k", now=1.0),
                await limiter.try_admit("k", now=2.0),
            )

        assert run_async(scenario()) == (True, False)
        assert store.calls == [
            "remove_older_than",
            "count",
            "insert",
            "expire",
            "remove_older_than",
            "count",
        ]

    def test_store_error_fails_open_and_logs(self, caplog):
        registry = CollectorRegistry()
        limiter = RateLimiter(
            FailingStore(),
            max_requests=1,
            metrics=WebhookMetrics(registry=registry),
        )

        with caplog.at_level(logging.ERROR):
            results = [run_async(limiter.try_admit("k", now=1.0)) for _ in range(3)]

        assert results == [True, True, True]
        assert "Rate limiter store error" in caplog.text
        assert registry.get_sample_value("webhook_rate_limit_store_errors_total") == 3.0

    def test_store_timeout_fails_open(self, caplog):
        limiter = RateLimiter(HangingStore(), max_requests=1, timeout_seconds=0.01)

        with caplog.at_level(logging.ERROR):
            assert run_async(limiter.try_admit("k", now=1.0)) is True

        assert any(
            getattr(record, "error_type", None) == "TimeoutError"
            for record in caplog.records
        )

    def test_uses_clock_when_now_omitted(self):
        limiter = RateLimiter(
            InMemoryCounterStore(), max_requests=1, window_seconds=10, clock=lambda: 500.0
        )

        async def scenario():
            return await limiter.try_admit("k"), await limiter.try_admit("k")

        assert run_async(scenario()) == (True, False)

    @pytest.mark.parametrize("max_requests,window", [(0, 900), (3, 0)])
    def test_rejects_invalid_limits(self, max_requests, window):
        with pytest.raises(ValueError):
            RateLimiter(InMemoryCounterStore(), max_requests=max_requests, window_seconds=window)

    @given(
        max_requests=st.integers(min_value=1, max_value=10),
        window=st.integers(min_value=1, max_value=3600),
        start=st.floats(min_value=0, max_value=1e9, allow_nan=False),
    )
    @settings(max_examples=50, deadline=None)
    def test_window_property(self, max_requests: int, window: int, start: float):
        limiter = RateLimiter(
            InMemoryCounterStore(), max_requests=max_requests, window_seconds=window
        )

        async def scenario():
            admitted = [
                await limiter.try_admit("k", now=start) for _ in range(max_requests)
            ]
            rejected = await limiter.try_admit("k", now=start)
            later = await limiter.try_admit("k", now=start + window + 1)
            return admitted, rejected, later

        admitted, rejected, later = run_async(scenario())
        assert all(admitted)
        assert rejected is False
        assert later is True


class TestInMemoryCounterStore:
    def test_is_atomic_store(self):
        assert isinstance(InMemoryCounterStore(), AtomicCounterStore)

    def test_remove_older_than_is_exclusive(self):
        store = InMemoryCounterStore()

        async def scenario():
            await store.insert("k", 10.0, "a")
            await store.insert("k", 20.0, "b")
            removed = await store.remove_older_than("k", 20.0)
            return removed, await store.count("k")

        assert run_async(scenario()) == (1, 1)

    def test_key_expiry(self):
        now = [100.0]
        store = InMemoryCounterStore(clock=lambda: now[0])

        async def scenario():
            await store.insert("k", 1.0, "a")
            await store.expire("k", 30)
            before = await store.count("k")
            now[0] = 130.0
            after = await store.count("k")
            return before, after

        assert run_async(scenario()) == (1, 0)

    def test_sweeps_expired_keys_that_are_never_accessed_again(self):
        now = [0.0]
        store = InMemoryCounterStore(clock=lambda: now[0], sweep_interval=60.0)

        async def scenario():
            for i in range(1000):
                await store.admit(f"k{i}", 0.0, 3, 1.0, "a", 10)
            held = len(store._entries)
            now[0] = 61.0
            await store.admit("fresh", 0.0, 3, 61.0, "a", 10)
            return held, set(store._entries), set(store._expires_at)

        assert run_async(scenario()) == (1000, {"fresh"}, {"fresh"})

    def test_sweep_waits_for_interval(self):
        now = [0.0]
        store = InMemoryCounterStore(clock=lambda: now[0], sweep_interval=60.0)

        async def scenario():
            await store.admit("old", 0.0, 3, 1.0, "a", 10)
            now[0] = 30.0
            await store.admit("new", 0.0, 3, 30.0, "a", 10)
            return set(store._entries)

        assert run_async(scenario()) == {"old", "new"}


class TestRedisCounterStore:
    def _store(self):
        client = MagicMock()
        client.register_script.return_value = AsyncMock(return_value=1)
        client.zremrangebyscore = AsyncMock(return_value=2)
        client.zcard = AsyncMock(return_value=3)
        client.zadd = AsyncMock()
        client.expire = AsyncMock()
        client.ping = AsyncMock(return_value=True)
        client.aclose = AsyncMock()
        return RedisCounterStore(client), client

    def test_registers_sliding_window_script(self):
        _, client = self._store()
        client.register_script.assert_called_once_with(SLIDING_WINDOW_SCRIPT)

    def test_primitives_use_prefixed_sorted_set(self):
        store, client = self._store()

        async def scenario():
            removed = await store.remove_older_than("u1:42:7", 100.0)
            count = await store.count("u1:42:7")
            await store.insert("u1:42:7", 150.0, "150.0-abc")
            await store.expire("u1:42:7", 900)
            return removed, count

        assert run_async(scenario()) == (2, 3)
        client.zremrangebyscore.assert_awaited_once_with(
            "ratelimit:u1:42:7", "-inf", "(100.0"
        )
        client.zcard.assert_awaited_once_with("ratelimit:u1:42:7")
        client.zadd.assert_awaited_once_with("ratelimit:u1:42:7", {"150.0-abc": 150.0})
        client.expire.assert_awaited_once_with("ratelimit:u1:42:7", 900)

    def test_admit_runs_script(self):
        store, client = self._store()
        script = client.register_script.return_value

        admitted = run_async(
            store.admit("k", cutoff=100.0, limit=3, score=1000.0, value="m", ttl_seconds=900)
        )

        assert admitted is True
        script.assert_awaited_once_with(
            keys=["ratelimit:k"], args=[100.0, 3, 1000.0, "m", 900]
        )

    def test_admit_rejected(self):
        store, client = self._store()
        client.register_script.return_value.return_value = 0

        admitted = run_async(
            store.admit("k", cutoff=0.0, limit=1, score=1.0, value="m", ttl_seconds=60)
        )

        assert admitted is False

    def test_ping_and_close(self):
        store, client = self._store()

        assert run_async(store.ping()) is True
        run_async(store.close())
        client.aclose.assert_awaited_once()
