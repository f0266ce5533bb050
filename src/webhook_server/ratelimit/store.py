"""Counter stores backing the sliding-window rate limiter.

A counter store keeps, per rate-limit key, an ordered set of admission
entries scored by their insertion time in seconds. Two implementations:

- RedisCounterStore: sorted sets in Redis (redis.asyncio). Shared by all
  replicas. Admission runs as a single Lua script, so remove + count +
  insert is atomic per key on the server.
- InMemoryCounterStore: process-local dicts guarded by an asyncio.Lock.
  Only correct for a single replica; used for local development and tests.

Both implement the four primitive operations (CounterStore) and the atomic
``admit`` shortcut (AtomicCounterStore).
"""

import asyncio
import logging
import time
from typing import Dict, Optional, Protocol, runtime_checkable

import redis.asyncio as redis

logger = logging.getLogger(__name__)


@runtime_checkable
class CounterStore(Protocol):
    """Primitive ordered-set operations used by the rate limiter."""

    async def remove_older_than(self, key: str, cutoff: float) -> int:
        """Remove entries scored strictly below ``cutoff``."""
        ...

    async def count(self, key: str) -> int:
        """Return the number of entries under ``key``."""
        ...

    async def insert(self, key: str, score: float, value: str) -> None:
        """Insert ``value`` scored at ``score``."""
        ...

    async def expire(self, key: str, seconds: int) -> None:
        """Set the time-to-live of ``key``."""
        ...

    async def ping(self) -> bool:
        """Return True if the store is reachable."""
        ...

    async def close(self) -> None:
        """Release connections held by the store."""
        ...


@runtime_checkable
class AtomicCounterStore(CounterStore, Protocol):
    """A counter store that can run the whole admission step atomically."""

    async def admit(
        self,
        key: str,
        cutoff: float,
        limit: int,
        score: float,
        value: str,
        ttl_seconds: int,
    ) -> bool:
        """Drop entries below ``cutoff``; insert ``value`` if fewer than ``limit`` remain.

        Returns:
            True if the entry was inserted (request admitted).
        """
        ...


# KEYS[1] = bucket key
# ARGV = cutoff, limit, score, member, ttl
SLIDING_WINDOW_SCRIPT = """
redis.call('ZREMRANGEBYSCORE', KEYS[1], '-inf', '(' .. ARGV[1])
local count = redis.call('ZCARD', KEYS[1])
if count >= tonumber(ARGV[2]) then
  return 0
end
redis.call('ZADD', KEYS[1], ARGV[3], ARGV[4])
redis.call('EXPIRE', KEYS[1], ARGV[5])
return 1
"""


class RedisCounterStore:
    """Counter store backed by Redis sorted sets.

    Attributes:
        client: The redis.asyncio client.
        key_prefix: Prefix applied to every bucket key.
    """

    def __init__(self, client: redis.Redis, key_prefix: str = "ratelimit:"):
        self.client = client
        self.key_prefix = key_prefix
        self._admit_script = client.register_script(SLIDING_WINDOW_SCRIPT)

    @classmethod
    def from_url(
        cls,
        url: str,
        timeout_seconds: float = 2.0,
        key_prefix: str = "ratelimit:",
    ) -> "RedisCounterStore":
        """Create a store with a pooled client for ``url``.

        Socket and connect timeouts are both set to ``timeout_seconds`` so a
        stalled Redis surfaces as an error instead of a hung request.
        """
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout_seconds,
            socket_connect_timeout=timeout_seconds,
        )
        logger.info("Redis counter store configured", extra={"key_prefix": key_prefix})
        return cls(client, key_prefix=key_prefix)

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    async def remove_older_than(self, key: str, cutoff: float) -> int:
        return await self.client.zremrangebyscore(self._key(key), "-inf", f"({cutoff}")

    async def count(self, key: str) -> int:
        return await self.client.zcard(self._key(key))

    async def insert(self, key: str, score: float, value: str) -> None:
        await self.client.zadd(self._key(key), {value: score})

    async def expire(self, key: str, seconds: int) -> None:
        await self.client.expire(self._key(key), seconds)

    async def admit(
        self,
        key: str,
        cutoff: float,
        limit: int,
        score: float,
        value: str,
        ttl_seconds: int,
    ) -> bool:
        result = await self._admit_script(
            keys=[self._key(key)],
            args=[cutoff, limit, score, value, ttl_seconds],
        )
        return int(result) == 1

    async def ping(self) -> bool:
        return bool(await self.client.ping())

    async def close(self) -> None:
        await self.client.aclose()


class InMemoryCounterStore:
    """Process-local counter store for a single replica.

    Entries live in a dict per key. Expiry is checked lazily on access, and
    at most once per ``sweep_interval`` seconds every expired key is dropped,
    so buckets of authors who never come back do not accumulate.
    """

    def __init__(self, clock=None, sweep_interval: float = 60.0):
        self._entries: Dict[str, Dict[str, float]] = {}
        self._expires_at: Dict[str, float] = {}
        self._lock = asyncio.Lock()
        self._clock = clock or time.monotonic
        self.sweep_interval = sweep_interval
        self._next_sweep = self._clock() + sweep_interval

    def _sweep(self) -> None:
        now = self._clock()
        if now < self._next_sweep:
            return
        self._next_sweep = now + self.sweep_interval
        expired = [key for key, at in self._expires_at.items() if now >= at]
        for key in expired:
            self._entries.pop(key, None)
            del self._expires_at[key]

    def _bucket(self, key: str) -> Dict[str, float]:
        expires_at: Optional[float] = self._expires_at.get(key)
        if expires_at is not None and self._clock() >= expires_at:
            self._entries.pop(key, None)
            self._expires_at.pop(key, None)
        return self._entries.setdefault(key, {})

    def _remove_older_than(self, key: str, cutoff: float) -> int:
        bucket = self._bucket(key)
        stale = [value for value, score in bucket.items() if score < cutoff]
        for value in stale:
            del bucket[value]
        return len(stale)

    def _expire(self, key: str, seconds: int) -> None:
        self._expires_at[key] = self._clock() + seconds

    async def remove_older_than(self, key: str, cutoff: float) -> int:
        async with self._lock:
            return self._remove_older_than(key, cutoff)

    async def count(self, key: str) -> int:
        async with self._lock:
            return len(self._bucket(key))

    async def insert(self, key: str, score: float, value: str) -> None:
        async with self._lock:
            self._bucket(key)[value] = score

    async def expire(self, key: str, seconds: int) -> None:
        async with self._lock:
            self._sweep()
            self._expire(key, seconds)

    async def admit(
        self,
        key: str,
        cutoff: float,
        limit: int,
        score: float,
        value: str,
        ttl_seconds: int,
    ) -> bool:
        async with self._lock:
            self._sweep()
            self._remove_older_than(key, cutoff)
            bucket = self._bucket(key)
            if len(bucket) >= limit:
                return False
            bucket[value] = score
            self._expire(key, ttl_seconds)
            return True

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        self._entries.clear()
        self._expires_at.clear()
