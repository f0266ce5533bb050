"""Sliding-window rate limiting.

Rate Limiter:
- RateLimiter: per-key admission control, fails open on store errors

Counter Stores:
- CounterStore: primitive ordered-set operations
- AtomicCounterStore: stores that admit in a single atomic step
- RedisCounterStore: Redis sorted sets, shared across replicas
- InMemoryCounterStore: process-local, single replica only
"""

from src.webhook_server.ratelimit.limiter import (
    DEFAULT_MAX_REQUESTS,
    DEFAULT_WINDOW_SECONDS,
    RateLimiter,
)
from src.webhook_server.ratelimit.store import (
    AtomicCounterStore,
    CounterStore,
    InMemoryCounterStore,
    RedisCounterStore,
)

__all__ = [
    "DEFAULT_MAX_REQUESTS",
    "DEFAULT_WINDOW_SECONDS",
    "AtomicCounterStore",
    "CounterStore",
    "InMemoryCounterStore",
    "RateLimiter",
    "RedisCounterStore",
]
