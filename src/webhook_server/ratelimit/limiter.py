"""Sliding-window rate limiter for assistant triggers.

Each (author, project, resource) pair owns a bucket of admission entries in
the counter store. An admission succeeds while fewer than ``max_requests``
entries are younger than ``window_seconds``:

1. Remove entries scored below ``now - window_seconds``.
2. If the remaining count is at least ``max_requests``, reject.
3. Otherwise insert an entry scored at ``now`` with a unique member and
   refresh the bucket's expiry to the window size.

Stores that implement AtomicCounterStore run the three steps as one atomic
operation. Plain CounterStores run them as separate calls; concurrent
requests for the same key may then both be admitted at the boundary.

If the store fails or times out, the limiter admits the request and logs
the fault. The limiter is an abuse guard, so assistant availability wins
over strict enforcement.
"""

import asyncio
import logging
import time
import uuid
from typing import Callable, Optional

from src.webhook_server.metrics import WebhookMetrics
from src.webhook_server.ratelimit.store import AtomicCounterStore, CounterStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_REQUESTS = 3
DEFAULT_WINDOW_SECONDS = 60 * 15


class RateLimiter:
    """Sliding-window admission control over a shared counter store.

    Attributes:
        store: The counter store holding admission entries.
        max_requests: Admissions allowed per key within one window.
        window_seconds: Length of the trailing window in seconds.
        timeout_seconds: Upper bound for one admission against the store.
    """

    def __init__(
        self,
        store: CounterStore,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        timeout_seconds: float = 2.0,
        clock: Callable[[], float] = time.time,
        metrics: Optional[WebhookMetrics] = None,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds < 1:
            raise ValueError("window_seconds must be at least 1")

        self.store = store
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        self._metrics = metrics

    async def try_admit(self, key: str, now: Optional[float] = None) -> bool:
        """Try to admit one request for ``key``.

        Args:
            key: Rate-limit bucket key ("{author}:{project_id}:{resource}").
            now: Current time in epoch seconds. Defaults to the clock.

        Returns:
            True if the request is admitted, False if the bucket is full.
            Always True when the counter store is unavailable.
        """
        if now is None:
            now = self._clock()

        try:
            return await asyncio.wait_for(
                self._admit(key, now),
                timeout=self.timeout_seconds,
            )
        except Exception as e:
            logger.error(
                "Rate limiter store error, admitting request",
                extra={
                    "key": key,
                    "error_type": type(e).__name__,
                    "error": str(e),
                },
            )
            if self._metrics is not None:
                self._metrics.record_store_error()
            return True

    async def _admit(self, key: str, now: float) -> bool:
        cutoff = now - self.window_seconds
        # Timestamps alone collide under concurrent admissions
        member = f"{now}-{uuid.uuid4().hex}"

        if isinstance(self.store, AtomicCounterStore):
            return await self.store.admit(
                key,
                cutoff=cutoff,
                limit=self.max_requests,
                score=now,
                value=member,
                ttl_seconds=self.window_seconds,
            )

        await self.store.remove_older_than(key, cutoff)

        count = await self.store.count(key)
        if count >= self.max_requests:
            return False

        await self.store.insert(key, now, member)
        await self.store.expire(key, self.window_seconds)
        return True
