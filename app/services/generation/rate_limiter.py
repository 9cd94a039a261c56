from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class RateLimiter(ABC):
    """
    Per-identity request quota.

    Implementations are constructed once at service start and owned by the
    application, so an external shared store can replace the in-memory one
    without touching call sites.
    """

    @abstractmethod
    async def check_and_consume(self, identity: str, limit: int, window: float) -> bool:
        """Consume one request for ``identity`` if the current window has room."""

    @abstractmethod
    def retry_after(self, window: float) -> float:
        """Seconds until the current window of length ``window`` resets."""

    def start(self) -> None:
        """Begin background maintenance, if any."""

    async def stop(self) -> None:
        """Stop background maintenance, if any."""


class InMemoryRateLimiter(RateLimiter):
    """
    Fixed-window request counter.

    Time is split into non-overlapping windows keyed by ``floor(now / window)``.
    Bursts at a window boundary are accepted. Check and increment happen under
    one lock, and a cancellable background sweep evicts buckets older than
    one window.
    """

    def __init__(self, sweep_interval: float = 3600.0, clock: Callable[[], float] = time.time):
        # (identity, window, bucket index) -> requests consumed in that bucket
        self._records: Dict[Tuple[str, float, int], int] = {}
        self._lock = asyncio.Lock()
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._sweep_task: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._records)

    async def check_and_consume(self, identity: str, limit: int, window: float) -> bool:
        if window <= 0:
            raise ValueError("window must be positive")
        async with self._lock:
            now = self._clock()
            key = (identity, window, int(now // window))
            count = self._records.setdefault(key, 0)
            if count >= limit:
                logger.info(f"Quota reached for {identity} ({count}/{limit} in current window)")
                return False
            self._records[key] = count + 1
            return True

    def retry_after(self, window: float) -> float:
        now = self._clock()
        reset_at = (now // window + 1) * window
        return max(0.0, reset_at - now)

    async def sweep(self) -> int:
        """Evict buckets that started more than one window ago. Returns how many were removed."""
        async with self._lock:
            now = self._clock()
            stale = [
                key for key in self._records
                if key[2] * key[1] < now - key[1]
            ]
            for key in stale:
                del self._records[key]
        if stale:
            logger.debug(f"Rate limiter sweep evicted {len(stale)} bucket(s)")
        return len(stale)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            await self.sweep()

    def start(self) -> None:
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop(), name="rate-limiter-sweep")
        logger.info(f"Rate limiter sweep scheduled every {self._sweep_interval:.0f}s")

    async def stop(self) -> None:
        task, self._sweep_task = self._sweep_task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Rate limiter sweep stopped")

    @property
    def running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()
