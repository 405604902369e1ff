from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from prometheus_client import Gauge, Histogram

from bloodwatch.utils.logger import get_logger

logger = get_logger(__name__)

# Registered once per process; bulkheads share them through the label.
BULKHEAD_INFLIGHT = Gauge(
    "bloodwatch_bulkhead_inflight",
    "In-flight operations under bulkhead",
    ["bulkhead"],
)
BULKHEAD_WAIT_SECONDS = Histogram(
    "bloodwatch_bulkhead_wait_seconds",
    "Time spent waiting for a bulkhead slot",
    ["bulkhead"],
    buckets=[0.001, 0.01, 0.05, 0.1, 0.5, 1, 5],
)


class Bulkhead:
    """
    Concurrency isolator using asyncio.Semaphore.

    Bounds concurrent calls to external endpoints, e.g. notifier sends, so a
    slow channel cannot hold every dispatch slot at once.
    """

    def __init__(self, name: str, max_concurrency: int = 10):
        self.name = name
        self._max = max(1, int(max_concurrency))
        self._sem = asyncio.Semaphore(self._max)

    @asynccontextmanager
    async def acquire(self, timeout: Optional[float] = None) -> AsyncIterator[None]:
        started = time.perf_counter()
        try:
            if timeout is None:
                await self._sem.acquire()
            else:
                await asyncio.wait_for(self._sem.acquire(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error(
                "bulkhead_acquire_timeout", bulkhead=self.name, timeout=timeout
            )
            raise
        BULKHEAD_WAIT_SECONDS.labels(bulkhead=self.name).observe(
            time.perf_counter() - started
        )
        try:
            BULKHEAD_INFLIGHT.labels(bulkhead=self.name).set(self.in_flight)
            yield
        finally:
            self._sem.release()
            BULKHEAD_INFLIGHT.labels(bulkhead=self.name).set(self.in_flight)

    @property
    def max_concurrency(self) -> int:
        return self._max

    @property
    def in_flight(self) -> int:
        return self._max - self._sem._value  # type: ignore[attr-defined]
