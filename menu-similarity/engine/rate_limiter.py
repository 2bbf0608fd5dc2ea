"""
Rolling-window rate limiter and sub-batch runner for bulk embedding jobs.

Two throttle layers:
  1. Per call: a 60-second window of call timestamps.  Before each item
     the window is pruned; if it is full, the runner sleeps until the
     oldest entry ages out (+1s buffer) and checks again.
  2. Per sub-batch: a fixed pause between consecutive sub-batches,
     absorbing provider-side burst penalties the window cannot see.

Items run strictly one at a time, in input order.  The window is plain
instance state with no lock: one limiter belongs to one cooperative
worker and must not be shared across threads.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable, Sequence, TypeVar

from config.settings import BATCH_DELAY_SEC, BATCH_SIZE, MAX_CALLS_PER_MINUTE

logger = logging.getLogger("rate_limiter")

T = TypeVar("T")

WINDOW_SEC = 60.0
SAFETY_BUFFER_SEC = 1.0

ProgressCallback = Callable[[int, int], None]


class RateLimiter:
    """Throttles a sequence of async jobs under a calls-per-minute ceiling.

    ``clock`` and ``sleep`` are injectable so tests can drive time by hand.
    """

    def __init__(
        self,
        max_calls_per_minute: int = MAX_CALLS_PER_MINUTE,
        batch_size: int = BATCH_SIZE,
        batch_delay_sec: float = BATCH_DELAY_SEC,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if max_calls_per_minute < 1:
            raise ValueError("max_calls_per_minute must be >= 1")
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.max_calls_per_minute = max_calls_per_minute
        self.batch_size = batch_size
        self.batch_delay_sec = batch_delay_sec
        self._clock = clock
        self._sleep = sleep
        self._calls: deque[float] = deque()

    @property
    def window_size(self) -> int:
        return len(self._calls)

    def _prune(self, now: float) -> None:
        while self._calls and now - self._calls[0] >= WINDOW_SEC:
            self._calls.popleft()

    async def wait_if_needed(self) -> float:
        """Block until the window has room.  Returns total seconds slept."""
        slept = 0.0
        while True:
            now = self._clock()
            self._prune(now)
            if len(self._calls) < self.max_calls_per_minute:
                return slept

            wait = WINDOW_SEC - (now - self._calls[0]) + SAFETY_BUFFER_SEC
            logger.info(
                "Rate limit reached (%d calls/min), waiting %.1fs",
                self.max_calls_per_minute, wait,
            )
            await self._sleep(wait)
            slept += wait

    def record_call(self) -> None:
        self._calls.append(self._clock())

    async def process_batch(
        self,
        items: Sequence[T],
        processor: Callable[[T], Awaitable[bool]],
        on_progress: ProgressCallback | None = None,
    ) -> int:
        """Run *processor* over *items*; return how many reported success.

        A ``False`` result is counted and skipped.  Exceptions from the
        processor propagate; processors are expected to catch their own.
        """
        total = len(items)
        processed = 0
        succeeded = 0
        batch_count = (total + self.batch_size - 1) // self.batch_size

        for batch_index, start in enumerate(range(0, total, self.batch_size)):
            batch = items[start : start + self.batch_size]
            logger.debug(
                "Sub-batch %d/%d (%d items)", batch_index + 1, batch_count, len(batch),
            )

            for item in batch:
                await self.wait_if_needed()
                self.record_call()
                if await processor(item):
                    succeeded += 1
                processed += 1
                if on_progress is not None:
                    on_progress(processed, total)

            if batch_index < batch_count - 1 and self.batch_delay_sec > 0:
                logger.debug("Waiting %.1fs before next sub-batch", self.batch_delay_sec)
                await self._sleep(self.batch_delay_sec)

        return succeeded
