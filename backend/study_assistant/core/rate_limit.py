"""
Process-wide scheduler for outbound generation calls.

Bounds how many provider calls run at once, spaces out call starts, and
rejects new work once too many calls are already waiting. Also provides
the rate-limit backoff helpers used by GenerationClient.
"""

import asyncio
import logging
import random
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

logger = logging.getLogger(__name__)


class QueueOverflowError(Exception):
    """Raised when the scheduler's pending queue is full."""


class CallScheduler:
    """Concurrency + spacing limiter with a bounded wait queue.

    Usage:
        async with scheduler.slot():
            await llm.ainvoke(messages)
    """

    def __init__(self, max_concurrent: int = 2, min_interval: float = 0.2, max_pending: int = 20):
        self.max_concurrent = max_concurrent
        self.min_interval = min_interval
        self.max_pending = max_pending
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._spacing_lock = asyncio.Lock()
        self._last_start = 0.0
        self._pending = 0
        self._running = 0

    @property
    def pending(self) -> int:
        return self._pending

    @property
    def running(self) -> int:
        return self._running

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        """Hold one concurrency slot for the duration of the block.

        Raises:
            QueueOverflowError: If max_pending callers are already waiting.
        """
        if self._semaphore.locked() and self._pending >= self.max_pending:
            raise QueueOverflowError(
                f"Generation queue is full ({self._pending} pending, {self._running} running)"
            )

        self._pending += 1
        try:
            await self._semaphore.acquire()
        finally:
            self._pending -= 1

        self._running += 1
        try:
            await self._wait_for_spacing()
            yield
        finally:
            self._running -= 1
            self._semaphore.release()

    async def _wait_for_spacing(self) -> None:
        if self.min_interval <= 0:
            return
        async with self._spacing_lock:
            wait = self._last_start + self.min_interval - time.monotonic()
            if wait > 0:
                await asyncio.sleep(wait)
            self._last_start = time.monotonic()


# ── Retry helpers ────────────────────────────────────────

def backoff_delay(attempt: int, base: float, jitter: float) -> float:
    """Exponential backoff with additive random jitter.

    Args:
        attempt: Retry number (0-indexed).
        base: Delay for the first retry, in seconds.
        jitter: Upper bound of the random extra delay, in seconds.

    Returns:
        Delay in seconds: base * 2^attempt + U[0, jitter).
    """
    extra = random.uniform(0, jitter) if jitter > 0 else 0.0
    return base * (2 ** attempt) + extra


def status_of(error: BaseException) -> int | None:
    """Best-effort HTTP status extraction from provider SDK exceptions."""
    for attr in ("status_code", "status", "code"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(error, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def is_rate_limit(error: BaseException) -> bool:
    return status_of(error) == 429
