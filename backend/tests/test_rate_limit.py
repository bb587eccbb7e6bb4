"""
Unit tests for the generation call scheduler and backoff helpers.
"""

import asyncio
import time

import pytest

from conftest import ProviderStatusError
from study_assistant.core.rate_limit import CallScheduler, QueueOverflowError, backoff_delay, is_rate_limit, status_of


# -- backoff_delay --

class TestBackoffDelay:
    def test_doubles_per_attempt_without_jitter(self):
        assert [backoff_delay(a, base=0.25, jitter=0) for a in range(4)] == [0.25, 0.5, 1.0, 2.0]

    def test_jitter_is_bounded(self):
        for attempt in range(3):
            delay = backoff_delay(attempt, base=0.25, jitter=0.25)
            floor = 0.25 * 2 ** attempt
            assert floor <= delay <= floor + 0.25


# -- status extraction --

class TestStatusOf:
    def test_status_code_attribute(self):
        assert status_of(ProviderStatusError(429)) == 429
        assert is_rate_limit(ProviderStatusError(429))

    def test_response_status_code(self):
        class Response:
            status_code = 503

        error = Exception("bad gateway")
        error.response = Response()
        assert status_of(error) == 503
        assert not is_rate_limit(error)

    def test_unknown(self):
        assert status_of(RuntimeError("no status")) is None
        assert not is_rate_limit(RuntimeError("no status"))


# -- CallScheduler --

class TestCallScheduler:
    @pytest.mark.asyncio
    async def test_bounds_concurrency(self):
        scheduler = CallScheduler(max_concurrent=2, min_interval=0, max_pending=20)
        peak = 0

        async def work():
            nonlocal peak
            async with scheduler.slot():
                peak = max(peak, scheduler.running)
                await asyncio.sleep(0.01)

        await asyncio.gather(*(work() for _ in range(6)))

        assert peak == 2
        assert scheduler.running == 0
        assert scheduler.pending == 0

    @pytest.mark.asyncio
    async def test_spaces_call_starts(self):
        scheduler = CallScheduler(max_concurrent=3, min_interval=0.05, max_pending=20)
        starts = []

        async def work():
            async with scheduler.slot():
                starts.append(time.monotonic())

        await asyncio.gather(*(work() for _ in range(3)))

        gaps = [b - a for a, b in zip(starts, starts[1:])]
        assert all(gap >= 0.045 for gap in gaps)

    @pytest.mark.asyncio
    async def test_rejects_when_queue_full(self):
        scheduler = CallScheduler(max_concurrent=1, min_interval=0, max_pending=1)
        release = asyncio.Event()

        async def hold():
            async with scheduler.slot():
                await release.wait()

        holder = asyncio.create_task(hold())
        waiter = asyncio.create_task(hold())
        await asyncio.sleep(0.01)
        assert scheduler.running == 1
        assert scheduler.pending == 1

        with pytest.raises(QueueOverflowError):
            async with scheduler.slot():
                pass

        release.set()
        await asyncio.gather(holder, waiter)
        assert scheduler.running == 0

    @pytest.mark.asyncio
    async def test_queues_while_below_max_pending(self):
        scheduler = CallScheduler(max_concurrent=1, min_interval=0, max_pending=5)
        order = []

        async def work(n):
            async with scheduler.slot():
                order.append(n)
                await asyncio.sleep(0)

        await asyncio.gather(*(work(n) for n in range(4)))

        assert sorted(order) == [0, 1, 2, 3]

    @pytest.mark.asyncio
    async def test_slot_released_on_error(self):
        scheduler = CallScheduler(max_concurrent=1, min_interval=0, max_pending=0)

        with pytest.raises(RuntimeError):
            async with scheduler.slot():
                raise RuntimeError("provider exploded")

        assert scheduler.running == 0
        async with scheduler.slot():
            assert scheduler.running == 1
