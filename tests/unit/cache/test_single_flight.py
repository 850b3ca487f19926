"""Tests for single-flight de-duplication."""

import asyncio

import pytest

from sluice.cache import SingleFlight
from sluice.core.exceptions import CacheComputeFailure


class Gate:
    """Computation that blocks until released and counts its runs."""

    def __init__(self, value="result", error=None):
        self.value = value
        self.error = error
        self.calls = 0
        self.released = asyncio.Event()

    async def __call__(self):
        self.calls += 1
        await self.released.wait()
        if self.error is not None:
            raise self.error
        return self.value


async def _start(flight: SingleFlight, key: str, fn, count: int):
    tasks = []
    for _ in range(count):
        tasks.append(asyncio.create_task(flight.do(key, fn)))
        await asyncio.sleep(0)
    return tasks


class TestSingleFlight:
    """Test cases for SingleFlight."""

    async def test_concurrent_calls_share_one_computation(self):
        flight = SingleFlight()
        gate = Gate()

        tasks = await _start(flight, "people:1", gate, 5)
        assert flight.is_running("people:1")
        gate.released.set()
        results = await asyncio.gather(*tasks)

        assert gate.calls == 1
        assert [value for value, _ in results] == ["result"] * 5
        assert [shared for _, shared in results] == [False, True, True, True, True]
        assert flight.joins == 4
        assert flight.in_flight == 0

    async def test_distinct_keys_run_independently(self):
        flight = SingleFlight()
        gate = Gate()

        tasks = await _start(flight, "a", gate, 1) + await _start(flight, "b", gate, 1)
        gate.released.set()
        await asyncio.gather(*tasks)

        assert gate.calls == 2

    async def test_failure_reaches_every_caller(self):
        flight = SingleFlight()
        error = ValueError("no such column")
        gate = Gate(error=error)

        tasks = await _start(flight, "k", gate, 3)
        gate.released.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert all(result is error for result in results)
        assert gate.calls == 1

    async def test_next_call_after_completion_recomputes(self):
        flight = SingleFlight()
        gate = Gate()
        gate.released.set()

        await flight.do("k", gate)
        await flight.do("k", gate)

        assert gate.calls == 2

    async def test_cancelled_leader_fails_joiners(self):
        flight = SingleFlight()
        gate = Gate()

        leader, joiner = await _start(flight, "k", gate, 2)
        leader.cancel()

        with pytest.raises(asyncio.CancelledError):
            await leader
        with pytest.raises(CacheComputeFailure):
            await joiner
        assert not flight.is_running("k")

    async def test_cancelled_joiner_does_not_affect_leader(self):
        flight = SingleFlight()
        gate = Gate()

        leader, joiner = await _start(flight, "k", gate, 2)
        joiner.cancel()
        with pytest.raises(asyncio.CancelledError):
            await joiner

        gate.released.set()
        assert await leader == ("result", False)
