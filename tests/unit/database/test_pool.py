"""Tests for the connection pool."""

import asyncio
from typing import List, Optional

import pytest

from sluice.config.models import BackendConfig, PoolConfig
from sluice.core.exceptions import (
    ConnectionPoolError,
    DatabaseConnectionError,
    ErrorCodes,
    PoolExhaustedError,
    StatementError,
    TransientConnectionError,
)
from sluice.database import ConnectionPool


class FakeBackend:
    """Backing store double that hands out string sessions."""

    platform = "fake"

    def __init__(self) -> None:
        self.config = BackendConfig(id="fake", database="fake.db")
        self.opened = 0
        self.closed: List[str] = []
        self.interrupted: List[str] = []
        self.live = set()
        self.peak = 0
        self.healthy = True
        self.fail_open: Optional[Exception] = None

    async def open_connection(self) -> str:
        await asyncio.sleep(0)
        if self.fail_open is not None:
            raise self.fail_open
        self.opened += 1
        raw = f"raw-{self.opened}"
        self.live.add(raw)
        self.peak = max(self.peak, len(self.live))
        return raw

    async def close_connection(self, raw: str) -> None:
        self.closed.append(raw)
        self.live.discard(raw)

    async def ping(self, raw: str) -> bool:
        return self.healthy

    async def interrupt(self, raw: str) -> None:
        self.interrupted.append(raw)


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
async def make_pool(fake_backend):
    pools: List[ConnectionPool] = []

    async def factory(**overrides) -> ConnectionPool:
        settings = {"min_size": 1, "max_size": 2, "acquire_timeout": 1.0, "drain_timeout": 0.05}
        settings.update(overrides)
        pool = ConnectionPool(PoolConfig(**settings), fake_backend)
        await pool.initialize()
        pools.append(pool)
        return pool

    yield factory

    for pool in pools:
        await pool.cleanup()


class TestAcquireRelease:
    """Test cases for leasing connections."""

    async def test_initialize_opens_min_size(self, make_pool, fake_backend):
        pool = await make_pool(min_size=2, max_size=3)

        stats = pool.get_stats()
        assert stats["idle"] == 2
        assert stats["active"] == 0
        assert stats["total"] == 2
        assert fake_backend.opened == 2

    async def test_released_connection_is_reused(self, make_pool, fake_backend):
        pool = await make_pool()

        first = await pool.acquire()
        await pool.release(first)
        second = await pool.acquire()

        assert second is first
        assert second.use_count == 2
        assert fake_backend.opened == 1
        await pool.release(second)

    async def test_opens_up_to_max_size(self, make_pool, fake_backend):
        pool = await make_pool(min_size=0, max_size=2)

        first = await pool.acquire()
        second = await pool.acquire()

        assert first is not second
        assert pool.get_stats()["active"] == 2
        await pool.release(first)
        await pool.release(second)

    async def test_exhausted_pool_times_out(self, make_pool):
        pool = await make_pool(max_size=1)
        held = await pool.acquire()

        with pytest.raises(PoolExhaustedError) as exc_info:
            await pool.acquire(timeout=0.05)

        assert exc_info.value.code == ErrorCodes.POOL_EXHAUSTED
        assert exc_info.value.retryable
        assert pool.get_stats()["pool_exhausted_count"] == 1
        assert pool.get_stats()["waiting"] == 0
        await pool.release(held)

    async def test_waiters_are_served_in_arrival_order(self, make_pool):
        """Test a released connection goes to the oldest waiter first."""
        pool = await make_pool(max_size=1)
        held = await pool.acquire()
        order: List[int] = []

        async def grab(i: int) -> None:
            conn = await pool.acquire()
            order.append(i)
            await asyncio.sleep(0)
            await pool.release(conn)

        tasks = []
        for i in range(3):
            tasks.append(asyncio.create_task(grab(i)))
            await asyncio.sleep(0)

        assert pool.get_stats()["waiting"] == 3
        await pool.release(held)
        await asyncio.gather(*tasks)

        assert order == [0, 1, 2]

    async def test_never_exceeds_max_size(self, make_pool, fake_backend):
        pool = await make_pool(min_size=0, max_size=3)

        async def work() -> None:
            async with pool.lease():
                await asyncio.sleep(0.01)

        await asyncio.gather(*(work() for _ in range(12)))

        assert fake_backend.peak <= 3
        assert pool.get_stats()["total_acquired"] == 12
        assert pool.get_stats()["active"] == 0

    async def test_cancelled_waiter_is_withdrawn(self, make_pool):
        pool = await make_pool(max_size=1)
        held = await pool.acquire()

        waiter = asyncio.create_task(pool.acquire())
        await asyncio.sleep(0)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        await pool.release(held)
        assert pool.get_stats()["idle"] == 1
        assert pool.get_stats()["waiting"] == 0

    async def test_open_failure_frees_the_slot(self, make_pool, fake_backend):
        pool = await make_pool(min_size=0, max_size=1)
        fake_backend.fail_open = DatabaseConnectionError("refused")

        with pytest.raises(DatabaseConnectionError):
            await pool.acquire()

        assert pool.get_stats()["total"] == 0
        fake_backend.fail_open = None
        conn = await pool.acquire()
        await pool.release(conn)

    async def test_release_of_foreign_connection_is_ignored(self, make_pool):
        pool = await make_pool()
        conn = await pool.acquire()
        await pool.release(conn)

        await pool.release(conn)

        assert pool.get_stats()["total_released"] == 1


class TestErrorHandling:
    """Test cases for discarding failed sessions."""

    async def test_lease_discards_on_transient_error(self, make_pool, fake_backend):
        pool = await make_pool()

        with pytest.raises(TransientConnectionError):
            async with pool.lease() as conn:
                raise TransientConnectionError("database is locked")

        assert conn.raw in fake_backend.closed
        stats = pool.get_stats()
        assert stats["total_discarded"] == 1
        assert stats["errors"] == 1

    async def test_lease_keeps_connection_on_statement_error(self, make_pool, fake_backend):
        pool = await make_pool()

        with pytest.raises(StatementError):
            async with pool.lease():
                raise StatementError("syntax error")

        assert fake_backend.closed == []
        assert pool.get_stats()["idle"] == 1

    async def test_connection_retired_at_error_limit(self, make_pool, fake_backend):
        pool = await make_pool(max_errors_per_connection=2)
        conn = await pool.acquire()

        pool.record_error(conn)
        pool.record_error(conn)
        await pool.release(conn)

        assert fake_backend.closed == [conn.raw]
        assert pool.get_stats()["idle"] == 0


class TestHealthCheck:
    """Test cases for health checking."""

    async def test_unhealthy_connections_replaced(self, make_pool, fake_backend):
        pool = await make_pool(min_size=2, max_size=3)
        fake_backend.healthy = False

        result = await pool.perform_health_check()

        assert result == {"checked": 2, "closed": 2, "opened": 2}
        assert pool.get_stats()["idle"] == 2
        assert pool.get_stats()["unhealthy_connections_closed"] == 2

    async def test_idle_timeout_reaps(self, make_pool, fake_backend):
        pool = await make_pool(min_size=0, max_size=2, idle_timeout=0.01)
        conn = await pool.acquire()
        await pool.release(conn)
        await asyncio.sleep(0.02)

        result = await pool.perform_health_check()

        assert result["closed"] == 1
        assert result["opened"] == 0
        assert fake_backend.closed == [conn.raw]

    async def test_healthy_connections_survive(self, make_pool):
        pool = await make_pool(min_size=1)

        result = await pool.perform_health_check()

        assert result == {"checked": 1, "closed": 0, "opened": 0}
        assert pool.get_stats()["last_health_check"] is not None


class TestShutdown:
    """Test cases for closing the pool."""

    async def test_acquire_after_close(self, make_pool):
        pool = await make_pool()
        await pool.cleanup()

        with pytest.raises(ConnectionPoolError) as exc_info:
            await pool.acquire()

        assert exc_info.value.code == ErrorCodes.POOL_CLOSED

    async def test_close_fails_waiters_and_interrupts_leased(self, make_pool, fake_backend):
        pool = await make_pool(max_size=1)
        held = await pool.acquire()
        waiter = asyncio.create_task(pool.acquire(timeout=5.0))
        await asyncio.sleep(0)

        await pool.close()

        with pytest.raises(ConnectionPoolError):
            await waiter
        assert fake_backend.interrupted == [held.raw]
        assert held.raw in fake_backend.closed
        assert pool.is_closed

    async def test_close_waits_for_returned_connections(self, make_pool, fake_backend):
        pool = await make_pool(max_size=1, drain_timeout=1.0)
        held = await pool.acquire()

        async def give_back() -> None:
            await asyncio.sleep(0.01)
            await pool.release(held)

        returner = asyncio.create_task(give_back())
        await pool.close()
        await returner

        assert fake_backend.interrupted == []
        assert held.raw in fake_backend.closed

    async def test_metrics(self, make_pool):
        pool = await make_pool(max_size=2)
        conn = await pool.acquire()

        metrics = pool.get_metrics()
        health = pool.get_health_status()

        assert metrics["pool_utilization_percent"] == 50.0
        assert health["active"] == 1
        await pool.release(conn)
