"""Connection pool for Sluice backing stores.

Provides async connection pooling with fair (FIFO) acquisition, health
checking, discard-on-error and drain-on-shutdown.

The pool never holds more than ``max_size`` connections: leased, idle,
being opened and being closed connections all count against the bound.
"""

import asyncio
import itertools
import time
from collections import deque
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Deque, Dict, List, Optional, Set, Union

from sluice.config.models import PoolConfig
from sluice.core import AsyncComponent
from sluice.core.exceptions import (
    ConnectionPoolError,
    DatabaseConnectionError,
    ErrorCodes,
    PoolExhaustedError,
    SluiceException,
    StatementTimeoutError,
    TransientConnectionError,
)
from sluice.logging import get_logger, get_performance_logger
from .base import BaseBackingStore

_connection_ids = itertools.count(1)

# Granted to a waiter instead of a connection: "open one yourself".
_SLOT = object()


class PooledConnection:
    """Exclusive lease on one backing store session, with usage metadata."""

    def __init__(self, raw: Any) -> None:
        self.raw = raw
        self.connection_id = next(_connection_ids)
        self.created_at = time.monotonic()
        self.last_used = self.created_at
        self.use_count = 0
        self.error_count = 0
        self.is_in_use = False

    def mark_used(self) -> None:
        self.last_used = time.monotonic()
        self.use_count += 1
        self.is_in_use = True

    def mark_returned(self) -> None:
        self.last_used = time.monotonic()
        self.is_in_use = False

    @property
    def age(self) -> float:
        return time.monotonic() - self.created_at

    @property
    def idle_time(self) -> float:
        return 0.0 if self.is_in_use else time.monotonic() - self.last_used

    def __repr__(self) -> str:
        return (
            f"PooledConnection(id={self.connection_id}, in_use={self.is_in_use}, "
            f"uses={self.use_count}, errors={self.error_count})"
        )


class ConnectionPool(AsyncComponent[PoolConfig]):
    """Async connection pool over a backing store.

    Acquisition is first-come first-served: once callers are waiting, a new
    caller queues behind them even if a connection is momentarily idle.
    A released connection is handed straight to the oldest waiter.

    Example:
        >>> pool = ConnectionPool(PoolConfig(max_size=4), backend)
        >>> await pool.initialize()
        >>> async with pool.lease() as conn:
        ...     await backend.execute(conn.raw, "SELECT 1")
    """

    component_name = "ConnectionPool"

    def __init__(self, config: PoolConfig, backend: BaseBackingStore) -> None:
        super().__init__(config)
        self.backend = backend

        self._idle: Deque[PooledConnection] = deque()
        self._leased: Set[PooledConnection] = set()
        self._waiters: Deque[asyncio.Future] = deque()
        self._opening = 0
        self._closing = 0
        self._checking = 0
        self._closed = False
        self._all_returned = asyncio.Event()
        self._all_returned.set()

        self._health_check_task: Optional[asyncio.Task] = None
        self._last_health_check: Optional[float] = None

        self._stats: Dict[str, Union[int, float]] = {
            "total_created": 0,
            "total_closed": 0,
            "total_acquired": 0,
            "total_released": 0,
            "total_discarded": 0,
            "total_health_checks": 0,
            "unhealthy_connections_closed": 0,
            "pool_exhausted_count": 0,
            "errors": 0,
            "average_wait_time": 0.0,
            "max_wait_time": 0.0,
        }

        self.logger = get_logger(f"sluice.pool.{backend.config.id}")
        self.perf_logger = get_performance_logger(f"pool.{backend.platform}")

    # Lifecycle

    async def _async_initialize(self) -> None:
        self._closed = False
        self.logger.info(
            "Initializing connection pool",
            min_size=self.config.min_size,
            max_size=self.config.max_size,
        )
        try:
            for _ in range(self.config.min_size):
                self._opening += 1
                conn = await self._open_connection()
                self._idle.append(conn)
        except SluiceException:
            await self.close()
            raise

        self._health_check_task = asyncio.create_task(self._health_check_loop())
        self.logger.info("Connection pool initialized", initial_connections=len(self._idle))

    async def _async_cleanup(self) -> None:
        await self.close()

    @property
    def is_closed(self) -> bool:
        return self._closed

    def _total(self) -> int:
        return len(self._leased) + len(self._idle) + self._opening + self._closing + self._checking

    # Acquire / release

    async def acquire(self, timeout: Optional[float] = None) -> PooledConnection:
        """Acquire an exclusive connection.

        Args:
            timeout: Seconds to wait; defaults to the configured acquire timeout

        Raises:
            PoolExhaustedError: If no connection became available in time
            ConnectionPoolError: If the pool is closed
            DatabaseConnectionError: If a new connection could not be opened
        """
        self._ensure_open()
        timeout = self.config.acquire_timeout if timeout is None else timeout
        start = time.monotonic()
        deadline = start + timeout

        while True:
            if not self._waiters:
                if self._idle:
                    conn = self._idle.pop()
                    if conn.age > self.config.max_lifetime:
                        await self._close_connection(conn, reason="max_lifetime")
                        continue
                    return self._lease(conn, start)
                if self._total() < self.config.max_size:
                    self._opening += 1
                    conn = await self._open_connection()
                    self._leased.add(conn)
                    return self._lease(conn, start)

            grant = await self._wait_for_grant(deadline, timeout)
            if grant is _SLOT:
                conn = await self._open_connection()
                self._leased.add(conn)
                return self._lease(conn, start)
            return self._lease(grant, start)

    async def _wait_for_grant(self, deadline: float, timeout: float) -> Any:
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        remaining = max(0.0, deadline - time.monotonic())

        try:
            done, _ = await asyncio.wait({waiter}, timeout=remaining)
        except asyncio.CancelledError:
            self._abandon(waiter)
            raise

        if not done:
            self._abandon(waiter)
            self._stats["pool_exhausted_count"] += 1
            self.logger.warning(
                "Connection pool exhausted",
                active=len(self._leased),
                max_size=self.config.max_size,
                waiting=len(self._waiters),
            )
            raise PoolExhaustedError(
                f"No connection available within {timeout:.3f}s",
                code=ErrorCodes.POOL_EXHAUSTED,
                context={
                    "max_size": self.config.max_size,
                    "active": len(self._leased),
                    "timeout": timeout,
                },
            )
        return waiter.result()

    def _abandon(self, waiter: asyncio.Future) -> None:
        """Withdraw a waiter, returning anything it was granted meanwhile."""
        if waiter.done() and not waiter.cancelled() and waiter.exception() is None:
            grant = waiter.result()
            if grant is _SLOT:
                self._opening -= 1
                self._pass_slot()
            else:
                self._leased.discard(grant)
                self._park(grant)
            return

        waiter.cancel()
        try:
            self._waiters.remove(waiter)
        except ValueError:
            pass

    def _lease(self, conn: PooledConnection, start: float) -> PooledConnection:
        self._leased.add(conn)
        self._all_returned.clear()
        conn.mark_used()
        self._stats["total_acquired"] += 1
        self._update_wait_stats(time.monotonic() - start)
        return conn

    async def release(self, conn: PooledConnection, *, discard: bool = False) -> None:
        """Return a leased connection.

        Args:
            conn: Connection obtained from ``acquire``
            discard: Close the connection instead of reusing it, for sessions
                that failed mid-use
        """
        if conn not in self._leased:
            self.logger.warning("Release of connection not leased from this pool", connection_id=conn.connection_id)
            return

        self._leased.discard(conn)
        conn.mark_returned()
        self._stats["total_released"] += 1

        retire = (
            discard
            or self._closed
            or conn.error_count >= self.config.max_errors_per_connection
            or conn.age > self.config.max_lifetime
        )
        if retire:
            if discard:
                self._stats["total_discarded"] += 1
            await self._close_connection(conn, reason="discarded" if discard else "retired")
        else:
            self._park(conn)

        if not self._leased:
            self._all_returned.set()

    def record_error(self, conn: PooledConnection) -> None:
        """Count an error against a connection; it is retired at the configured limit."""
        conn.error_count += 1
        self._stats["errors"] += 1

    @asynccontextmanager
    async def lease(self, timeout: Optional[float] = None) -> AsyncGenerator[PooledConnection, None]:
        """Acquire a connection for the duration of a block.

        Connection-level failures raised inside the block discard the
        connection; any other exception returns it to the pool.
        """
        conn = await self.acquire(timeout)
        discard = False
        try:
            yield conn
        except BaseException as e:
            discard = isinstance(
                e, (TransientConnectionError, StatementTimeoutError, asyncio.CancelledError)
            )
            if discard:
                self.record_error(conn)
            raise
        finally:
            await self.release(conn, discard=discard)

    # Internal slot management

    def _park(self, conn: PooledConnection) -> None:
        """Hand a healthy connection to the oldest waiter, else make it idle."""
        if self._closed:
            self._closing += 1
            asyncio.get_running_loop().create_task(self._finish_close(conn))
            return
        if not self._grant(conn):
            self._idle.append(conn)

    def _grant(self, grant: Any) -> bool:
        while self._waiters:
            waiter = self._waiters.popleft()
            if waiter.done():
                continue
            if grant is not _SLOT:
                self._leased.add(grant)
                self._all_returned.clear()
            waiter.set_result(grant)
            return True
        return False

    def _pass_slot(self) -> None:
        """Let waiters open connections while the pool is under its bound."""
        if self._closed:
            return
        while self._waiters and self._total() < self.config.max_size:
            self._opening += 1
            if not self._grant(_SLOT):
                self._opening -= 1
                break

    async def _open_connection(self) -> PooledConnection:
        """Open a connection for a slot already reserved in ``_opening``."""
        try:
            with self.perf_logger.measure("open_connection"):
                raw = await self.backend.open_connection()
        except BaseException as e:
            self._opening -= 1
            if isinstance(e, SluiceException):
                self._stats["errors"] += 1
            self._pass_slot()
            if isinstance(e, DatabaseConnectionError):
                self.logger.error("Failed to open connection", error=str(e))
            raise
        self._opening -= 1
        conn = PooledConnection(raw)
        self._stats["total_created"] += 1
        self.logger.debug("New connection opened", connection_id=conn.connection_id, total=self._total() + 1)
        return conn

    async def _close_connection(self, conn: PooledConnection, *, reason: str) -> None:
        self._closing += 1
        await self._finish_close(conn, reason=reason)

    async def _finish_close(self, conn: PooledConnection, *, reason: str = "pool_closed") -> None:
        try:
            await self.backend.close_connection(conn.raw)
        finally:
            self._closing -= 1
            self._stats["total_closed"] += 1
            self.logger.debug(
                "Connection closed",
                connection_id=conn.connection_id,
                reason=reason,
                age_seconds=conn.age,
                use_count=conn.use_count,
            )
            self._pass_slot()

    def _ensure_open(self) -> None:
        if self._closed or not self.is_initialized:
            raise ConnectionPoolError(
                "Connection pool is closed",
                code=ErrorCodes.POOL_CLOSED,
                context={"backend": self.backend.config.id},
            )

    # Health checking

    async def _health_check_loop(self) -> None:
        while not self._closed:
            try:
                await asyncio.sleep(self.config.health_check_interval)
                await self.perform_health_check()
            except asyncio.CancelledError:
                break
            except SluiceException as e:
                self.logger.error("Error in health check loop", error=str(e))

    async def perform_health_check(self) -> Dict[str, int]:
        """Reap stale or dead idle connections and replenish to ``min_size``.

        Returns:
            Counts of connections checked, closed and opened
        """
        self._stats["total_health_checks"] += 1
        self._last_health_check = time.time()

        candidates: List[PooledConnection] = list(self._idle)
        self._idle.clear()
        self._checking += len(candidates)

        closed = 0
        survivors: List[PooledConnection] = []
        for conn in candidates:
            expired = conn.idle_time > self.config.idle_timeout or conn.age > self.config.max_lifetime
            keep = not expired and await self.backend.ping(conn.raw)
            self._checking -= 1
            if keep:
                survivors.append(conn)
            else:
                closed += 1
                await self._close_connection(conn, reason="expired" if expired else "unhealthy")

        for conn in survivors:
            self._park(conn)

        if closed:
            self._stats["unhealthy_connections_closed"] += closed

        opened = 0
        while not self._closed and self._total() < self.config.min_size and not self._waiters:
            self._opening += 1
            try:
                conn = await self._open_connection()
            except DatabaseConnectionError:
                break
            self._park(conn)
            opened += 1

        self.logger.debug(
            "Health check completed",
            checked=len(candidates),
            closed=closed,
            opened=opened,
            idle=len(self._idle),
            active=len(self._leased),
        )
        return {"checked": len(candidates), "closed": closed, "opened": opened}

    # Shutdown

    async def close(self) -> None:
        """Drain and close the pool.

        Waiters fail immediately; leased connections get ``drain_timeout``
        seconds to come back before they are closed underneath their holders.
        """
        if self._closed:
            return
        self._closed = True
        self.logger.info("Closing connection pool", active=len(self._leased), idle=len(self._idle))

        if self._health_check_task:
            self._health_check_task.cancel()
            try:
                await self._health_check_task
            except asyncio.CancelledError:
                pass
            self._health_check_task = None

        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_exception(
                    ConnectionPoolError("Connection pool is closed", code=ErrorCodes.POOL_CLOSED)
                )

        while self._idle:
            await self._close_connection(self._idle.popleft(), reason="pool_closed")

        if self._leased:
            try:
                await asyncio.wait_for(self._all_returned.wait(), timeout=self.config.drain_timeout)
            except asyncio.TimeoutError:
                self.logger.warning("Drain timeout elapsed, closing leased connections", leased=len(self._leased))
                for conn in list(self._leased):
                    self._leased.discard(conn)
                    await self.backend.interrupt(conn.raw)
                    await self._close_connection(conn, reason="drain_timeout")
                self._all_returned.set()

        self.logger.info(
            "Connection pool closed",
            total_created=self._stats["total_created"],
            total_closed=self._stats["total_closed"],
        )

    # Monitoring

    def get_stats(self) -> Dict[str, Any]:
        return {
            "active": len(self._leased),
            "idle": len(self._idle),
            "total": self._total(),
            "errors": self._stats["errors"],
            "waiting": sum(1 for waiter in self._waiters if not waiter.done()),
            "min_size": self.config.min_size,
            "max_size": self.config.max_size,
            "is_closed": self._closed,
            "last_health_check": self._last_health_check,
            **{key: value for key, value in self._stats.items() if key != "errors"},
        }

    def get_metrics(self) -> Dict[str, Any]:
        stats = self.get_stats()
        return {
            "pool_utilization_percent": (stats["total"] / self.config.max_size) * 100,
            "active_connection_ratio": stats["active"] / max(stats["total"], 1),
            "average_wait_time_ms": stats["average_wait_time"] * 1000,
            "max_wait_time_ms": stats["max_wait_time"] * 1000,
            "pool_exhausted_rate": stats["pool_exhausted_count"] / max(stats["total_acquired"], 1),
            "connection_creation_rate": stats["total_created"] / max(stats["total_acquired"], 1),
        }

    def get_health_status(self) -> Dict[str, Any]:
        status = super().get_health_status()
        status.update({"active": len(self._leased), "idle": len(self._idle), "closed": self._closed})
        return status

    def _update_wait_stats(self, wait_time: float) -> None:
        self._stats["max_wait_time"] = max(self._stats["max_wait_time"], wait_time)
        acquired = self._stats["total_acquired"]
        if acquired > 0:
            current = self._stats["average_wait_time"]
            self._stats["average_wait_time"] = (current * (acquired - 1) + wait_time) / acquired
