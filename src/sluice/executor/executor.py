"""Query executor.

Runs compiled plans: cache check, connection acquisition, statement
execution with timeout and a single retry for transient connection
failures, result shaping, caching and release. Mutations invalidate cached
results for their tables once the backing store has committed them.
"""

import asyncio
from typing import Optional, Tuple

from sluice.cache.query_cache import CacheKey, QueryCache
from sluice.compiler.plan import StatementKind, StatementPlan
from sluice.core.exceptions import (
    ErrorCodes,
    InvalidCommandError,
    SluiceException,
    StatementError,
    StatementTimeoutError,
    TransientConnectionError,
)
from sluice.core.protocols import MetadataInvalidator
from sluice.database.base import BaseBackingStore
from sluice.database.models import QueryResult
from sluice.database.pool import ConnectionPool, PooledConnection
from sluice.logging import LogContext, get_logger, get_performance_logger
from .context import ExecutionContext, ExecutionState
from .results import ExecutionResult, ShapedResult
from .streaming import BatchStream

# Failures after which a connection must not be reused.
DISCARD_ERRORS = (TransientConnectionError, StatementTimeoutError, asyncio.CancelledError)


class _Lease:
    """The connection an execution currently holds, if any."""

    __slots__ = ("conn",)

    def __init__(self) -> None:
        self.conn: Optional[PooledConnection] = None


class QueryExecutor:
    """Orchestrates plan execution against the pool, cache and backing store.

    Args:
        pool: Connection pool leasing backing store sessions
        backend: Backing store running the statements
        cache: Result cache for read plans
        catalog: Schema metadata cache, invalidated after DDL
        statement_timeout: Seconds a statement may run; defaults to the
            backend's configured statement timeout

    Example:
        >>> executor = QueryExecutor(pool, backend, cache, catalog)
        >>> result = await executor.execute(compiler.compile_raw("SELECT * FROM people"))
        >>> result.cache
        'miss'
    """

    def __init__(
        self,
        pool: ConnectionPool,
        backend: BaseBackingStore,
        cache: QueryCache,
        catalog: MetadataInvalidator,
        *,
        statement_timeout: Optional[float] = None,
        max_retries: int = 1,
    ) -> None:
        self.pool = pool
        self.backend = backend
        self.cache = cache
        self.catalog = catalog
        self.statement_timeout = statement_timeout or backend.config.statement_timeout
        self.max_retries = max_retries
        self.logger = get_logger("sluice.executor")
        self.perf_logger = get_performance_logger("executor")
        self._stats = {"executions": 0, "failures": 0, "retries": 0, "timeouts": 0}

    async def execute(
        self,
        plan: StatementPlan,
        *,
        use_cache: bool = True,
        cache_ttl: Optional[float] = None,
    ) -> ExecutionResult:
        """Execute a plan.

        Read plans go through the query cache when ``use_cache`` is set;
        mutation plans never do and invalidate the cache after commit.

        Raises:
            ValidationError: If the plan is not executable
            PoolExhaustedError: If no connection was available in time
            StatementError: If the backing store rejected the statement or a
                transient failure persisted after a retry
            StatementTimeoutError: If the statement ran too long
        """
        ctx = ExecutionContext(plan)
        lease = _Lease()
        self._stats["executions"] += 1

        with LogContext.scope(execution_id=ctx.execution_id):
            try:
                self._validate(plan)
                cacheable = use_cache and plan.is_read and self.cache.enabled

                if cacheable:
                    ctx.transition(ExecutionState.CACHE_CHECK)
                    key = CacheKey.build(
                        "page" if plan.is_paginated else "query",
                        plan.tables,
                        **plan.cache_shape(),
                    )
                    lookup = await self.cache.fetch(
                        key,
                        cache_ttl,
                        lambda: self._compute(plan, ctx, lease),
                        tables=plan.tables,
                    )
                    if lookup.source == "miss":
                        ctx.transition(ExecutionState.CACHING)
                    else:
                        ctx.transition(ExecutionState.SHAPING_RESULT)
                    shaped, source = lookup.value, lookup.source
                else:
                    shaped = await self._compute(plan, ctx, lease)
                    source = "skipped"

                invalidated = 0
                if plan.is_mutation or plan.kind == StatementKind.OTHER:
                    invalidated = self._invalidate_after_commit(plan)

                if lease.conn is not None:
                    ctx.transition(ExecutionState.RELEASING)
                    conn, lease.conn = lease.conn, None
                    await self.pool.release(conn)
                ctx.transition(ExecutionState.COMPLETED)

            except BaseException as e:
                ctx.fail(e)
                self._stats["failures"] += 1
                if isinstance(e, SluiceException):
                    self.logger.warning(
                        "Execution failed",
                        error=e.message,
                        error_code=e.code,
                        states=ctx.states,
                        cost_class=plan.cost_class.value,
                    )
                raise
            finally:
                if lease.conn is not None:
                    error = ctx.error
                    conn, lease.conn = lease.conn, None
                    discard = isinstance(error, DISCARD_ERRORS)
                    if discard:
                        self.pool.record_error(conn)
                    await self.pool.release(conn, discard=discard)

        self.logger.debug(
            "Execution completed",
            execution_id=ctx.execution_id,
            cache=source,
            states=ctx.states,
            elapsed_ms=round(ctx.elapsed * 1000, 3),
        )
        return ExecutionResult.from_shaped(
            shaped,
            plan,
            cache=source,
            states=ctx.states,
            retries=ctx.retries,
            invalidated=invalidated,
            execution_id=ctx.execution_id,
        )

    @staticmethod
    def _validate(plan: StatementPlan) -> None:
        if not plan.sql.strip():
            raise InvalidCommandError("Plan has no statement", code=ErrorCodes.INVALID_COMMAND)
        if plan.is_paginated and plan.count_sql is None:
            raise InvalidCommandError(
                "Paginated plan has no count statement",
                code=ErrorCodes.INVALID_COMMAND,
            )

    async def _compute(self, plan: StatementPlan, ctx: ExecutionContext, lease: _Lease) -> ShapedResult:
        """Acquire, execute with one transient retry, and shape.

        The connection stays in ``lease`` so the caller releases it after the
        result has been cached.
        """
        attempt = 0
        while True:
            ctx.transition(ExecutionState.ACQUIRING)
            lease.conn = await self.pool.acquire()
            ctx.transition(ExecutionState.EXECUTING)
            try:
                result, total = await self._run(lease.conn, plan)
                break
            except TransientConnectionError as e:
                conn, lease.conn = lease.conn, None
                self.pool.record_error(conn)
                await self.pool.release(conn, discard=True)
                if attempt >= self.max_retries:
                    raise StatementError(
                        e.message,
                        code=ErrorCodes.STATEMENT_FAILED,
                        context={**e.context, "attempts": attempt + 1},
                        cause=e,
                    ) from e
                attempt += 1
                ctx.retries += 1
                self._stats["retries"] += 1
                self.logger.warning(
                    "Transient connection failure, retrying on a fresh connection",
                    error=e.message,
                    attempt=attempt,
                )

        ctx.transition(ExecutionState.SHAPING_RESULT)
        return ShapedResult(
            rows=result.rows,
            columns=result.columns,
            rows_affected=result.rows_affected,
            last_row_id=result.last_row_id,
            pagination=plan.pagination.info(total) if plan.pagination is not None else None,
            execution_time=result.execution_time,
        )

    async def _run(self, conn: PooledConnection, plan: StatementPlan) -> Tuple[QueryResult, int]:
        """Run the plan's statement, and its count statement when paginated."""
        try:
            with self.perf_logger.measure("statement", cost_class=plan.cost_class.value, kind=plan.kind.value):
                return await asyncio.wait_for(self._statements(conn, plan), timeout=self.statement_timeout)
        except asyncio.TimeoutError as e:
            self._stats["timeouts"] += 1
            await self.backend.interrupt(conn.raw)
            raise StatementTimeoutError(
                f"Statement exceeded {self.statement_timeout:.3f}s",
                code=ErrorCodes.STATEMENT_TIMEOUT,
                context={"timeout": self.statement_timeout, "cost_class": plan.cost_class.value},
                cause=e,
            ) from e

    async def _statements(self, conn: PooledConnection, plan: StatementPlan) -> Tuple[QueryResult, int]:
        result = await self.backend.execute(conn.raw, plan.sql, plan.params, mutation=not plan.is_read)
        total = result.row_count
        if plan.count_sql is not None:
            total = await self.backend.count(conn.raw, plan.count_sql, plan.count_params)
        return result, total

    def _invalidate_after_commit(self, plan: StatementPlan) -> int:
        if plan.kind in (StatementKind.DDL, StatementKind.OTHER):
            if plan.tables:
                for table in plan.tables:
                    self.catalog.invalidate(table)
                return self.cache.invalidate_tables(plan.tables)
            self.catalog.invalidate()
            return self.cache.clear()
        return self.cache.invalidate_tables(plan.tables) if plan.tables else self.cache.clear()

    # Streaming

    def stream(self, plan: StatementPlan, batch_size: int) -> BatchStream:
        """Return a batch stream over a read plan.

        Raises:
            InvalidCommandError: If the plan is not a read
        """
        if not plan.is_read:
            raise InvalidCommandError(
                "Only read statements can be streamed",
                code=ErrorCodes.INVALID_COMMAND,
                context={"kind": plan.kind.value},
            )
        return BatchStream(self.pool, self.backend, plan, batch_size)

    def get_stats(self) -> dict:
        return dict(self._stats)

    def get_performance_summary(self) -> dict:
        return self.perf_logger.get_summary()

    def __repr__(self) -> str:
        return f"QueryExecutor(timeout={self.statement_timeout}, executions={self._stats['executions']})"

