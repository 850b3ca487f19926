"""Cursor-based batch streaming for large reads.

A ``BatchStream`` is a finite, restartable sequence of row batches with an
explicit open, fetch and close lifecycle. While open it holds one pooled
connection; it is closed on exhaustion, on error and when the consuming
block exits, whichever comes first.

Example:
    >>> async with executor.stream(plan, batch_size=500) as stream:
    ...     async for batch in stream:
    ...         write_rows(batch)
"""

import asyncio
from typing import Any, AsyncIterator, Dict, List, Optional

from sluice.compiler.plan import StatementPlan
from sluice.core.exceptions import ErrorCodes, InvalidCommandError, StatementTimeoutError, TransientConnectionError
from sluice.database.base import BaseBackingStore
from sluice.database.pool import ConnectionPool, PooledConnection
from sluice.logging import get_logger

_DISCARD_ERRORS = (TransientConnectionError, StatementTimeoutError, asyncio.CancelledError)


class BatchStream:
    """Lazy sequence of row batches over one read statement.

    Iterating the stream opens it when needed and closes it at the end, so
    iterating again restarts from the first row on a fresh cursor.
    """

    def __init__(
        self,
        pool: ConnectionPool,
        backend: BaseBackingStore,
        plan: StatementPlan,
        batch_size: int,
    ) -> None:
        if batch_size < 1:
            raise InvalidCommandError(
                f"batch_size must be >= 1, got {batch_size}",
                code=ErrorCodes.INVALID_COMMAND,
                context={"batch_size": batch_size},
            )
        self.pool = pool
        self.backend = backend
        self.plan = plan
        self.batch_size = batch_size
        self.logger = get_logger("sluice.executor.stream")

        self._conn: Optional[PooledConnection] = None
        self._cursor: Any = None
        self._exhausted = False
        self.batches_fetched = 0
        self.rows_fetched = 0
        self.runs = 0

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @property
    def is_exhausted(self) -> bool:
        return self._exhausted

    async def open(self) -> None:
        """Lease a connection and start the statement. Opening twice is a no-op."""
        if self.is_open:
            return
        conn = await self.pool.acquire()
        try:
            self._cursor = await self.backend.open_cursor(conn.raw, self.plan.sql, self.plan.params)
        except BaseException as e:
            await self._release(conn, e)
            raise
        self._conn = conn
        self._exhausted = False
        self.batches_fetched = 0
        self.rows_fetched = 0
        self.runs += 1
        self.logger.debug("Stream opened", connection_id=conn.connection_id, batch_size=self.batch_size)

    async def fetch(self) -> List[Dict[str, Any]]:
        """Return the next batch; an empty list means the stream is exhausted.

        The stream closes itself when exhausted and when a fetch fails.
        """
        if self._exhausted:
            return []
        if not self.is_open:
            await self.open()

        try:
            batch = await self.backend.fetch_batch(self._cursor, self.batch_size)
        except BaseException as e:
            await self.close(error=e)
            raise

        if not batch:
            self._exhausted = True
            await self.close()
            return []

        self.batches_fetched += 1
        self.rows_fetched += len(batch)
        return batch

    async def close(self, *, error: Optional[BaseException] = None) -> None:
        """Close the cursor and release the connection. Closing twice is a no-op."""
        conn, cursor = self._conn, self._cursor
        self._conn, self._cursor = None, None
        if cursor is not None:
            await self.backend.close_cursor(cursor)
        if conn is not None:
            await self._release(conn, error)
            self.logger.debug(
                "Stream closed",
                batches=self.batches_fetched,
                rows=self.rows_fetched,
                failed=error is not None,
            )

    async def restart(self) -> None:
        """Close and reopen, positioning the stream at the first row."""
        await self.close()
        self._exhausted = False
        await self.open()

    async def _release(self, conn: PooledConnection, error: Optional[BaseException]) -> None:
        discard = isinstance(error, _DISCARD_ERRORS)
        if discard:
            self.pool.record_error(conn)
        await self.pool.release(conn, discard=discard)

    async def collect(self) -> List[Dict[str, Any]]:
        """Read every remaining row into one list."""
        rows: List[Dict[str, Any]] = []
        async for batch in self:
            rows.extend(batch)
        return rows

    async def _iterate(self) -> AsyncIterator[List[Dict[str, Any]]]:
        if self._exhausted:
            self._exhausted = False
        error: Optional[BaseException] = None
        try:
            while True:
                batch = await self.fetch()
                if not batch:
                    return
                yield batch
        except BaseException as e:
            error = e
            raise
        finally:
            await self.close(error=error)

    def __aiter__(self) -> AsyncIterator[List[Dict[str, Any]]]:
        return self._iterate()

    async def __aenter__(self) -> "BatchStream":
        await self.open()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close(error=exc_val)

    def __repr__(self) -> str:
        return (
            f"BatchStream(open={self.is_open}, batches={self.batches_fetched}, "
            f"rows={self.rows_fetched}, runs={self.runs})"
        )
