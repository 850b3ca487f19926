"""Backing store abstraction.

A backing store owns no connections of its own: it knows how to open, probe
and close raw sessions, and how to run statements and inspect the schema on a
session it is handed. The connection pool decides which session is used.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from sluice.config.models import BackendConfig
from sluice.core import AsyncComponent
from sluice.core.exceptions import DatabaseConnectionError, ErrorCodes, SluiceException
from sluice.core.utils import StringUtils
from sluice.logging import get_logger, get_performance_logger
from .models import QueryResult, TableInfo


class BaseBackingStore(AsyncComponent[BackendConfig], ABC):
    """Abstract base class for all backing stores.

    Subclasses set ``platform`` and implement the session, statement and
    inspection primitives. Initialization opens one probe session to verify
    the store is reachable and records the server version.
    """

    component_name = "BackingStore"
    platform: str = "unknown"

    def __init__(self, config: BackendConfig) -> None:
        super().__init__(config)
        self.logger = get_logger(f"sluice.backend.{self.platform}.{config.id}")
        self.perf_logger = get_performance_logger(f"backend.{self.platform}")
        self._server_version: Optional[str] = None

    async def _async_initialize(self) -> None:
        with self.perf_logger.measure("probe", backend=self.config.id) as timer:
            raw = await self.open_connection()
            try:
                self._server_version = await self.server_version(raw)
            finally:
                await self.close_connection(raw)
        self.logger.info(
            "Backing store reachable",
            platform=self.platform,
            database=self.config.database,
            server_version=self._server_version,
            probe_ms=timer.duration_ms,
        )

    def get_connection_info(self) -> Dict[str, Any]:
        return {
            "platform": self.platform,
            "backend": self.config.id,
            "database": self.config.database,
            "initialized": self.is_initialized,
            "server_version": self._server_version,
        }

    def get_health_status(self) -> Dict[str, Any]:
        status = super().get_health_status()
        status.update(self.get_connection_info())
        return status

    # Identifiers and DDL

    def quote_identifier(self, name: str) -> str:
        return StringUtils.quote_identifier(name)

    def create_index_sql(self, name: str, table: str, columns: Sequence[str], *, unique: bool = False) -> str:
        column_list = ", ".join(self.quote_identifier(column) for column in columns)
        prefix = "CREATE UNIQUE INDEX" if unique else "CREATE INDEX"
        return f"{prefix} {self.quote_identifier(name)} ON {self.quote_identifier(table)} ({column_list})"

    def drop_index_sql(self, name: str) -> str:
        return f"DROP INDEX {self.quote_identifier(name)}"

    # Sessions

    @abstractmethod
    async def open_connection(self) -> Any:
        """Open a new raw session.

        Raises:
            DatabaseConnectionError: If the session cannot be opened
        """

    @abstractmethod
    async def close_connection(self, raw: Any) -> None:
        """Close a raw session, never raising."""

    @abstractmethod
    async def ping(self, raw: Any) -> bool:
        """Return True if the session is usable."""

    async def interrupt(self, raw: Any) -> None:
        """Abort whatever statement is running on the session, if supported."""

    @abstractmethod
    async def server_version(self, raw: Any) -> str:
        """Return the backing store's version string."""

    # Statements

    @abstractmethod
    async def execute(
        self,
        raw: Any,
        sql: str,
        params: Sequence[Any] = (),
        *,
        mutation: bool = False,
    ) -> QueryResult:
        """Run one statement.

        Mutations are committed before returning and rolled back on failure.

        Raises:
            TransientConnectionError: On session-level failures
            StatementError: When the store rejects the statement
        """

    async def count(self, raw: Any, sql: str, params: Sequence[Any] = ()) -> int:
        """Run a single-value counting statement and return the value."""
        result = await self.execute(raw, sql, params)
        if not result.rows:
            return 0
        return int(next(iter(result.rows[0].values())) or 0)

    @abstractmethod
    async def open_cursor(self, raw: Any, sql: str, params: Sequence[Any] = ()) -> Any:
        """Start a read statement whose rows are fetched in batches."""

    @abstractmethod
    async def fetch_batch(self, cursor: Any, size: int) -> List[Dict[str, Any]]:
        """Fetch up to ``size`` rows; an empty list means exhaustion."""

    @abstractmethod
    async def close_cursor(self, cursor: Any) -> None:
        """Release a cursor, never raising."""

    # Inspection

    @abstractmethod
    async def list_tables(self, raw: Any) -> List[str]:
        """Return user table and view names."""

    @abstractmethod
    async def describe_table(self, raw: Any, table: str) -> Optional[TableInfo]:
        """Return table metadata, or None if the table does not exist."""

    async def row_count(self, raw: Any, table: str) -> int:
        return await self.count(raw, f"SELECT COUNT(*) FROM {self.quote_identifier(table)}")

    async def column_cardinality(self, raw: Any, table: str, column: str) -> int:
        """Return the number of distinct values in a column."""
        return await self.count(
            raw,
            f"SELECT COUNT(DISTINCT {self.quote_identifier(column)}) FROM {self.quote_identifier(table)}",
        )

    # Errors

    @abstractmethod
    def classify_error(self, exc: BaseException, *, sql: Optional[str] = None) -> SluiceException:
        """Map a driver exception to a transient connection or statement error."""

    def connection_error(self, exc: BaseException) -> DatabaseConnectionError:
        return DatabaseConnectionError(
            f"Cannot open connection to {self.platform} backing store: {exc}",
            code=ErrorCodes.CONNECTION_FAILED,
            context={"backend": self.config.id, "database": self.config.database},
            cause=exc,
        )
