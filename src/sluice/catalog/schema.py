"""Schema catalog.

Read-through cache of table, column, primary key and index metadata plus
row-count and cardinality statistics. The compiler validates every
identifier against it and the index advisor reads its statistics.
"""

import time
from typing import Any, Dict, List, Optional, Tuple

from sluice.config.models import CatalogConfig
from sluice.core import AsyncComponent
from sluice.core.exceptions import ErrorCodes, UnknownColumnError, UnknownTableError
from sluice.database.base import BaseBackingStore
from sluice.database.models import ColumnInfo, IndexInfo, TableInfo
from sluice.database.pool import ConnectionPool
from sluice.cache.single_flight import SingleFlight
from sluice.logging import get_logger, get_performance_logger


class _Timed:
    __slots__ = ("value", "loaded_at")

    def __init__(self, value: Any) -> None:
        self.value = value
        self.loaded_at = time.monotonic()

    def fresh(self, ttl: float) -> bool:
        return time.monotonic() - self.loaded_at < ttl


class SchemaCatalog(AsyncComponent[CatalogConfig]):
    """Read-through metadata cache over a backing store.

    Table metadata is trusted for ``metadata_ttl`` seconds and statistics
    for ``stats_ttl`` seconds. Concurrent misses for the same table share a
    single load. Lookups of tables that do not exist are not cached, so a
    table created later is picked up on the next request.

    Example:
        >>> catalog = SchemaCatalog(CatalogConfig(), pool, backend)
        >>> await catalog.initialize()
        >>> table = await catalog.get_table("people")
        >>> table.primary_key
        ['id']
    """

    component_name = "SchemaCatalog"

    def __init__(self, config: CatalogConfig, pool: ConnectionPool, backend: BaseBackingStore) -> None:
        super().__init__(config)
        self.pool = pool
        self.backend = backend
        self._tables: Dict[str, _Timed] = {}
        self._table_names: Optional[_Timed] = None
        self._statistics: Dict[Tuple[str, Optional[str]], _Timed] = {}
        self._flight = SingleFlight()
        self._stats = {"loads": 0, "hits": 0, "invalidations": 0}
        self.logger = get_logger("sluice.catalog")
        self.perf_logger = get_performance_logger("catalog")

    async def _async_initialize(self) -> None:
        names = await self.list_tables()
        self.logger.info("Schema catalog ready", tables=len(names))

    async def _async_cleanup(self) -> None:
        self.invalidate()

    # Tables

    async def list_tables(self) -> List[str]:
        """Return user table and view names."""
        cached = self._table_names
        if cached is not None and cached.fresh(self.config.metadata_ttl):
            return list(cached.value)

        async def load() -> List[str]:
            async with self.pool.lease() as conn:
                return await self.backend.list_tables(conn.raw)

        names, _ = await self._flight.do(("tables",), load)
        self._table_names = _Timed(names)
        return list(names)

    async def get_table(self, table: str) -> TableInfo:
        """Return metadata for ``table``.

        Raises:
            UnknownTableError: If the table does not exist
        """
        cached = self._tables.get(table.lower())
        if cached is not None and cached.fresh(self.config.metadata_ttl):
            self._stats["hits"] += 1
            return cached.value

        info, _ = await self._flight.do(("table", table.lower()), lambda: self._load_table(table))
        if info is None:
            raise UnknownTableError(
                f"Unknown table: {table}",
                code=ErrorCodes.UNKNOWN_TABLE,
                context={"table": table},
            )
        return info

    async def _load_table(self, table: str) -> Optional[TableInfo]:
        with self.perf_logger.measure("load_table", table=table):
            async with self.pool.lease() as conn:
                info = await self.backend.describe_table(conn.raw, table)

        self._stats["loads"] += 1
        if info is None:
            self._tables.pop(table.lower(), None)
            return None

        self._tables[table.lower()] = _Timed(info)
        self.logger.debug(
            "Table metadata loaded",
            table=table,
            columns=len(info.columns),
            indexes=len(info.indexes),
        )
        return info

    async def has_table(self, table: str) -> bool:
        try:
            await self.get_table(table)
        except UnknownTableError:
            return False
        return True

    async def require_column(self, table: str, column: str) -> ColumnInfo:
        """Return column metadata, validating both table and column.

        Raises:
            UnknownTableError: If the table does not exist
            UnknownColumnError: If the column does not exist on the table
        """
        info = await self.get_table(table)
        found = info.get_column(column)
        if found is None:
            raise UnknownColumnError(
                f"Unknown column: {table}.{column}",
                code=ErrorCodes.UNKNOWN_COLUMN,
                context={"table": table, "column": column, "available": info.column_names},
            )
        return found

    async def primary_key(self, table: str) -> List[str]:
        return (await self.get_table(table)).primary_key

    async def indexes(self, table: str) -> List[IndexInfo]:
        return list((await self.get_table(table)).indexes)

    async def leading_index(self, table: str, column: str) -> Optional[IndexInfo]:
        """Return an index usable for a range scan on ``column``.

        An index qualifies when ``column`` is its leading column. A primary
        key led by the column qualifies even when the store keeps no separate
        index for it (an integer primary key is the row key itself).
        """
        info = await self.get_table(table)
        for index in info.indexes:
            if index.columns and index.columns[0] == column and not index.is_partial:
                return index

        primary_key = info.primary_key
        if primary_key and primary_key[0] == column:
            return IndexInfo(
                name=f"{table}_primary_key",
                table_name=table,
                columns=primary_key,
                is_unique=True,
                origin="primary",
            )
        return None

    # Statistics

    async def row_count(self, table: str) -> int:
        await self.get_table(table)
        return await self._statistic((table.lower(), None), lambda raw: self.backend.row_count(raw, table))

    async def cardinality(self, table: str, column: str) -> int:
        """Return the number of distinct values in ``table.column``."""
        await self.require_column(table, column)
        return await self._statistic(
            (table.lower(), column), lambda raw: self.backend.column_cardinality(raw, table, column)
        )

    async def _statistic(self, key: Tuple[str, Optional[str]], query) -> int:
        cached = self._statistics.get(key)
        if cached is not None and cached.fresh(self.config.stats_ttl):
            return cached.value

        async def load() -> int:
            with self.perf_logger.measure("load_statistic", table=key[0], column=key[1]):
                async with self.pool.lease() as conn:
                    return await query(conn.raw)

        value, _ = await self._flight.do(("stat",) + key, load)
        self._statistics[key] = _Timed(value)
        return value

    # Invalidation

    def invalidate(self, table: Optional[str] = None) -> None:
        """Forget cached metadata and statistics.

        Args:
            table: Table to forget; None forgets everything
        """
        self._stats["invalidations"] += 1
        self._table_names = None
        if table is None:
            self._tables.clear()
            self._statistics.clear()
        else:
            table = table.lower()
            self._tables.pop(table, None)
            for key in [key for key in self._statistics if key[0] == table]:
                del self._statistics[key]
        self.logger.debug("Catalog invalidated", table=table)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "cached_tables": len(self._tables),
            "cached_statistics": len(self._statistics),
            **self._stats,
        }

    def get_health_status(self) -> Dict[str, Any]:
        status = super().get_health_status()
        status.update(self.get_stats())
        return status
