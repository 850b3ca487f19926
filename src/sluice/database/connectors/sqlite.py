"""SQLite backing store built on aiosqlite."""

import asyncio
import sqlite3
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import aiosqlite

from sluice.core.exceptions import (
    ErrorCodes,
    SluiceException,
    StatementError,
    TransientConnectionError,
)
from sluice.database.base import BaseBackingStore
from sluice.database.models import ColumnInfo, IndexInfo, QueryResult, TableInfo

# Driver messages that indicate the session, not the statement, is at fault.
TRANSIENT_MESSAGES = (
    "database is locked",
    "database is busy",
    "database table is locked",
    "disk i/o error",
    "unable to open database",
    "cannot operate on a closed database",
    "no active connection",
    "connection closed",
)

INDEX_ORIGINS = {"c": "created", "u": "unique", "pk": "primary"}


class SQLiteBackingStore(BaseBackingStore):
    """SQLite backing store.

    Each pooled session is its own ``aiosqlite.Connection`` running on a
    dedicated thread. Configured pragmas are applied to every new session.
    """

    component_name = "SQLiteBackingStore"
    version = "1.0.0"
    platform = "sqlite"

    def __init__(self, config) -> None:
        super().__init__(config)
        self._database_path = Path(config.database)

    async def _async_initialize(self) -> None:
        if self.config.create_if_missing:
            self._database_path.parent.mkdir(parents=True, exist_ok=True)
        await super()._async_initialize()

    # Sessions

    async def open_connection(self) -> aiosqlite.Connection:
        if self.config.create_if_missing:
            target, uri = str(self._database_path), False
        else:
            target, uri = f"file:{self._database_path.as_posix()}?mode=rw", True

        try:
            raw = await asyncio.wait_for(
                aiosqlite.connect(target, timeout=self.config.connect_timeout, uri=uri),
                timeout=self.config.connect_timeout,
            )
        except (sqlite3.Error, OSError, asyncio.TimeoutError) as e:
            raise self.connection_error(e) from e

        try:
            for name, value in self.config.pragmas.items():
                await raw.execute(f"PRAGMA {name} = {value}")
        except sqlite3.Error as e:
            await self.close_connection(raw)
            raise self.connection_error(e) from e

        return raw

    async def close_connection(self, raw: aiosqlite.Connection) -> None:
        try:
            await asyncio.wait_for(raw.close(), timeout=self.config.connect_timeout)
        except (sqlite3.Error, ValueError, asyncio.TimeoutError) as e:
            self.logger.warning("Error closing SQLite connection", error=str(e))

    async def ping(self, raw: aiosqlite.Connection) -> bool:
        try:
            async with raw.execute("SELECT 1") as cursor:
                await cursor.fetchone()
            return True
        except (sqlite3.Error, ValueError):
            return False

    async def interrupt(self, raw: aiosqlite.Connection) -> None:
        try:
            await raw.interrupt()
        except (sqlite3.Error, ValueError) as e:
            self.logger.debug("Interrupt failed", error=str(e))

    async def server_version(self, raw: aiosqlite.Connection) -> str:
        async with raw.execute("SELECT sqlite_version()") as cursor:
            row = await cursor.fetchone()
        return row[0] if row else "unknown"

    # Statements

    async def execute(
        self,
        raw: aiosqlite.Connection,
        sql: str,
        params: Sequence[Any] = (),
        *,
        mutation: bool = False,
    ) -> QueryResult:
        start_time = time.perf_counter()
        try:
            cursor = await raw.execute(sql, tuple(params))
            try:
                if mutation:
                    await raw.commit()
                    return QueryResult(
                        rows=[],
                        columns=[],
                        row_count=0,
                        execution_time=time.perf_counter() - start_time,
                        rows_affected=max(cursor.rowcount, 0),
                        last_row_id=cursor.lastrowid,
                    )
                columns = [desc[0] for desc in cursor.description] if cursor.description else []
                fetched = await cursor.fetchall()
            finally:
                await cursor.close()
        except (sqlite3.Error, ValueError) as e:
            if mutation:
                await self._rollback(raw)
            raise self.classify_error(e, sql=sql) from e

        rows = [dict(zip(columns, row)) for row in fetched]
        return QueryResult(
            rows=rows,
            columns=columns,
            row_count=len(rows),
            execution_time=time.perf_counter() - start_time,
        )

    async def _rollback(self, raw: aiosqlite.Connection) -> None:
        try:
            await raw.rollback()
        except (sqlite3.Error, ValueError) as e:
            self.logger.warning("Rollback failed", error=str(e))

    async def open_cursor(self, raw: aiosqlite.Connection, sql: str, params: Sequence[Any] = ()) -> aiosqlite.Cursor:
        try:
            return await raw.execute(sql, tuple(params))
        except (sqlite3.Error, ValueError) as e:
            raise self.classify_error(e, sql=sql) from e

    async def fetch_batch(self, cursor: aiosqlite.Cursor, size: int) -> List[Dict[str, Any]]:
        try:
            fetched = await cursor.fetchmany(size)
        except (sqlite3.Error, ValueError) as e:
            raise self.classify_error(e) from e
        columns = [desc[0] for desc in cursor.description] if cursor.description else []
        return [dict(zip(columns, row)) for row in fetched]

    async def close_cursor(self, cursor: aiosqlite.Cursor) -> None:
        try:
            await cursor.close()
        except (sqlite3.Error, ValueError) as e:
            self.logger.debug("Error closing cursor", error=str(e))

    # Inspection

    async def list_tables(self, raw: aiosqlite.Connection) -> List[str]:
        result = await self.execute(
            raw,
            "SELECT name FROM sqlite_master "
            "WHERE type IN ('table', 'view') AND name NOT LIKE 'sqlite_%' ORDER BY name",
        )
        return [row["name"] for row in result.rows]

    async def describe_table(self, raw: aiosqlite.Connection, table: str) -> Optional[TableInfo]:
        kind = await self.execute(
            raw,
            "SELECT type FROM sqlite_master WHERE type IN ('table', 'view') AND name = ?",
            (table,),
        )
        if not kind.rows:
            return None

        quoted = self.quote_identifier(table)
        column_rows = await self.execute(raw, f"PRAGMA table_info({quoted})")
        columns = [
            ColumnInfo(
                name=row["name"],
                data_type=row["type"] or "",
                is_nullable=row["notnull"] == 0,
                default_value=row["dflt_value"],
                primary_key_position=row["pk"],
            )
            for row in column_rows.rows
        ]

        indexes: List[IndexInfo] = []
        index_rows = await self.execute(raw, f"PRAGMA index_list({quoted})")
        for row in index_rows.rows:
            info_rows = await self.execute(raw, f"PRAGMA index_info({self.quote_identifier(row['name'])})")
            ordered = sorted(info_rows.rows, key=lambda r: r["seqno"])
            # Expression index members have no column name
            index_columns = [r["name"] for r in ordered if r["name"] is not None]
            if len(index_columns) != len(ordered):
                continue
            indexes.append(
                IndexInfo(
                    name=row["name"],
                    table_name=table,
                    columns=index_columns,
                    is_unique=bool(row["unique"]),
                    origin=INDEX_ORIGINS.get(row.get("origin", "c"), "created"),
                    is_partial=bool(row.get("partial", 0)),
                )
            )

        return TableInfo(
            name=table,
            table_type=kind.rows[0]["type"],
            columns=columns,
            indexes=indexes,
        )

    # Errors

    def classify_error(self, exc: BaseException, *, sql: Optional[str] = None) -> SluiceException:
        if isinstance(exc, SluiceException):
            return exc

        message = str(exc)
        context = {"backend": self.config.id, "driver_error": type(exc).__name__}
        if sql is not None:
            context["sql"] = sql

        lowered = message.lower()
        if any(marker in lowered for marker in TRANSIENT_MESSAGES):
            return TransientConnectionError(
                message,
                code=ErrorCodes.CONNECTION_LOST,
                context=context,
                cause=exc,
            )
        return StatementError(
            message,
            code=ErrorCodes.STATEMENT_FAILED,
            context=context,
            cause=exc,
        )
