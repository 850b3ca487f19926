"""Sluice query engine.

``QueryEngine`` is the external operation surface. It owns one backing
store, connection pool, query cache, schema catalog, compiler, executor,
search engine and index advisor, built explicitly from an
``EngineConfig``. Every operation returns a ``Response`` envelope; errors
are reported through the envelope and never raised, except by
``stream`` which hands the caller a live ``BatchStream``.

Example:
    >>> config = EngineConfig.from_dict({"backend": {"id": "main", "database": "app.db"}})
    >>> async with QueryEngine(config) as engine:
    ...     response = await engine.search_column("people", "age", 30, operator=">")
    ...     response.metadata["pagination"]["total_rows"]
    12
"""

from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from .advisor import IndexAdvisor, WorkloadTracker
from .cache import QueryCache
from .catalog import SchemaCatalog
from .compiler import CommandCompiler, parse_command
from .config.models import EngineConfig
from .core import AsyncComponent, ComponentRegistry
from .core.exceptions import SluiceException
from .database import BackingStoreRegistry, ConnectionPool, create_backing_store
from .executor import BatchStream, ExecutionResult, QueryExecutor, Response
from .logging import LogContext, get_factory, get_logger
from .search import SearchEngine

Outcome = Tuple[Any, Dict[str, Any]]


class QueryEngine(AsyncComponent[EngineConfig]):
    """In-process facade over the Sluice components.

    Args:
        config: Engine configuration
        registry: Backing store registry; defaults to the built-in stores
        configure_logging: Apply ``config.logging`` to the global logging
            setup on construction
    """

    component_name = "QueryEngine"

    def __init__(
        self,
        config: EngineConfig,
        *,
        registry: Optional[BackingStoreRegistry] = None,
        configure_logging: bool = False,
    ) -> None:
        super().__init__(config)
        if configure_logging:
            get_factory().configure_from_config(config.logging)
        self.logger = get_logger(f"sluice.engine.{config.name}")

        self.backend = create_backing_store(config.backend, registry)
        self.pool = ConnectionPool(config.pool, self.backend)
        self.cache = QueryCache(config.cache)
        self.catalog = SchemaCatalog(config.catalog, self.pool, self.backend)
        self.tracker = WorkloadTracker(config.advisor.workload_capacity)
        self.compiler = CommandCompiler(self.catalog, config.search, observer=self.tracker)
        self.executor = QueryExecutor(self.pool, self.backend, self.cache, self.catalog)
        self.search = SearchEngine(self.compiler, self.catalog, self.executor, config.search)
        self.advisor = IndexAdvisor(self.catalog, self.executor, self.backend, self.tracker, config.advisor)

        self.components = ComponentRegistry()
        self.components.register("backend", self.backend)
        self.components.register("pool", self.pool, ["backend"])
        self.components.register("cache", self.cache)
        self.components.register("catalog", self.catalog, ["pool"])

    async def _async_initialize(self) -> None:
        await self.components.initialize_all()
        self.logger.info(
            "Query engine ready",
            platform=self.backend.platform,
            database=self.config.backend.database,
            pool_max_size=self.config.pool.max_size,
        )

    async def _async_cleanup(self) -> None:
        await self.components.cleanup_all()
        self.cache.clear()

    # Envelope

    async def _respond(self, operation: str, action: Callable[[], Awaitable[Outcome]]) -> Response:
        with LogContext.correlation() as correlation_id:
            with LogContext.scope(operation=operation):
                try:
                    data, metadata = await action()
                except SluiceException as e:
                    self.logger.info("Operation rejected", error_code=e.code, error=e.message)
                    return Response.failure(operation, e, {"correlation_id": correlation_id})
                except Exception as e:
                    self.logger.exception("Unexpected error", error_type=type(e).__name__)
                    return Response.failure(operation, e, {"correlation_id": correlation_id})
        metadata["correlation_id"] = correlation_id
        return Response.success(operation, data, metadata)

    @staticmethod
    def _result(result: ExecutionResult) -> Outcome:
        if result.plan.is_read or result.rows:
            data: Any = result.rows
        else:
            data = {"rows_affected": result.rows_affected, "last_row_id": result.last_row_id}
        return data, result.metadata()

    # Statements

    async def execute_raw(
        self,
        sql: str,
        params: Optional[Sequence[Any]] = None,
        *,
        use_cache: bool = True,
        cache_ttl: Optional[float] = None,
    ) -> Response:
        """Run one parameterized statement. Reads are cached; writes invalidate."""

        async def action() -> Outcome:
            plan = self.compiler.compile_raw(sql, params)
            return self._result(await self.executor.execute(plan, use_cache=use_cache, cache_ttl=cache_ttl))

        return await self._respond("execute_raw", action)

    async def execute_paginated(
        self,
        sql: str,
        page: int = 1,
        page_size: Optional[int] = None,
        params: Optional[Sequence[Any]] = None,
    ) -> Response:
        """Return one page of a raw read statement with pagination metadata."""

        async def action() -> Outcome:
            plan = self.compiler.compile_paginated(sql, page, page_size, params)
            return self._result(await self.executor.execute(plan))

        return await self._respond("execute_paginated", action)

    async def execute_filtered(
        self,
        table: str,
        columns: Optional[Sequence[str]] = None,
        filters: Optional[Mapping[str, Any]] = None,
        page: int = 1,
        page_size: Optional[int] = None,
        order_by: Optional[Sequence[Any]] = None,
    ) -> Response:
        """Select from one table with conditions, ordering and pagination.

        ``filters`` maps columns to a value or to ``{operator, value}``.
        """

        async def action() -> Outcome:
            pagination = self.compiler.pagination(page, page_size)
            command = parse_command(
                {
                    "operation": "SELECT",
                    "table": table,
                    "columns": list(columns) if columns else None,
                    "conditions": dict(filters or {}),
                    "order_by": order_by or [],
                    "page": pagination.page,
                    "page_size": pagination.page_size,
                }
            )
            plan = await self.compiler.compile_select(command)
            return self._result(await self.executor.execute(plan))

        return await self._respond("execute_filtered", action)

    async def execute_structured_command(self, command: Any) -> Response:
        """Validate, compile and run a SELECT, INSERT, UPDATE or DELETE command."""

        async def action() -> Outcome:
            plan = await self.compiler.compile_command(command)
            return self._result(await self.executor.execute(plan))

        return await self._respond("execute_structured_command", action)

    # Search

    async def search_by_id(self, table: str, value: Any, **options: Any) -> Response:
        async def action() -> Outcome:
            return self._result(await self.search.search_by_id(table, value, **options))

        return await self._respond("search_by_id", action)

    async def search_column(self, table: str, column: str, value: Any, **options: Any) -> Response:
        """Search one column; see ``SearchEngine.plan_column`` for options."""

        async def action() -> Outcome:
            return self._result(await self.search.search_column(table, column, value, **options))

        return await self._respond("search_column", action)

    async def search_multi(self, table: str, criteria: Mapping[str, Any], **options: Any) -> Response:
        async def action() -> Outcome:
            return self._result(await self.search.search_multi(table, criteria, **options))

        return await self._respond("search_multi", action)

    async def search_ordered(self, table: str, column: str, **options: Any) -> Response:
        """Range search ordered by ``column``; ``metadata["degraded"]`` marks full scans."""

        async def action() -> Outcome:
            return self._result(await self.search.search_ordered(table, column, **options))

        return await self._respond("search_ordered", action)

    # Indexes

    async def index_create(
        self,
        table: str,
        columns: Sequence[str],
        name: Optional[str] = None,
        unique: bool = False,
    ) -> Response:
        async def action() -> Outcome:
            index = await self.advisor.create_index(table, columns, name, unique=unique)
            return index.to_dict(), {"table": index.table_name}

        return await self._respond("index_create", action)

    async def index_list(self, table: str) -> Response:
        async def action() -> Outcome:
            indexes = await self.advisor.list_indexes(table)
            return [index.to_dict() for index in indexes], {"table": table, "count": len(indexes)}

        return await self._respond("index_list", action)

    async def index_drop(self, name: str, table: Optional[str] = None) -> Response:
        async def action() -> Outcome:
            index = await self.advisor.drop_index(name, table)
            return index.to_dict(), {"table": index.table_name}

        return await self._respond("index_drop", action)

    async def index_recommend(self, table: str, limit: Optional[int] = None) -> Response:
        async def action() -> Outcome:
            recommendations = await self.advisor.recommend(table, limit)
            data: List[Dict[str, Any]] = [recommendation.to_dict() for recommendation in recommendations]
            return data, {"table": table, "count": len(data)}

        return await self._respond("index_recommend", action)

    # Cache and health

    async def cache_clear(self, pattern: Optional[str] = None) -> Response:
        """Drop cached results whose key matches ``pattern``; all when omitted."""

        async def action() -> Outcome:
            cleared = self.cache.invalidate(pattern)
            return {"cleared": cleared}, {"pattern": pattern}

        return await self._respond("cache_clear", action)

    async def health(self) -> Response:
        async def action() -> Outcome:
            pool = self.pool.get_stats()
            cache = self.cache.get_stats()
            data = {
                "pool": {
                    "active": pool["active"],
                    "idle": pool["idle"],
                    "total": pool["total"],
                    "errors": pool["errors"],
                },
                "cache": {"entries": cache["entries"], "hitRate": cache["hit_rate"]},
                "performance": self.executor.get_performance_summary(),
            }
            return data, {"initialized": self.is_initialized, "executor": self.executor.get_stats()}

        return await self._respond("health", action)

    # Streaming

    def stream(
        self,
        sql: str,
        params: Optional[Sequence[Any]] = None,
        batch_size: Optional[int] = None,
    ) -> BatchStream:
        """Return a batch stream over a raw read statement.

        Raises:
            InvalidCommandError: If the statement is not a read or the batch
                size is not positive
        """
        plan = self.compiler.compile_raw(sql, params)
        size = self.config.search.stream_batch_size if batch_size is None else batch_size
        return self.executor.stream(plan, size)

    def get_health_status(self) -> Dict[str, Any]:
        status = super().get_health_status()
        status["components"] = self.components.get_health_status()
        return status
