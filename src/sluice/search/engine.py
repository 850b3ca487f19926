"""Search planners.

Purpose-built, pagination-aware planners on top of the command compiler:

- id lookup, using the primary key path when the id column is the key
- single column search with fuzzy and case-insensitive matching
- multi-column AND search with per-column overrides
- ordered range search that uses an index when one leads with the column

Every planner validates identifiers against the schema catalog and shares
the compiler's operator allow-list. The ``search_*`` methods plan and
execute; the ``plan_*`` methods only plan.
"""

import inspect
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from sluice.catalog.schema import SchemaCatalog
from sluice.compiler.compiler import CommandCompiler, Predicate, normalize_direction
from sluice.compiler.plan import CostClass, StatementPlan
from sluice.config.models import SearchConfig
from sluice.core.exceptions import ErrorCodes, InvalidCommandError, UnindexedRangeError
from sluice.executor.executor import QueryExecutor
from sluice.executor.results import ExecutionResult
from sluice.logging import get_logger

OVERRIDE_KEYS = frozenset({"operator", "value", "fuzzy_match", "case_sensitive"})


class SearchEngine:
    """Plans and runs search requests.

    Args:
        compiler: Compiler providing predicate rendering and select building
        catalog: Schema catalog for key and index metadata
        executor: Executor that runs the plans
        config: Page sizes and the unindexed range policy
    """

    def __init__(
        self,
        compiler: CommandCompiler,
        catalog: SchemaCatalog,
        executor: QueryExecutor,
        config: Optional[SearchConfig] = None,
    ) -> None:
        self.compiler = compiler
        self.catalog = catalog
        self.executor = executor
        self.config = config or SearchConfig()
        self.logger = get_logger("sluice.search")

    # Id lookup

    async def plan_by_id(
        self,
        table: str,
        value: Any,
        *,
        id_column: Optional[str] = None,
        page: Optional[int] = None,
        page_size: Optional[int] = None,
    ) -> StatementPlan:
        """Plan an equality lookup on an id column.

        The id column defaults to a single-column primary key, else ``id``.
        When it is the primary key the plan takes the point lookup path;
        otherwise it is a filtered scan.
        """
        info = await self.catalog.get_table(table)
        primary_key = info.primary_key
        if id_column is None:
            id_column = primary_key[0] if len(primary_key) == 1 else "id"
        await self.catalog.require_column(table, id_column)

        if value is None:
            raise InvalidCommandError(
                "Id lookup requires a value",
                code=ErrorCodes.INVALID_COMMAND,
                context={"table": table, "column": id_column},
            )

        primary_path = primary_key == [id_column]
        return await self.compiler.build_select(
            table,
            predicates=[Predicate(column=id_column, operator="=", value=value)],
            pagination=self.compiler.pagination(page, page_size),
            cost_class=CostClass.POINT if primary_path else None,
            notes={"path": "primary_key" if primary_path else "filtered_scan", "id_column": id_column},
        )

    async def search_by_id(self, table: str, value: Any, **options: Any) -> ExecutionResult:
        use_cache = self._take_options(self.plan_by_id, options)
        plan = await self.plan_by_id(table, value, **options)
        return await self.executor.execute(plan, use_cache=use_cache)

    # Column search

    async def plan_column(
        self,
        table: str,
        column: str,
        value: Any,
        *,
        operator: str = "=",
        fuzzy_match: bool = False,
        case_sensitive: bool = True,
        columns: Optional[Sequence[str]] = None,
        order_by: Optional[Sequence[Any]] = None,
        page: Optional[int] = None,
        page_size: Optional[int] = None,
    ) -> StatementPlan:
        """Plan a single-column filter.

        ``fuzzy_match`` turns an equality into a wildcard-wrapped,
        case-insensitive pattern match; ``case_sensitive=False`` compares
        lower-cased text on both sides for exact operators.
        """
        predicate = Predicate(
            column=column,
            operator=operator,
            value=value,
            fuzzy_match=fuzzy_match,
            case_sensitive=case_sensitive,
        )
        return await self.compiler.build_select(
            table,
            columns=columns,
            predicates=[predicate],
            order_by=self._order_terms(order_by),
            pagination=self.compiler.pagination(page, page_size),
        )

    async def search_column(self, table: str, column: str, value: Any, **options: Any) -> ExecutionResult:
        use_cache = self._take_options(self.plan_column, options)
        plan = await self.plan_column(table, column, value, **options)
        return await self.executor.execute(plan, use_cache=use_cache)

    # Multi-column search

    async def plan_multi(
        self,
        table: str,
        criteria: Mapping[str, Any],
        *,
        overrides: Optional[Mapping[str, Mapping[str, Any]]] = None,
        fuzzy_match: bool = False,
        case_sensitive: bool = True,
        columns: Optional[Sequence[str]] = None,
        order_by: Optional[Sequence[Any]] = None,
        page: Optional[int] = None,
        page_size: Optional[int] = None,
    ) -> StatementPlan:
        """Plan an AND-intersection over several columns.

        Args:
            table: Table to search
            criteria: Column to value mapping. A value may itself be a
                mapping with ``operator``, ``value``, ``fuzzy_match`` and
                ``case_sensitive`` keys.
            overrides: Per-column ``operator``, ``fuzzy_match`` and
                ``case_sensitive`` settings applied over the defaults
            fuzzy_match: Default fuzzy setting for every column
            case_sensitive: Default case sensitivity for every column

        Raises:
            InvalidCommandError: If ``criteria`` is empty or an override
                names a column absent from ``criteria``
        """
        if not criteria:
            raise InvalidCommandError(
                "Multi-column search requires at least one column",
                code=ErrorCodes.INVALID_COMMAND,
                context={"table": table},
            )
        overrides = dict(overrides or {})
        unknown = set(overrides) - set(criteria)
        if unknown:
            raise InvalidCommandError(
                f"Overrides given for columns not searched: {', '.join(sorted(unknown))}",
                code=ErrorCodes.INVALID_COMMAND,
                context={"table": table, "columns": sorted(unknown)},
            )

        predicates: List[Predicate] = []
        for column, raw in sorted(criteria.items()):
            settings: Dict[str, Any] = {
                "operator": "=",
                "fuzzy_match": fuzzy_match,
                "case_sensitive": case_sensitive,
            }
            if isinstance(raw, Mapping) and raw and set(raw) <= OVERRIDE_KEYS:
                settings.update(raw)
            else:
                settings["value"] = raw
            override = overrides.get(column) or {}
            extra = set(override) - OVERRIDE_KEYS
            if extra:
                raise InvalidCommandError(
                    f"Unknown override keys for {column}: {', '.join(sorted(extra))}",
                    code=ErrorCodes.INVALID_COMMAND,
                    context={"column": column},
                )
            settings.update(override)
            predicates.append(Predicate(column=column, **settings))

        return await self.compiler.build_select(
            table,
            columns=columns,
            predicates=predicates,
            order_by=self._order_terms(order_by),
            pagination=self.compiler.pagination(page, page_size),
        )

    async def search_multi(self, table: str, criteria: Mapping[str, Any], **options: Any) -> ExecutionResult:
        use_cache = self._take_options(self.plan_multi, options)
        plan = await self.plan_multi(table, criteria, **options)
        return await self.executor.execute(plan, use_cache=use_cache)

    # Ordered range search

    async def plan_ordered(
        self,
        table: str,
        column: str,
        *,
        lower: Any = None,
        upper: Any = None,
        lower_inclusive: bool = True,
        upper_inclusive: bool = True,
        direction: str = "ASC",
        columns: Optional[Sequence[str]] = None,
        page: Optional[int] = None,
        page_size: Optional[int] = None,
    ) -> StatementPlan:
        """Plan a range scan ordered by ``column``.

        With an index led by ``column`` the plan is an index range
        predicate. Without one, the unindexed range policy applies:
        ``degrade`` plans a filtered full scan flagged ``degraded`` in the
        plan notes, ``fail`` raises.

        Raises:
            UnindexedRangeError: If the column is unindexed and the policy is ``fail``
        """
        await self.catalog.require_column(table, column)
        direction = normalize_direction(direction)
        index = await self.catalog.leading_index(table, column)

        if index is None and self.config.unindexed_range_policy == "fail":
            raise UnindexedRangeError(
                f"No index leads with {table}.{column}; range search refused",
                code=ErrorCodes.UNINDEXED_RANGE,
                context={"table": table, "column": column},
            )

        predicates: List[Predicate] = []
        if lower is not None:
            predicates.append(Predicate(column=column, operator=">=" if lower_inclusive else ">", value=lower))
        if upper is not None:
            predicates.append(Predicate(column=column, operator="<=" if upper_inclusive else "<", value=upper))

        if index is not None:
            cost = CostClass.INDEXED_RANGE
            notes: Dict[str, Any] = {"degraded": False, "index": index.name}
        else:
            cost = CostClass.FILTERED_SCAN if predicates else CostClass.FULL_SCAN
            notes = {"degraded": True, "index": None}
            self.logger.info(
                "Range search on unindexed column, falling back to a full scan",
                table=table,
                column=column,
            )

        return await self.compiler.build_select(
            table,
            columns=columns,
            predicates=predicates,
            order_by=[(column, direction)],
            pagination=self.compiler.pagination(page, page_size),
            cost_class=cost,
            notes=notes,
        )

    async def search_ordered(self, table: str, column: str, **options: Any) -> ExecutionResult:
        use_cache = self._take_options(self.plan_ordered, options)
        plan = await self.plan_ordered(table, column, **options)
        return await self.executor.execute(plan, use_cache=use_cache)

    # Helpers

    @staticmethod
    def _take_options(planner: Callable[..., Any], options: Dict[str, Any]) -> bool:
        """Pop ``use_cache`` from ``options`` and reject names ``planner`` does not accept.

        Raises:
            InvalidCommandError: If an option is unknown
        """
        use_cache = options.pop("use_cache", True)
        accepted = {
            name
            for name, parameter in inspect.signature(planner).parameters.items()
            if parameter.kind is inspect.Parameter.KEYWORD_ONLY
        }
        unknown = sorted(set(options) - accepted)
        if unknown:
            raise InvalidCommandError(
                f"Unknown search options: {', '.join(unknown)}",
                code=ErrorCodes.INVALID_COMMAND,
                context={"options": unknown, "accepted": sorted(accepted | {"use_cache"})},
            )
        return use_cache

    @staticmethod
    def _order_terms(order_by: Optional[Sequence[Any]]) -> List[Tuple[str, str]]:
        """Accept ``"col"``, ``"col DESC"``, ``(col, dir)`` or ``{column, direction}`` terms."""
        if not order_by:
            return []
        if isinstance(order_by, (str, Mapping)):
            order_by = [order_by]

        terms: List[Tuple[str, str]] = []
        for term in order_by:
            if isinstance(term, str):
                parts = term.split()
                if len(parts) not in (1, 2):
                    raise InvalidCommandError(
                        f"Cannot parse order term: {term!r}",
                        code=ErrorCodes.INVALID_COMMAND,
                    )
                column, direction = parts[0], parts[1] if len(parts) == 2 else "ASC"
            elif isinstance(term, Mapping):
                column, direction = term.get("column"), term.get("direction", "ASC")
            elif isinstance(term, (list, tuple)) and len(term) == 2:
                column, direction = term
            else:
                column, direction = None, None
            if not isinstance(column, str) or not column:
                raise InvalidCommandError(
                    f"Invalid order term: {term!r}",
                    code=ErrorCodes.INVALID_COMMAND,
                )
            terms.append((column, normalize_direction(direction)))
        return terms
