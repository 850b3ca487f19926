"""Command compiler.

Turns structured commands and raw SQL into ``StatementPlan`` objects.
Identifiers are checked against the schema catalog and emitted quoted;
every literal value, LIMIT and OFFSET included, becomes a positional bound
parameter. No caller-supplied value is ever spliced into statement text.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sluice.config.models import SearchConfig
from sluice.core.exceptions import (
    ConflictingPaginationError,
    ErrorCodes,
    InvalidCommandError,
    InvalidOperatorError,
    InvalidPaginationError,
    InvalidSortError,
    UnscopedMutationError,
)
from sluice.core.protocols import WorkloadObserver
from sluice.core.utils import ListUtils, StringUtils
from sluice.catalog.schema import SchemaCatalog
from sluice.database.models import TableInfo
from sluice.logging import get_logger
from .commands import (
    Condition,
    DeleteCommand,
    InsertCommand,
    SelectCommand,
    UpdateCommand,
    parse_command,
)
from .plan import CostClass, PaginationSpec, StatementKind, StatementPlan

ALLOWED_OPERATORS = ("=", "!=", ">", "<", ">=", "<=", "LIKE", "IN")
SORT_DIRECTIONS = ("ASC", "DESC")
RANGE_OPERATORS = frozenset({"=", ">", "<", ">=", "<=", "IN"})
BINDABLE_TYPES = (type(None), bool, int, float, str, bytes)

_LEADING_KEYWORD = re.compile(r"^\s*([A-Za-z]+)")
_PAGINATION_CLAUSE = re.compile(r"\b(LIMIT|OFFSET)\b", re.IGNORECASE)
_PLACEHOLDER = re.compile(r"\?(\d*)")
_WHERE_CLAUSE = re.compile(r"\bWHERE\b", re.IGNORECASE)
_CTE_MUTATION = re.compile(r"\b(INSERT|UPDATE|DELETE|REPLACE)\b", re.IGNORECASE)
_IDENT = r'(?:"(?:[^"]|"")+"|[A-Za-z_][A-Za-z0-9_$]*)'
_TABLE_REFERENCE = re.compile(
    r"\b(?:FROM|JOIN|INTO|UPDATE|TABLE)\s+(" + _IDENT + r"(?:\s*\.\s*" + _IDENT + r")?)",
    re.IGNORECASE,
)
_TABLE_LIST_ITEM = re.compile(
    r"\s*,\s*(" + _IDENT + r"(?:\s*\.\s*" + _IDENT + r")?)(?:\s+(?:AS\s+)?" + _IDENT + r")?",
    re.IGNORECASE,
)
_ALIAS = re.compile(
    r"\s+(?:AS\s+)?(?!(?:WHERE|JOIN|ON|GROUP|ORDER|LIMIT|LEFT|INNER|CROSS|UNION|SET|VALUES)\b)" + _IDENT,
    re.IGNORECASE,
)
_NOT_TABLES = frozenset({"select", "values", "set", "if", "exists", "not"})

READ_KEYWORDS = frozenset({"SELECT", "VALUES"})
MUTATION_KEYWORDS = {
    "INSERT": StatementKind.INSERT,
    "REPLACE": StatementKind.INSERT,
    "UPDATE": StatementKind.UPDATE,
    "DELETE": StatementKind.DELETE,
    "CREATE": StatementKind.DDL,
    "DROP": StatementKind.DDL,
    "ALTER": StatementKind.DDL,
}


@dataclass(frozen=True)
class Predicate:
    """One filter term before rendering.

    Attributes:
        column: Column name, validated against the catalog when rendered
        operator: Operator from the allow-list
        value: Bound value, or list of values for IN
        fuzzy_match: Compile to a wildcard-wrapped case-insensitive LIKE
        case_sensitive: When False, compare lower-cased text on both sides
    """

    column: str
    operator: str = "="
    value: Any = None
    fuzzy_match: bool = False
    case_sensitive: bool = True


def normalize_operator(operator: Any) -> str:
    """Return the canonical spelling of an allowed operator.

    Raises:
        InvalidOperatorError: If the operator is not on the allow-list
    """
    candidate = operator.strip().upper() if isinstance(operator, str) else operator
    if candidate not in ALLOWED_OPERATORS:
        raise InvalidOperatorError(
            f"Operator not allowed: {operator!r}",
            code=ErrorCodes.INVALID_OPERATOR,
            context={"operator": operator, "allowed": list(ALLOWED_OPERATORS)},
        )
    return candidate


def normalize_direction(direction: Any) -> str:
    """Return ``ASC`` or ``DESC``.

    Raises:
        InvalidSortError: For any other direction
    """
    candidate = direction.strip().upper() if isinstance(direction, str) else direction
    if candidate not in SORT_DIRECTIONS:
        raise InvalidSortError(
            f"Sort direction must be ASC or DESC, got {direction!r}",
            code=ErrorCodes.INVALID_SORT,
            context={"direction": direction},
        )
    return candidate


class CommandCompiler:
    """Compiles requests into parameterized statement plans.

    Args:
        catalog: Schema catalog used to validate identifiers
        search_config: Page size defaults and limits
        observer: Receives filter and order columns of compiled selects
    """

    def __init__(
        self,
        catalog: SchemaCatalog,
        search_config: Optional[SearchConfig] = None,
        observer: Optional[WorkloadObserver] = None,
    ) -> None:
        self.catalog = catalog
        self.search_config = search_config or SearchConfig()
        self.observer = observer
        self.logger = get_logger("sluice.compiler")

    # Helpers

    @staticmethod
    def quote(identifier: str) -> str:
        return StringUtils.quote_identifier(identifier)

    def pagination(self, page: Optional[int] = None, page_size: Optional[int] = None) -> PaginationSpec:
        """Build a page request, applying the default and maximum page size.

        Raises:
            InvalidPaginationError: If page or page size is out of range
        """
        spec = PaginationSpec(
            page=1 if page is None else page,
            page_size=self.search_config.default_page_size if page_size is None else page_size,
        )
        if spec.page_size > self.search_config.max_page_size:
            raise InvalidPaginationError(
                f"page_size {spec.page_size} exceeds maximum {self.search_config.max_page_size}",
                code=ErrorCodes.INVALID_PAGINATION,
                context={"page_size": spec.page_size, "max_page_size": self.search_config.max_page_size},
            )
        return spec

    @staticmethod
    def _check_bindable(value: Any, column: str) -> None:
        if not isinstance(value, BINDABLE_TYPES):
            raise InvalidCommandError(
                f"Unsupported value type for column {column}: {type(value).__name__}",
                code=ErrorCodes.INVALID_COMMAND,
                context={"column": column, "type": type(value).__name__},
            )

    async def _validate_columns(self, table: str, columns: Iterable[str]) -> List[str]:
        validated = []
        for column in columns:
            await self.catalog.require_column(table, column)
            validated.append(column)
        return validated

    # Predicates

    async def render_predicate(self, table: TableInfo, predicate: Predicate) -> Tuple[str, List[Any]]:
        """Render one predicate to SQL text and its parameters.

        Raises:
            UnknownColumnError: If the column is not on the table
            InvalidOperatorError: If the operator is not allowed
            InvalidCommandError: If the value does not fit the operator
        """
        column = await self.catalog.require_column(table.name, predicate.column)
        operator = normalize_operator(predicate.operator)
        quoted = self.quote(predicate.column)
        value = predicate.value

        if predicate.fuzzy_match:
            if operator not in ("=", "LIKE"):
                raise InvalidOperatorError(
                    f"Fuzzy match supports = and LIKE, got {operator}",
                    code=ErrorCodes.INVALID_OPERATOR,
                    context={"column": predicate.column, "operator": operator},
                )
            if value is None or isinstance(value, (list, tuple, set, dict)):
                raise InvalidCommandError(
                    f"Fuzzy match on {predicate.column} requires a scalar value",
                    code=ErrorCodes.INVALID_COMMAND,
                    context={"column": predicate.column},
                )
            self._check_bindable(value, predicate.column)
            target = quoted if column.is_text else f"CAST({quoted} AS TEXT)"
            pattern = f"%{StringUtils.escape_like(str(value).lower())}%"
            return f"LOWER({target}) LIKE ? ESCAPE '{StringUtils.LIKE_ESCAPE}'", [pattern]

        if operator == "IN":
            if isinstance(value, (str, bytes)) or not isinstance(value, (list, tuple, set, frozenset)) or not value:
                raise InvalidCommandError(
                    f"IN on {predicate.column} requires a non-empty list",
                    code=ErrorCodes.INVALID_COMMAND,
                    context={"column": predicate.column},
                )
            values = list(value)
            for item in values:
                self._check_bindable(item, predicate.column)
            fold = not predicate.case_sensitive and all(isinstance(item, str) for item in values)
            lhs = f"LOWER({quoted})" if fold else quoted
            placeholder = "LOWER(?)" if fold else "?"
            return f"{lhs} IN ({', '.join(placeholder for _ in values)})", values

        if value is None:
            if operator == "=":
                return f"{quoted} IS NULL", []
            if operator == "!=":
                return f"{quoted} IS NOT NULL", []
            raise InvalidCommandError(
                f"Operator {operator} on {predicate.column} requires a value",
                code=ErrorCodes.INVALID_COMMAND,
                context={"column": predicate.column, "operator": operator},
            )

        self._check_bindable(value, predicate.column)
        fold = not predicate.case_sensitive and isinstance(value, str)
        lhs = f"LOWER({quoted})" if fold else quoted
        rhs = "LOWER(?)" if fold else "?"
        return f"{lhs} {operator} {rhs}", [value]

    async def render_where(self, table: TableInfo, predicates: Sequence[Predicate]) -> Tuple[str, List[Any]]:
        if not predicates:
            return "", []
        parts: List[str] = []
        params: List[Any] = []
        for predicate in predicates:
            sql, values = await self.render_predicate(table, predicate)
            parts.append(sql)
            params.extend(values)
        return " WHERE " + " AND ".join(parts), params

    @staticmethod
    def predicates_from_conditions(conditions: Dict[str, Condition]) -> List[Predicate]:
        """Predicates in column order, so equal conditions compile to one statement."""
        return [
            Predicate(column=column, operator=condition.operator, value=condition.value)
            for column, condition in sorted(conditions.items())
        ]

    # Selects

    async def build_select(
        self,
        table_name: str,
        *,
        columns: Optional[Sequence[str]] = None,
        predicates: Sequence[Predicate] = (),
        order_by: Sequence[Tuple[str, str]] = (),
        pagination: Optional[PaginationSpec] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        cost_class: Optional[CostClass] = None,
        notes: Optional[Dict[str, Any]] = None,
    ) -> StatementPlan:
        """Build a SELECT plan from validated parts.

        Paginated selects are ordered deterministically: the requested order
        followed by the primary key (or every column when there is none), so
        consecutive pages partition the result.

        Args:
            table_name: Table to read
            columns: Columns to return; all when omitted
            predicates: Filters, combined with AND
            order_by: ``(column, direction)`` pairs
            pagination: Page to return; adds a count statement to the plan
            limit: Row limit for unpaginated selects
            offset: Row offset for unpaginated selects
            cost_class: Override the inferred cost class
            notes: Planner annotations to carry on the plan
        """
        table = await self.catalog.get_table(table_name)
        quoted_table = self.quote(table.name)

        if columns:
            selected = await self._validate_columns(table.name, ListUtils.deduplicate_list(list(columns)))
            select_list = ", ".join(self.quote(column) for column in selected)
        else:
            select_list = "*"

        where_sql, params = await self.render_where(table, predicates)

        order_terms: List[Tuple[str, str]] = []
        for column, direction in order_by:
            await self.catalog.require_column(table.name, column)
            order_terms.append((column, normalize_direction(direction)))
        requested_order = [column for column, _ in order_terms]

        if pagination is not None:
            ordered = set(requested_order)
            tiebreak = table.primary_key or table.column_names
            order_terms.extend((column, "ASC") for column in tiebreak if column not in ordered)

        sql = f"SELECT {select_list} FROM {quoted_table}{where_sql}"
        if order_terms:
            sql += " ORDER BY " + ", ".join(f"{self.quote(column)} {direction}" for column, direction in order_terms)

        statement_params = list(params)
        count_sql = None
        if pagination is not None:
            sql += " LIMIT ? OFFSET ?"
            statement_params.extend([pagination.limit, pagination.offset])
            count_sql = f"SELECT COUNT(*) FROM {quoted_table}{where_sql}"
        elif limit is not None:
            sql += " LIMIT ? OFFSET ?"
            statement_params.extend([limit, offset or 0])

        if self.observer is not None:
            self.observer.record(
                table.name,
                filter_columns=[predicate.column for predicate in predicates],
                order_columns=requested_order,
            )

        return StatementPlan(
            sql=sql,
            params=tuple(statement_params),
            cost_class=cost_class or await self._classify(table, predicates),
            kind=StatementKind.SELECT,
            tables=(table.name.lower(),),
            pagination=pagination,
            count_sql=count_sql,
            count_params=tuple(params),
            notes=dict(notes or {}),
        )

    async def _classify(self, table: TableInfo, predicates: Sequence[Predicate]) -> CostClass:
        if not predicates:
            return CostClass.FULL_SCAN

        primary_key = table.primary_key
        exact = {
            p.column
            for p in predicates
            if normalize_operator(p.operator) == "="
            and p.value is not None
            and p.case_sensitive
            and not p.fuzzy_match
        }
        if primary_key and set(primary_key) <= exact:
            return CostClass.POINT

        for predicate in predicates:
            if predicate.fuzzy_match or not predicate.case_sensitive:
                continue
            if normalize_operator(predicate.operator) not in RANGE_OPERATORS:
                continue
            if await self.catalog.leading_index(table.name, predicate.column) is not None:
                return CostClass.INDEXED_RANGE
        return CostClass.FILTERED_SCAN

    # Structured commands

    async def compile_command(self, command: Any) -> StatementPlan:
        """Validate and compile a structured command.

        Raises:
            InvalidCommandError: If the command is malformed
            ValidationError: For unknown identifiers, disallowed operators or
                sort directions, and unscoped mutations
        """
        command = parse_command(command)
        if isinstance(command, SelectCommand):
            return await self.compile_select(command)
        if isinstance(command, InsertCommand):
            return await self.compile_insert(command)
        if isinstance(command, UpdateCommand):
            return await self.compile_update(command)
        if isinstance(command, DeleteCommand):
            return await self.compile_delete(command)
        raise InvalidCommandError(
            f"Unsupported command type: {type(command).__name__}",
            code=ErrorCodes.INVALID_COMMAND,
        )

    async def compile_select(self, command: SelectCommand) -> StatementPlan:
        pagination = self.pagination(command.page, command.page_size) if command.is_paginated else None
        return await self.build_select(
            command.table,
            columns=command.columns,
            predicates=self.predicates_from_conditions(command.conditions),
            order_by=[(term.column, term.direction) for term in command.order_by],
            pagination=pagination,
            limit=command.limit,
            offset=command.offset,
        )

    async def compile_insert(self, command: InsertCommand) -> StatementPlan:
        table = await self.catalog.get_table(command.table)
        rows = command.all_rows
        columns = await self._validate_columns(table.name, rows[0])

        params: List[Any] = []
        for row in rows:
            for column in columns:
                self._check_bindable(row[column], column)
                params.append(row[column])

        placeholders = "(" + ", ".join("?" for _ in columns) + ")"
        sql = (
            f"INSERT INTO {self.quote(table.name)} ({', '.join(self.quote(c) for c in columns)}) "
            f"VALUES {', '.join(placeholders for _ in rows)}"
        )
        return StatementPlan(
            sql=sql,
            params=tuple(params),
            cost_class=CostClass.MUTATION,
            kind=StatementKind.INSERT,
            tables=(table.name.lower(),),
            requires_transaction=True,
            notes={"rows": len(rows)},
        )

    async def compile_update(self, command: UpdateCommand) -> StatementPlan:
        self._require_scope(command.table, "UPDATE", command.conditions, command.force)
        table = await self.catalog.get_table(command.table)
        columns = await self._validate_columns(table.name, command.values)

        assignments = []
        params: List[Any] = []
        for column in columns:
            self._check_bindable(command.values[column], column)
            assignments.append(f"{self.quote(column)} = ?")
            params.append(command.values[column])

        where_sql, where_params = await self.render_where(table, self.predicates_from_conditions(command.conditions))
        return StatementPlan(
            sql=f"UPDATE {self.quote(table.name)} SET {', '.join(assignments)}{where_sql}",
            params=tuple(params + where_params),
            cost_class=CostClass.MUTATION,
            kind=StatementKind.UPDATE,
            tables=(table.name.lower(),),
            requires_transaction=True,
            notes={"forced": command.force and not command.conditions},
        )

    async def compile_delete(self, command: DeleteCommand) -> StatementPlan:
        self._require_scope(command.table, "DELETE", command.conditions, command.force)
        table = await self.catalog.get_table(command.table)
        where_sql, params = await self.render_where(table, self.predicates_from_conditions(command.conditions))
        return StatementPlan(
            sql=f"DELETE FROM {self.quote(table.name)}{where_sql}",
            params=tuple(params),
            cost_class=CostClass.MUTATION,
            kind=StatementKind.DELETE,
            tables=(table.name.lower(),),
            requires_transaction=True,
            notes={"forced": command.force and not command.conditions},
        )

    @staticmethod
    def _require_scope(table: str, operation: str, conditions: Dict[str, Condition], force: bool) -> None:
        if not conditions and not force:
            raise UnscopedMutationError(
                f"{operation} on {table} has no conditions; set force to affect every row",
                code=ErrorCodes.UNSCOPED_MUTATION,
                context={"table": table, "operation": operation},
            )

    # Raw SQL

    def compile_raw(self, sql: str, params: Optional[Sequence[Any]] = None) -> StatementPlan:
        """Classify and wrap a raw parameterized statement.

        Raises:
            InvalidCommandError: For empty or stacked statements, named
                parameters, or a placeholder count mismatch
        """
        if not isinstance(sql, str) or not sql.strip():
            raise InvalidCommandError("SQL statement is empty", code=ErrorCodes.INVALID_COMMAND)
        if params is not None and (isinstance(params, (str, bytes, dict)) or not isinstance(params, (list, tuple))):
            raise InvalidCommandError(
                "Raw SQL parameters must be a positional list",
                code=ErrorCodes.INVALID_COMMAND,
                context={"type": type(params).__name__},
            )
        bound = tuple(params or ())
        for index, value in enumerate(bound):
            self._check_bindable(value, f"${index + 1}")

        text = sql.strip()
        while text.endswith(";"):
            text = text[:-1].rstrip()

        scrubbed = StringUtils.strip_sql_literals(text)
        if ";" in scrubbed:
            raise InvalidCommandError(
                "Multiple statements are not allowed",
                code=ErrorCodes.INVALID_COMMAND,
            )

        placeholders = self._parameter_count(scrubbed)
        if placeholders != len(bound):
            raise InvalidCommandError(
                f"Statement has {placeholders} placeholder(s) but {len(bound)} parameter(s) were given",
                code=ErrorCodes.INVALID_COMMAND,
                context={"placeholders": placeholders, "params": len(bound)},
            )

        kind = self._classify_raw(scrubbed)
        if kind == StatementKind.SELECT:
            cost = CostClass.FILTERED_SCAN if _WHERE_CLAUSE.search(scrubbed) else CostClass.FULL_SCAN
        elif kind in (StatementKind.DDL, StatementKind.OTHER):
            cost = CostClass.DDL
        else:
            cost = CostClass.MUTATION

        return StatementPlan(
            sql=text,
            params=bound,
            cost_class=cost,
            kind=kind,
            tables=self.extract_tables(text),
            requires_transaction=kind != StatementKind.SELECT,
            notes={"raw": True},
        )

    def compile_paginated(
        self,
        sql: str,
        page: Optional[int],
        page_size: Optional[int],
        params: Optional[Sequence[Any]] = None,
    ) -> StatementPlan:
        """Wrap a raw read statement so it returns one page.

        Raises:
            ConflictingPaginationError: If the statement has its own LIMIT or OFFSET
            InvalidCommandError: If the statement is not a read
            InvalidPaginationError: If page or page size is out of range
        """
        base = self.compile_raw(sql, params)
        if _PAGINATION_CLAUSE.search(StringUtils.strip_sql_literals(base.sql)):
            raise ConflictingPaginationError(
                "SQL already contains LIMIT/OFFSET; remove it to request a page",
                code=ErrorCodes.CONFLICTING_PAGINATION,
                context={"page": page, "page_size": page_size},
            )
        if not base.is_read:
            raise InvalidCommandError(
                "Only read statements can be paginated",
                code=ErrorCodes.INVALID_COMMAND,
                context={"kind": base.kind.value},
            )

        spec = self.pagination(page, page_size)
        return StatementPlan(
            sql=f"SELECT * FROM ({base.sql}) AS _page LIMIT ? OFFSET ?",
            params=base.params + (spec.limit, spec.offset),
            cost_class=base.cost_class,
            kind=StatementKind.SELECT,
            tables=base.tables,
            pagination=spec,
            count_sql=f"SELECT COUNT(*) FROM ({base.sql}) AS _count",
            count_params=base.params,
            notes={"raw": True},
        )

    @staticmethod
    def _classify_raw(scrubbed: str) -> StatementKind:
        match = _LEADING_KEYWORD.match(scrubbed)
        keyword = match.group(1).upper() if match else ""
        if keyword == "WITH":
            mutation = _CTE_MUTATION.search(scrubbed)
            if mutation is None:
                return StatementKind.SELECT
            keyword = mutation.group(1).upper()
        if keyword in READ_KEYWORDS:
            return StatementKind.SELECT
        return MUTATION_KEYWORDS.get(keyword, StatementKind.OTHER)

    @staticmethod
    def _parameter_count(scrubbed: str) -> int:
        """Number of parameters a statement binds.

        A bare ``?`` takes the index after the largest seen so far and ``?NNN``
        takes index NNN, so repeated numbered placeholders share one value.
        """
        count = 0
        for match in _PLACEHOLDER.finditer(scrubbed):
            number = match.group(1)
            count = max(count, int(number)) if number else count + 1
        return count

    @staticmethod
    def extract_tables(sql: str) -> Tuple[str, ...]:
        """Best-effort list of tables referenced by a statement, lower-cased."""
        text = StringUtils.strip_sql_literals(sql, keep_identifiers=True)
        found: List[str] = []

        def add(reference: str) -> None:
            name = reference.split(".")[-1].strip()
            if name.startswith('"'):
                name = name[1:-1].replace('""', '"')
            name = name.lower()
            if name and name not in _NOT_TABLES:
                found.append(name)

        for match in _TABLE_REFERENCE.finditer(text):
            add(match.group(1))
            position = match.end()
            alias = _ALIAS.match(text, position)
            if alias:
                position = alias.end()
            while True:
                item = _TABLE_LIST_ITEM.match(text, position)
                if item is None:
                    break
                add(item.group(1))
                position = item.end()

        return tuple(ListUtils.deduplicate_list(found))
