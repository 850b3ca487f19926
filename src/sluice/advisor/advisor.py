"""Index advisor.

Ranks candidate indexes for a table from the observed workload and the
catalog's statistics, and creates, lists and drops indexes through the
query executor.

Scoring:
    benefit = frequency * (0.25 + 0.75 * selectivity) * log10(rows + 10)

where frequency counts filter uses plus half the ordering uses, and
selectivity is distinct values over rows for the candidate's leading column.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sluice.catalog.schema import SchemaCatalog
from sluice.compiler.plan import CostClass, StatementKind, StatementPlan
from sluice.config.models import AdvisorConfig
from sluice.core.exceptions import ErrorCodes, IndexDefinitionError, UnknownTableError
from sluice.core.utils import ValidationUtils
from sluice.database.base import BaseBackingStore
from sluice.database.models import IndexInfo, TableInfo
from sluice.executor.executor import QueryExecutor
from sluice.logging import get_logger, get_performance_logger
from .workload import TableWorkload, WorkloadTracker


@dataclass
class IndexRecommendation:
    """A suggested index. Derived on demand, never persisted."""

    table: str
    columns: Tuple[str, ...]
    benefit: float
    rationale: str
    ddl: str
    redundant: bool = False

    @property
    def is_composite(self) -> bool:
        return len(self.columns) > 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table": self.table,
            "columns": list(self.columns),
            "benefit": self.benefit,
            "rationale": self.rationale,
            "ddl": self.ddl,
            "redundant": self.redundant,
        }


def default_index_name(table: str, columns: Sequence[str]) -> str:
    return f"idx_{table}_{'_'.join(columns)}".lower()


class IndexAdvisor:
    """Recommends and manages indexes.

    Args:
        catalog: Source of indexes, row counts and cardinalities
        executor: Runs index DDL
        backend: Renders index DDL for the backing store
        tracker: Observed column usage
        config: Recommendation limits
    """

    def __init__(
        self,
        catalog: SchemaCatalog,
        executor: QueryExecutor,
        backend: BaseBackingStore,
        tracker: WorkloadTracker,
        config: Optional[AdvisorConfig] = None,
    ) -> None:
        self.catalog = catalog
        self.executor = executor
        self.backend = backend
        self.tracker = tracker
        self.config = config or AdvisorConfig()
        self.logger = get_logger("sluice.advisor")
        self.perf_logger = get_performance_logger("advisor")

    # Recommendations

    async def recommend(
        self,
        table: str,
        limit: Optional[int] = None,
        *,
        include_redundant: bool = False,
    ) -> List[IndexRecommendation]:
        """Rank candidate indexes for ``table``, best first.

        Candidates are the observed single columns and the column sets
        filtered together. A candidate already served by an existing index
        is left out. A composite whose leading column already has its own
        index is flagged redundant and left out unless ``include_redundant``.

        Raises:
            UnknownTableError: If the table does not exist
        """
        info = await self.catalog.get_table(table)
        limit = self.config.max_recommendations if limit is None else min(limit, self.config.max_recommendations)
        if limit < 1:
            return []

        with self.perf_logger.measure("recommend", table=info.name) as timing:
            workload = self.tracker.workload(info.name)
            rows = await self.catalog.row_count(info.name)
            existing = self._existing_indexes(info)

            candidates: List[IndexRecommendation] = []
            for column in workload.columns():
                if not info.has_column(column) or self._covered(existing, (column,)):
                    continue
                candidates.append(await self._score(info, workload, (column,), rows, workload.frequency(column)))

            for combination, together in workload.combinations.items():
                if not all(info.has_column(column) for column in combination):
                    continue
                columns = await self._order_by_cardinality(info.name, combination)
                if self._covered(existing, columns, composite=True):
                    continue
                frequency = together + 0.5 * workload.orders[columns[0]]
                recommendation = await self._score(info, workload, columns, rows, frequency)
                recommendation.redundant = any(index.columns == [columns[0]] for index in existing)
                candidates.append(recommendation)

            ranked = sorted(
                (
                    candidate
                    for candidate in candidates
                    if candidate.benefit >= self.config.min_benefit
                    and (include_redundant or not candidate.redundant)
                ),
                key=lambda candidate: (-candidate.benefit, candidate.columns),
            )[:limit]

        self.logger.debug(
            "Index recommendations computed",
            table=info.name,
            candidates=len(candidates),
            returned=len(ranked),
            duration_ms=timing.duration_ms,
        )
        return ranked

    async def _score(
        self,
        info: TableInfo,
        workload: TableWorkload,
        columns: Tuple[str, ...],
        rows: int,
        frequency: float,
    ) -> IndexRecommendation:
        leading = columns[0]
        distinct = await self.catalog.cardinality(info.name, leading)
        selectivity = distinct / rows if rows else 0.0
        benefit = frequency * (0.25 + 0.75 * selectivity) * math.log10(rows + 10)

        if len(columns) == 1:
            usage = f"filtered {workload.filters[leading]}x, ordered {workload.orders[leading]}x"
        else:
            usage = f"filtered together {workload.combinations.get(tuple(sorted(columns)), 0)}x"
        rationale = f"{', '.join(columns)} {usage}; selectivity {selectivity:.2f} over {rows} rows"

        return IndexRecommendation(
            table=info.name,
            columns=columns,
            benefit=round(benefit, 4),
            rationale=rationale,
            ddl=self.backend.create_index_sql(default_index_name(info.name, columns), info.name, columns),
        )

    async def _order_by_cardinality(self, table: str, columns: Sequence[str]) -> Tuple[str, ...]:
        """Order columns by descending distinct count, ties by name."""
        cardinality = {column: await self.catalog.cardinality(table, column) for column in columns}
        return tuple(sorted(columns, key=lambda column: (-cardinality[column], column)))

    @staticmethod
    def _existing_indexes(info: TableInfo) -> List[IndexInfo]:
        indexes = [index for index in info.indexes if not index.is_partial]
        if info.primary_key and not any(index.is_primary for index in indexes):
            indexes.append(
                IndexInfo(
                    name=f"{info.name}_primary_key",
                    table_name=info.name,
                    columns=info.primary_key,
                    is_unique=True,
                    origin="primary",
                )
            )
        return indexes

    @staticmethod
    def _covered(existing: Sequence[IndexInfo], columns: Tuple[str, ...], *, composite: bool = False) -> bool:
        for index in existing:
            if index.covers_prefix(columns):
                return True
            if composite and set(index.columns) == set(columns):
                return True
        return False

    # Index management

    async def list_indexes(self, table: str) -> List[IndexInfo]:
        """Return the indexes on ``table``, including key-backing ones."""
        return await self.catalog.indexes(table)

    async def create_index(
        self,
        table: str,
        columns: Sequence[str],
        name: Optional[str] = None,
        *,
        unique: bool = False,
    ) -> IndexInfo:
        """Create an index and return its metadata.

        Raises:
            UnknownTableError: If the table does not exist
            UnknownColumnError: If a column is not on the table
            IndexDefinitionError: If the definition is invalid or the name is taken
        """
        info = await self.catalog.get_table(table)
        columns = list(columns or [])
        if not columns:
            raise IndexDefinitionError(
                "An index needs at least one column",
                code=ErrorCodes.INVALID_INDEX,
                context={"table": table},
            )
        if len(set(columns)) != len(columns):
            raise IndexDefinitionError(
                "Index columns must be distinct",
                code=ErrorCodes.INVALID_INDEX,
                context={"table": table, "columns": columns},
            )
        for column in columns:
            await self.catalog.require_column(info.name, column)

        name = name or default_index_name(info.name, columns)
        if not ValidationUtils.validate_identifier(name):
            raise IndexDefinitionError(
                f"Invalid index name: {name!r}",
                code=ErrorCodes.INVALID_INDEX,
                context={"name": name},
            )
        if await self._find_index(name) is not None:
            raise IndexDefinitionError(
                f"Index already exists: {name}",
                code=ErrorCodes.INVALID_INDEX,
                context={"name": name},
            )

        plan = StatementPlan(
            sql=self.backend.create_index_sql(name, info.name, columns, unique=unique),
            cost_class=CostClass.DDL,
            kind=StatementKind.DDL,
            tables=(info.name.lower(),),
            requires_transaction=True,
            notes={"index": name},
        )
        await self.executor.execute(plan, use_cache=False)
        self.catalog.invalidate(info.name)
        self.logger.info("Index created", table=info.name, index=name, columns=columns, unique=unique)

        for index in await self.catalog.indexes(info.name):
            if index.name == name:
                return index
        return IndexInfo(name=name, table_name=info.name, columns=columns, is_unique=unique)

    async def drop_index(self, name: str, table: Optional[str] = None) -> IndexInfo:
        """Drop an index created through ``create_index`` or plain DDL.

        Indexes backing a primary key or UNIQUE constraint cannot be dropped.

        Raises:
            IndexDefinitionError: If the index does not exist or may not be dropped
        """
        found = await self._find_index(name, table)
        if found is None:
            raise IndexDefinitionError(
                f"Unknown index: {name}",
                code=ErrorCodes.INVALID_INDEX,
                context={"name": name, "table": table},
            )
        if found.origin != "created":
            raise IndexDefinitionError(
                f"Index {name} backs a {found.origin} constraint and cannot be dropped",
                code=ErrorCodes.INVALID_INDEX,
                context={"name": name, "origin": found.origin},
            )

        plan = StatementPlan(
            sql=self.backend.drop_index_sql(name),
            cost_class=CostClass.DDL,
            kind=StatementKind.DDL,
            tables=(found.table_name.lower(),),
            requires_transaction=True,
            notes={"index": name},
        )
        await self.executor.execute(plan, use_cache=False)
        self.catalog.invalidate(found.table_name)
        self.logger.info("Index dropped", table=found.table_name, index=name)
        return found

    async def _find_index(self, name: str, table: Optional[str] = None) -> Optional[IndexInfo]:
        if table is not None:
            tables = [table]
        else:
            tables = await self.catalog.list_tables()
        for candidate in tables:
            try:
                indexes = await self.catalog.indexes(candidate)
            except UnknownTableError:
                if table is not None:
                    raise
                continue
            for index in indexes:
                if index.name.lower() == name.lower():
                    return index
        return None
