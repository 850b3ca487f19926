"""Shaped execution results."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sluice.compiler.plan import PaginationInfo, StatementPlan


@dataclass(frozen=True)
class ShapedResult:
    """Result as stored in the query cache.

    Rows are shared by every caller that reads the entry, so callers receive
    copies through ``ExecutionResult``.
    """

    rows: List[Dict[str, Any]]
    columns: List[str]
    rows_affected: int = 0
    last_row_id: Optional[int] = None
    pagination: Optional[PaginationInfo] = None
    execution_time: float = 0.0


@dataclass
class ExecutionResult:
    """Outcome of one execution, as returned to the caller.

    Attributes:
        rows: Result rows as column to value mappings
        columns: Column names in result order
        rows_affected: Rows changed by a mutation
        last_row_id: Row id of the last inserted row, when known
        pagination: Page metadata for paginated plans
        plan: Plan that produced the result
        cache: ``hit``, ``joined``, ``miss``, ``bypass`` or ``skipped``
        execution_time: Seconds spent in the backing store
        states: States the execution visited
        retries: Transient failures retried
        invalidated: Cache entries dropped because of this mutation
    """

    rows: List[Dict[str, Any]]
    columns: List[str]
    plan: StatementPlan
    rows_affected: int = 0
    last_row_id: Optional[int] = None
    pagination: Optional[PaginationInfo] = None
    cache: str = "skipped"
    execution_time: float = 0.0
    states: List[str] = field(default_factory=list)
    retries: int = 0
    invalidated: int = 0
    execution_id: Optional[str] = None

    @classmethod
    def from_shaped(cls, shaped: ShapedResult, plan: StatementPlan, **extra: Any) -> "ExecutionResult":
        return cls(
            rows=[dict(row) for row in shaped.rows],
            columns=list(shaped.columns),
            plan=plan,
            rows_affected=shaped.rows_affected,
            last_row_id=shaped.last_row_id,
            pagination=shaped.pagination,
            execution_time=shaped.execution_time,
            **extra,
        )

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def metadata(self) -> Dict[str, Any]:
        """Execution details for the response envelope."""
        meta: Dict[str, Any] = {
            "execution_id": self.execution_id,
            "row_count": self.row_count,
            "columns": list(self.columns),
            "cache": self.cache,
            "execution_time_ms": round(self.execution_time * 1000, 3),
            "states": list(self.states),
            "retries": self.retries,
            "plan": self.plan.describe(),
        }
        if self.pagination is not None:
            meta["pagination"] = self.pagination.to_dict()
        if self.plan.is_mutation:
            meta["rows_affected"] = self.rows_affected
            meta["last_row_id"] = self.last_row_id
            meta["invalidated"] = self.invalidated
        if "degraded" in self.plan.notes:
            meta["degraded"] = self.plan.notes["degraded"]
        return meta
