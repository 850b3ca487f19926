"""Statement plans and pagination.

A ``StatementPlan`` is the compiled, execution-ready form of a request: SQL
text with positional placeholders, the bound parameters in order, and what
the executor needs to know to run it (cost class, whether it mutates, which
tables it touches, and how to count the full result for pagination).
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from sluice.core.exceptions import ErrorCodes, InvalidPaginationError


class CostClass(str, Enum):
    """Rough access path classification of a compiled statement."""

    POINT = "point"
    INDEXED_RANGE = "indexed_range"
    FILTERED_SCAN = "filtered_scan"
    FULL_SCAN = "full_scan"
    MUTATION = "mutation"
    DDL = "ddl"


class StatementKind(str, Enum):
    SELECT = "select"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    DDL = "ddl"
    OTHER = "other"


@dataclass(frozen=True)
class PaginationSpec:
    """Requested page, translated to LIMIT/OFFSET.

    Invariant: ``offset == (page - 1) * page_size``.
    """

    page: int
    page_size: int

    def __post_init__(self) -> None:
        if isinstance(self.page, bool) or not isinstance(self.page, int) or self.page < 1:
            raise InvalidPaginationError(
                f"page must be an integer >= 1, got {self.page!r}",
                code=ErrorCodes.INVALID_PAGINATION,
                context={"page": self.page},
            )
        if isinstance(self.page_size, bool) or not isinstance(self.page_size, int) or self.page_size < 1:
            raise InvalidPaginationError(
                f"page_size must be an integer >= 1, got {self.page_size!r}",
                code=ErrorCodes.INVALID_PAGINATION,
                context={"page_size": self.page_size},
            )

    @property
    def limit(self) -> int:
        return self.page_size

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    def info(self, total_rows: int) -> "PaginationInfo":
        return PaginationInfo.compute(self, total_rows)


@dataclass(frozen=True)
class PaginationInfo:
    """Pagination metadata returned with a page of results."""

    page: int
    page_size: int
    total_rows: int
    total_pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def compute(cls, spec: PaginationSpec, total_rows: int) -> "PaginationInfo":
        total_pages = math.ceil(total_rows / spec.page_size) if total_rows else 0
        return cls(
            page=spec.page,
            page_size=spec.page_size,
            total_rows=total_rows,
            total_pages=total_pages,
            has_next=spec.page < total_pages,
            has_prev=spec.page > 1,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "page": self.page,
            "page_size": self.page_size,
            "total_rows": self.total_rows,
            "total_pages": self.total_pages,
            "has_next": self.has_next,
            "has_prev": self.has_prev,
        }


@dataclass(frozen=True)
class StatementPlan:
    """Immutable compiled statement.

    Attributes:
        sql: Statement text with ``?`` placeholders only
        params: Bound parameter values in placeholder order
        cost_class: Expected access path
        kind: Statement kind
        tables: Tables read or written, used for cache keys and invalidation
        requires_transaction: Whether the statement must be committed
        pagination: Page requested, when the plan returns one page
        count_sql: Statement counting the unpaginated result
        count_params: Parameters for ``count_sql``
        notes: Planner annotations surfaced in response metadata
    """

    sql: str
    params: Tuple[Any, ...] = ()
    cost_class: CostClass = CostClass.FULL_SCAN
    kind: StatementKind = StatementKind.SELECT
    tables: Tuple[str, ...] = ()
    requires_transaction: bool = False
    pagination: Optional[PaginationSpec] = None
    count_sql: Optional[str] = None
    count_params: Tuple[Any, ...] = ()
    notes: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def is_read(self) -> bool:
        return self.kind == StatementKind.SELECT

    @property
    def is_mutation(self) -> bool:
        return self.kind in (StatementKind.INSERT, StatementKind.UPDATE, StatementKind.DELETE, StatementKind.DDL)

    @property
    def is_paginated(self) -> bool:
        return self.pagination is not None

    def cache_shape(self) -> Dict[str, Any]:
        """Everything that determines the result, for cache keys."""
        return {
            "sql": self.sql,
            "params": list(self.params),
            "page": self.pagination.page if self.pagination else None,
            "page_size": self.pagination.page_size if self.pagination else None,
        }

    def describe(self) -> Dict[str, Any]:
        return {
            "cost_class": self.cost_class.value,
            "kind": self.kind.value,
            "tables": list(self.tables),
            "requires_transaction": self.requires_transaction,
            **self.notes,
        }
