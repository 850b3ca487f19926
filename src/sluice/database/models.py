"""Backing store data models.

Plain dataclasses exchanged between backing stores, the pool, the schema
catalog and the executor.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

TEXT_TYPE_MARKERS = ("CHAR", "CLOB", "TEXT")


@dataclass
class QueryResult:
    """Standardized statement result.

    Reads fill ``rows`` and ``columns``; mutations fill ``rows_affected``
    and, for inserts, ``last_row_id``.
    """

    rows: List[Dict[str, Any]]
    columns: List[str]
    row_count: int
    execution_time: float
    rows_affected: int = 0
    last_row_id: Optional[int] = None
    warnings: List[str] = field(default_factory=list)


@dataclass
class ColumnInfo:
    """Table column information."""

    name: str
    data_type: str
    is_nullable: bool
    default_value: Optional[Any] = None
    # 1-based position within the primary key, 0 when not part of it
    primary_key_position: int = 0

    @property
    def is_primary_key(self) -> bool:
        return self.primary_key_position > 0

    @property
    def is_text(self) -> bool:
        """Whether the declared type has text affinity."""
        declared = (self.data_type or "").upper()
        return any(marker in declared for marker in TEXT_TYPE_MARKERS)


@dataclass
class IndexInfo:
    """Index information.

    ``origin`` is ``created`` for explicit CREATE INDEX statements,
    ``unique`` for indexes backing a UNIQUE constraint and ``primary`` for
    primary key indexes. Only ``created`` indexes may be dropped.
    """

    name: str
    table_name: str
    columns: List[str]
    is_unique: bool = False
    origin: str = "created"
    is_partial: bool = False

    @property
    def is_primary(self) -> bool:
        return self.origin == "primary"

    def covers_prefix(self, columns: Tuple[str, ...]) -> bool:
        """Whether ``columns`` is a leading prefix of this index."""
        return tuple(self.columns[: len(columns)]) == tuple(columns)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "table": self.table_name,
            "columns": list(self.columns),
            "unique": self.is_unique,
            "origin": self.origin,
            "partial": self.is_partial,
        }


@dataclass
class TableInfo:
    """Table information as seen by the schema catalog."""

    name: str
    table_type: str
    columns: List[ColumnInfo]
    indexes: List[IndexInfo] = field(default_factory=list)
    row_count: Optional[int] = None

    def __post_init__(self) -> None:
        self._by_name = {column.name: column for column in self.columns}

    @property
    def column_names(self) -> List[str]:
        return [column.name for column in self.columns]

    @property
    def primary_key(self) -> List[str]:
        """Primary key columns in key order."""
        keyed = [column for column in self.columns if column.is_primary_key]
        return [column.name for column in sorted(keyed, key=lambda c: c.primary_key_position)]

    def get_column(self, name: str) -> Optional[ColumnInfo]:
        return self._by_name.get(name)

    def has_column(self, name: str) -> bool:
        return name in self._by_name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.table_type,
            "columns": [
                {
                    "name": column.name,
                    "type": column.data_type,
                    "nullable": column.is_nullable,
                    "primary_key": column.is_primary_key,
                }
                for column in self.columns
            ],
            "primary_key": self.primary_key,
            "indexes": [index.to_dict() for index in self.indexes],
            "row_count": self.row_count,
        }
