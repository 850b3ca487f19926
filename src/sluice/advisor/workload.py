"""Workload tracking for index recommendations.

The compiler reports the filter and ordering columns of every select it
builds. The tracker keeps bounded per-table counters of those columns and of
the column sets filtered together.
"""

from collections import Counter, OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sluice.logging import get_logger


@dataclass
class TableWorkload:
    """Observed column usage for one table."""

    filters: Counter = field(default_factory=Counter)
    orders: Counter = field(default_factory=Counter)
    # sorted column tuple -> times filtered together
    combinations: "OrderedDict[Tuple[str, ...], int]" = field(default_factory=OrderedDict)
    statements: int = 0

    def frequency(self, column: str) -> float:
        """Filter uses plus half the ordering uses."""
        return self.filters[column] + 0.5 * self.orders[column]

    def columns(self) -> List[str]:
        return sorted(set(self.filters) | set(self.orders))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "statements": self.statements,
            "filters": dict(self.filters),
            "orders": dict(self.orders),
            "combinations": [
                {"columns": list(columns), "count": count} for columns, count in self.combinations.items()
            ],
        }


class WorkloadTracker:
    """Bounded per-table column usage counters.

    At most ``capacity`` distinct columns and column sets are kept per table;
    when full, the least used entry is forgotten.
    """

    def __init__(self, capacity: int = 256) -> None:
        self.capacity = capacity
        self._tables: Dict[str, TableWorkload] = {}
        self.logger = get_logger("sluice.advisor.workload")

    def record(
        self,
        table: str,
        *,
        filter_columns: Sequence[str] = (),
        order_columns: Sequence[str] = (),
    ) -> None:
        filters = sorted(set(filter_columns))
        orders = sorted(set(order_columns))
        if not filters and not orders:
            return

        workload = self._tables.setdefault(table.lower(), TableWorkload())
        workload.statements += 1
        workload.filters.update(filters)
        workload.orders.update(orders)
        self._trim_counter(workload.filters)
        self._trim_counter(workload.orders)

        if len(filters) > 1:
            key = tuple(filters)
            workload.combinations[key] = workload.combinations.get(key, 0) + 1
            workload.combinations.move_to_end(key)
            if len(workload.combinations) > self.capacity:
                least = min(workload.combinations, key=workload.combinations.__getitem__)
                del workload.combinations[least]

    def _trim_counter(self, counter: Counter) -> None:
        while len(counter) > self.capacity:
            least = min(counter, key=counter.__getitem__)
            del counter[least]
            self.logger.debug("Workload column forgotten", column=least)

    def workload(self, table: str) -> TableWorkload:
        """Return a snapshot of the usage observed for ``table``."""
        current = self._tables.get(table.lower())
        if current is None:
            return TableWorkload()
        return TableWorkload(
            filters=Counter(current.filters),
            orders=Counter(current.orders),
            combinations=OrderedDict(current.combinations),
            statements=current.statements,
        )

    def tables(self) -> List[str]:
        return sorted(self._tables)

    def reset(self, table: Optional[str] = None) -> None:
        if table is None:
            self._tables.clear()
        else:
            self._tables.pop(table.lower(), None)

    def get_stats(self) -> Dict[str, Any]:
        return {table: workload.to_dict() for table, workload in self._tables.items()}
