"""System protocols for Sluice collaborators.

Protocols describe the narrow seams between components so that each one can
be constructed and tested with a stand-in for its neighbours.

Protocols:
    WorkloadObserver: Receives the columns used by compiled statements
    MetadataInvalidator: Drops cached schema metadata for a table
"""

from typing import Optional, Protocol, Sequence, runtime_checkable


@runtime_checkable
class WorkloadObserver(Protocol):
    """Receives filter and ordering column usage from compiled statements."""

    def record(
        self,
        table: str,
        *,
        filter_columns: Sequence[str] = (),
        order_columns: Sequence[str] = (),
    ) -> None:
        ...


@runtime_checkable
class MetadataInvalidator(Protocol):
    """Drops cached schema metadata after DDL."""

    def invalidate(self, table: Optional[str] = None) -> None:
        ...
