"""Index recommendations and index management."""

from .advisor import IndexAdvisor, IndexRecommendation, default_index_name
from .workload import TableWorkload, WorkloadTracker

__all__ = [
    "IndexAdvisor",
    "IndexRecommendation",
    "TableWorkload",
    "WorkloadTracker",
    "default_index_name",
]
