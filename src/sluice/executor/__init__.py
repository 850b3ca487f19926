"""Plan execution: state machine, results, streaming and response envelopes."""

from .context import ExecutionContext, ExecutionState, InvalidTransitionError
from .executor import QueryExecutor
from .responses import Response
from .results import ExecutionResult, ShapedResult
from .streaming import BatchStream

__all__ = [
    "BatchStream",
    "ExecutionContext",
    "ExecutionResult",
    "ExecutionState",
    "InvalidTransitionError",
    "QueryExecutor",
    "Response",
    "ShapedResult",
]
