"""Execution state machine.

Every execution walks a fixed set of states:

    VALIDATING -> CACHE_CHECK -> SHAPING_RESULT                       (hit)
    VALIDATING -> CACHE_CHECK -> ACQUIRING -> EXECUTING
               -> SHAPING_RESULT -> CACHING -> RELEASING              (miss)

and ends in COMPLETED or FAILED. Any state may move to FAILED. A transient
connection failure while EXECUTING moves back to ACQUIRING for one retry on
a fresh connection.
"""

import time
import uuid
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from sluice.core.exceptions import SluiceException
from sluice.compiler.plan import StatementPlan


class ExecutionState(str, Enum):
    VALIDATING = "validating"
    CACHE_CHECK = "cache_check"
    ACQUIRING = "acquiring"
    EXECUTING = "executing"
    SHAPING_RESULT = "shaping_result"
    CACHING = "caching"
    RELEASING = "releasing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATES: FrozenSet[ExecutionState] = frozenset({ExecutionState.COMPLETED, ExecutionState.FAILED})

TRANSITIONS: Dict[ExecutionState, FrozenSet[ExecutionState]] = {
    ExecutionState.VALIDATING: frozenset({ExecutionState.CACHE_CHECK, ExecutionState.ACQUIRING}),
    ExecutionState.CACHE_CHECK: frozenset({ExecutionState.SHAPING_RESULT, ExecutionState.ACQUIRING}),
    ExecutionState.ACQUIRING: frozenset({ExecutionState.EXECUTING}),
    ExecutionState.EXECUTING: frozenset({ExecutionState.SHAPING_RESULT, ExecutionState.ACQUIRING}),
    ExecutionState.SHAPING_RESULT: frozenset(
        {ExecutionState.CACHING, ExecutionState.RELEASING, ExecutionState.COMPLETED}
    ),
    ExecutionState.CACHING: frozenset({ExecutionState.RELEASING, ExecutionState.COMPLETED}),
    ExecutionState.RELEASING: frozenset({ExecutionState.COMPLETED}),
    ExecutionState.COMPLETED: frozenset(),
    ExecutionState.FAILED: frozenset(),
}


class InvalidTransitionError(SluiceException):
    """Raised when the executor attempts a transition the state machine forbids."""
    pass


class ExecutionContext:
    """Tracks one execution through the state machine.

    Attributes:
        execution_id: Short random identifier, also bound to log context
        plan: Plan being executed
        history: States visited, in order, with monotonic timestamps
        retries: Number of transient-failure retries performed
        error: Failure that ended the execution, if any
    """

    def __init__(self, plan: StatementPlan) -> None:
        self.execution_id = uuid.uuid4().hex[:12]
        self.plan = plan
        self.history: List[Tuple[ExecutionState, float]] = [(ExecutionState.VALIDATING, time.monotonic())]
        self.retries = 0
        self.error: Optional[BaseException] = None
        self._started = time.perf_counter()
        self._finished: Optional[float] = None

    @property
    def state(self) -> ExecutionState:
        return self.history[-1][0]

    @property
    def states(self) -> List[str]:
        return [state.value for state, _ in self.history]

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def elapsed(self) -> float:
        end = self._finished if self._finished is not None else time.perf_counter()
        return end - self._started

    def visited(self, state: ExecutionState) -> bool:
        return any(seen == state for seen, _ in self.history)

    def transition(self, target: ExecutionState) -> None:
        """Move to ``target``.

        Raises:
            InvalidTransitionError: If the move is not allowed from the current state
        """
        if target == ExecutionState.FAILED:
            self.fail(None)
            return
        if target not in TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"Invalid execution transition {self.state.value} -> {target.value}",
                code="INVALID_TRANSITION",
                context={"execution_id": self.execution_id, "states": self.states},
            )
        self.history.append((target, time.monotonic()))
        if target in TERMINAL_STATES:
            self._finished = time.perf_counter()

    def fail(self, error: Optional[BaseException]) -> None:
        if self.is_terminal:
            return
        self.error = error
        self.history.append((ExecutionState.FAILED, time.monotonic()))
        self._finished = time.perf_counter()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "execution_id": self.execution_id,
            "states": self.states,
            "retries": self.retries,
            "elapsed_ms": round(self.elapsed * 1000, 3),
        }
