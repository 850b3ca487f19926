"""Single-flight de-duplication of concurrent computations.

The first caller for a key becomes the leader and runs the computation;
callers arriving while it runs join it and receive the same outcome.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Hashable, Tuple

from sluice.core.exceptions import CacheComputeFailure, ErrorCodes


class SingleFlight:
    """Collapses concurrent calls for the same key into one computation.

    Joiners wait through ``asyncio.shield``: a cancelled joiner stops waiting
    without affecting the leader or the other joiners. If the leader's
    computation fails, every joiner receives the same exception. If the
    leader itself is cancelled, joiners fail with ``CacheComputeFailure``.

    Example:
        >>> flight = SingleFlight()
        >>> value, shared = await flight.do("people:1", load_person)
    """

    def __init__(self) -> None:
        self._calls: Dict[Hashable, asyncio.Future] = {}
        self.joins = 0

    @property
    def in_flight(self) -> int:
        return len(self._calls)

    def is_running(self, key: Hashable) -> bool:
        return key in self._calls

    async def do(self, key: Hashable, fn: Callable[[], Awaitable[Any]]) -> Tuple[Any, bool]:
        """Run ``fn`` for ``key`` unless a run is already in flight.

        Returns:
            The computed value and whether it was shared from another caller

        Raises:
            CacheComputeFailure: If the leader was cancelled before finishing
        """
        existing = self._calls.get(key)
        if existing is not None:
            self.joins += 1
            return await asyncio.shield(existing), True

        future = asyncio.get_running_loop().create_future()
        self._calls[key] = future
        try:
            value = await fn()
        except asyncio.CancelledError:
            self._fail(
                future,
                CacheComputeFailure(
                    "Shared computation was cancelled",
                    code=ErrorCodes.CACHE_COMPUTE_FAILED,
                    context={"key": str(key)},
                ),
            )
            raise
        except BaseException as e:
            self._fail(future, e)
            raise
        else:
            future.set_result(value)
            return value, False
        finally:
            if self._calls.get(key) is future:
                del self._calls[key]

    @staticmethod
    def _fail(future: asyncio.Future, exc: BaseException) -> None:
        future.set_exception(exc)
        # Mark retrieved so a run without joiners does not log a warning.
        future.exception()
