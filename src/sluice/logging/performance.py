"""Performance logging for Sluice operations.

This module times statement execution, catalog loads and advisor runs, and
aggregates the timings per operation for the engine's health report.

Classes:
    TimingMetrics: One timing measurement
    PerformanceMetrics: Aggregated metrics for an operation
    TimingContext: Context manager for operation timing
    PerformanceLogger: Main performance logging interface

Example:
    >>> perf_logger = PerformanceLogger("executor")
    >>> with perf_logger.measure("statement", cost_class="point") as timer:
    ...     rows = await backend.execute(conn, sql, params)
    >>> timer.duration_ms
    0.82
"""

import statistics
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Generator, Optional

from sluice.core.utils import FormatUtils
from .structured import StructuredLogger

# Durations kept per operation for percentile calculation.
DURATION_WINDOW = 1000


@dataclass
class TimingMetrics:
    """Metrics for a single timing measurement."""

    operation: str
    start_time: float
    end_time: Optional[float] = None
    duration: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    success: bool = True
    error: Optional[str] = None

    def complete(self, success: bool = True, error: Optional[str] = None) -> None:
        self.end_time = time.perf_counter()
        self.duration = self.end_time - self.start_time
        self.success = success
        self.error = error

    @property
    def duration_ms(self) -> Optional[float]:
        return self.duration * 1000 if self.duration is not None else None

    @property
    def is_complete(self) -> bool:
        return self.end_time is not None


@dataclass
class PerformanceMetrics:
    """Aggregated performance metrics for an operation.

    Percentiles are computed over the most recent ``DURATION_WINDOW``
    measurements; counters and totals cover every measurement.
    """

    operation: str
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    total_duration: float = 0.0
    min_duration: Optional[float] = None
    max_duration: Optional[float] = None
    avg_duration: Optional[float] = None
    median_duration: Optional[float] = None
    p95_duration: Optional[float] = None
    last_error: Optional[str] = None
    _durations: Deque[float] = field(
        default_factory=lambda: deque(maxlen=DURATION_WINDOW), repr=False
    )

    def add_timing(self, timing: TimingMetrics) -> None:
        if not timing.is_complete or timing.duration is None:
            return

        self.total_calls += 1
        if timing.success:
            self.successful_calls += 1
        else:
            self.failed_calls += 1
            self.last_error = timing.error

        duration = timing.duration
        self.total_duration += duration
        self._durations.append(duration)

        if self.min_duration is None or duration < self.min_duration:
            self.min_duration = duration
        if self.max_duration is None or duration > self.max_duration:
            self.max_duration = duration

        self.avg_duration = self.total_duration / self.total_calls
        self.median_duration = statistics.median(self._durations)
        # Only meaningful with enough samples
        if len(self._durations) >= 20:
            ordered = sorted(self._durations)
            self.p95_duration = ordered[int(len(ordered) * 0.95)]

    @property
    def success_rate(self) -> float:
        """Success rate as a percentage (0-100)."""
        if self.total_calls == 0:
            return 0.0
        return (self.successful_calls / self.total_calls) * 100

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "total_calls": self.total_calls,
            "successful_calls": self.successful_calls,
            "failed_calls": self.failed_calls,
            "success_rate": self.success_rate,
            "total_duration": self.total_duration,
            "min_duration": self.min_duration,
            "max_duration": self.max_duration,
            "avg_duration": self.avg_duration,
            "median_duration": self.median_duration,
            "p95_duration": self.p95_duration,
            "last_error": self.last_error,
        }


class TimingContext:
    """Context manager for measuring operation timing.

    Example:
        >>> with TimingContext("catalog_load") as timer:
        ...     info = await backend.describe_table(conn, "people")
        >>> timer.duration_ms
    """

    def __init__(
        self,
        operation: str,
        logger: Optional[StructuredLogger] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.operation = operation
        self.logger = logger
        self.metadata = metadata or {}
        self._timing: Optional[TimingMetrics] = None

    @property
    def timing(self) -> Optional[TimingMetrics]:
        return self._timing

    @property
    def duration(self) -> Optional[float]:
        """Duration in seconds, or None before the block completes."""
        return self._timing.duration if self._timing else None

    @property
    def duration_ms(self) -> Optional[float]:
        return self._timing.duration_ms if self._timing else None

    def __enter__(self) -> "TimingContext":
        self._timing = TimingMetrics(
            operation=self.operation,
            start_time=time.perf_counter(),
            metadata=self.metadata,
        )
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._timing is None:
            return

        success = exc_type is None
        error = str(exc_val) if exc_val else None
        self._timing.complete(success=success, error=error)

        if self.logger is None:
            return
        if success:
            self.logger.debug(
                "Operation completed",
                operation=self.operation,
                duration_ms=self._timing.duration_ms,
                **self.metadata,
            )
        else:
            self.logger.warning(
                "Operation failed",
                operation=self.operation,
                duration_ms=self._timing.duration_ms,
                error=error,
                error_type=exc_type.__name__,
                **self.metadata,
            )


class PerformanceLogger:
    """Performance logger aggregating timings per operation.

    Example:
        >>> perf_logger = PerformanceLogger("executor")
        >>> with perf_logger.measure("statement"):
        ...     ...
        >>> perf_logger.get_summary()["total_calls"]
        1
    """

    def __init__(
        self,
        name: str,
        *,
        auto_log: bool = True,
        track_metrics: bool = True,
        logger: Optional[StructuredLogger] = None,
    ) -> None:
        """Initialize performance logger.

        Args:
            name: Logger name
            auto_log: Whether to log each completed timing
            track_metrics: Whether to aggregate timings
            logger: Custom structured logger instance
        """
        self.name = name
        self.auto_log = auto_log
        self.track_metrics = track_metrics
        self.logger = logger or StructuredLogger(f"perf.{name}")
        self._metrics: Dict[str, PerformanceMetrics] = {}

    @contextmanager
    def measure(self, operation: str, **metadata: Any) -> Generator[TimingContext, None, None]:
        """Measure the enclosed block as one call of ``operation``."""
        timing_context = TimingContext(
            operation=operation,
            logger=self.logger if self.auto_log else None,
            metadata=metadata,
        )
        try:
            with timing_context as ctx:
                yield ctx
        finally:
            if self.track_metrics and timing_context.timing:
                self._add_timing_to_metrics(timing_context.timing)

    def _add_timing_to_metrics(self, timing: TimingMetrics) -> None:
        metrics = self._metrics.get(timing.operation)
        if metrics is None:
            metrics = self._metrics[timing.operation] = PerformanceMetrics(operation=timing.operation)
        metrics.add_timing(timing)

    def record_timing(
        self,
        operation: str,
        duration: float,
        success: bool = True,
        error: Optional[str] = None,
        **metadata: Any,
    ) -> None:
        """Record a timing measured elsewhere."""
        timing = TimingMetrics(
            operation=operation,
            start_time=time.perf_counter() - duration,
            metadata=metadata,
        )
        timing.complete(success=success, error=error)
        timing.duration = duration

        if self.track_metrics:
            self._add_timing_to_metrics(timing)

    def get_metrics(self, operation: str) -> PerformanceMetrics:
        return self._metrics.get(operation, PerformanceMetrics(operation=operation))

    def reset_metrics(self, operation: Optional[str] = None) -> None:
        if operation:
            self._metrics.pop(operation, None)
        else:
            self._metrics.clear()

    def get_summary(self) -> Dict[str, Any]:
        """Get performance summary across all operations."""
        total_calls = sum(m.total_calls for m in self._metrics.values())
        total_successful = sum(m.successful_calls for m in self._metrics.values())
        total_duration = sum(m.total_duration for m in self._metrics.values())

        return {
            "total_operations": len(self._metrics),
            "total_calls": total_calls,
            "total_duration": total_duration,
            "overall_success_rate": (total_successful / total_calls * 100) if total_calls else 0.0,
            "operations": {name: metrics.to_dict() for name, metrics in self._metrics.items()},
        }

    def log_performance_summary(self) -> None:
        summary = self.get_summary()
        self.logger.info(
            "Performance summary",
            total_operations=summary["total_operations"],
            total_calls=summary["total_calls"],
            total_duration=FormatUtils.format_duration(summary["total_duration"]),
            overall_success_rate=f"{summary['overall_success_rate']:.1f}%",
        )

    def __repr__(self) -> str:
        return (
            f"PerformanceLogger("
            f"name={self.name!r}, "
            f"operations={len(self._metrics)}, "
            f"auto_log={self.auto_log})"
        )
