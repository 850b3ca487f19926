"""Structured logging implementation for Sluice.

This module provides structured logging with per-task context and correlation
IDs. Context lives in ``contextvars`` so concurrent requests on one event loop
never see each other's fields.

Classes:
    StructuredLogger: Main structured logging interface
    LogContext: Task-local context for log correlation

Example:
    >>> logger = StructuredLogger("sluice.executor")
    >>> with LogContext.scope(operation="execute_filtered", table="people"):
    ...     logger.info("Plan compiled", cost_class="filtered_scan")
"""

import logging
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Generator, Optional

import structlog

from sluice.core.exceptions import ValidationError

_context_var: ContextVar[Dict[str, Any]] = ContextVar("sluice_log_context", default={})

# Keys that would collide with LogRecord attributes when rendered to stdlib.
_RESERVED_KEYS = frozenset({"message", "msg", "args", "name", "module", "filename", "lineno"})


class LogContext:
    """Task-local context for log correlation and metadata.

    All methods are class-level; every ``StructuredLogger`` reads the same
    context, which follows the current asyncio task.

    Example:
        >>> with LogContext.scope(request_id="req_123"):
        ...     LogContext.get("request_id")
        'req_123'
    """

    @staticmethod
    def get(key: str, default: Any = None) -> Any:
        return _context_var.get().get(key, default)

    @staticmethod
    def get_all() -> Dict[str, Any]:
        return dict(_context_var.get())

    @staticmethod
    def set(key: str, value: Any) -> None:
        updated = dict(_context_var.get())
        updated[key] = value
        _context_var.set(updated)

    @staticmethod
    def clear() -> None:
        _context_var.set({})

    @staticmethod
    @contextmanager
    def scope(**context_data: Any) -> Generator[Dict[str, Any], None, None]:
        """Add context for the duration of a block, restoring it afterwards."""
        updated = dict(_context_var.get())
        updated.update(context_data)
        token = _context_var.set(updated)
        try:
            yield updated
        finally:
            _context_var.reset(token)

    @classmethod
    @contextmanager
    def correlation(cls, correlation_id: Optional[str] = None) -> Generator[str, None, None]:
        """Run a block under a correlation ID, generating one when not given."""
        cid = correlation_id or str(uuid.uuid4())
        with cls.scope(correlation_id=cid):
            yield cid


class StructuredLogger:
    """Structured logger with context management and correlation.

    Every call forwards the message plus task context, bound fields and call
    keyword arguments to structlog.

    Example:
        >>> logger = StructuredLogger("sluice.pool")
        >>> pool_logger = logger.bind(backend="main")
        >>> pool_logger.info("Connection acquired", wait_ms=1.3)
    """

    def __init__(
        self,
        name: str,
        *,
        level: Optional[str] = None,
        bound: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Initialize structured logger.

        Args:
            name: Logger name (typically module name)
            level: Optional level for the underlying stdlib logger
            bound: Fields included in every event from this logger
        """
        self.name = name
        self._logger = structlog.get_logger(name)
        self._stdlib_logger = logging.getLogger(name)
        self._bound: Dict[str, Any] = dict(bound or {})
        if level is not None:
            self.set_level(level)

    def _prepare_event_dict(self, **kwargs: Any) -> Dict[str, Any]:
        event_dict: Dict[str, Any] = {"logger": self.name}
        event_dict.update(LogContext.get_all())
        event_dict.update(self._bound)
        event_dict.update(kwargs)
        for key in _RESERVED_KEYS.intersection(event_dict):
            event_dict[f"field_{key}"] = event_dict.pop(key)
        return event_dict

    @contextmanager
    def context(self, **context_data: Any) -> Generator[None, None, None]:
        """Add temporary context to every log event in the block."""
        with LogContext.scope(**context_data):
            yield

    def bind(self, **context_data: Any) -> "StructuredLogger":
        """Return a new logger with additional bound fields."""
        bound = dict(self._bound)
        bound.update(context_data)
        return StructuredLogger(self.name, bound=bound)

    def set_level(self, level: str) -> None:
        """Set logging level.

        Raises:
            ValidationError: If the level name is unknown
        """
        log_level = logging.getLevelName(level.upper())
        if not isinstance(log_level, int):
            raise ValidationError(f"Unknown log level: {level}", code="UNKNOWN_LOG_LEVEL")
        self._stdlib_logger.setLevel(log_level)

    def get_level(self) -> str:
        return logging.getLevelName(self._stdlib_logger.getEffectiveLevel())

    def debug(self, message: str, /, **kwargs: Any) -> None:
        self._logger.debug(message, **self._prepare_event_dict(**kwargs))

    def info(self, message: str, /, **kwargs: Any) -> None:
        self._logger.info(message, **self._prepare_event_dict(**kwargs))

    def warning(self, message: str, /, **kwargs: Any) -> None:
        self._logger.warning(message, **self._prepare_event_dict(**kwargs))

    def error(self, message: str, /, **kwargs: Any) -> None:
        self._logger.error(message, **self._prepare_event_dict(**kwargs))

    def critical(self, message: str, /, **kwargs: Any) -> None:
        self._logger.critical(message, **self._prepare_event_dict(**kwargs))

    def exception(self, message: str, /, **kwargs: Any) -> None:
        """Log an error with the active exception's traceback."""
        self._logger.error(message, exc_info=True, **self._prepare_event_dict(**kwargs))

    def log_operation_start(self, operation: str, **context: Any) -> Dict[str, Any]:
        """Log operation start and return context for completion logging."""
        operation_context = {
            "operation_id": str(uuid.uuid4()),
            "operation": operation,
            "start_time": time.time(),
            **context,
        }
        self.debug("Operation started", **operation_context)
        return operation_context

    def log_operation_success(self, operation_context: Dict[str, Any], **results: Any) -> None:
        duration_ms = (time.time() - operation_context["start_time"]) * 1000
        self.info("Operation completed", duration_ms=duration_ms, **operation_context, **results)

    def log_operation_failure(
        self,
        operation_context: Dict[str, Any],
        error: BaseException,
        **error_context: Any,
    ) -> None:
        duration_ms = (time.time() - operation_context["start_time"]) * 1000
        self.error(
            "Operation failed",
            duration_ms=duration_ms,
            error=str(error),
            error_type=type(error).__name__,
            **operation_context,
            **error_context,
        )

    def get_correlation_id(self) -> Optional[str]:
        return LogContext.get("correlation_id")

    def __repr__(self) -> str:
        return f"StructuredLogger(name={self.name!r}, level={self.get_level()!r})"
