"""Sluice structured logging framework.

This package provides structured logging with task-local context, timing
and per-operation performance metrics, and stdlib formatters and handlers.

Example:
    >>> from sluice.logging import get_logger, get_performance_logger
    >>> logger = get_logger(__name__)
    >>> logger.info("Cache cleared", entries=12)
    >>>
    >>> perf_logger = get_performance_logger("executor")
    >>> with perf_logger.measure("statement"):
    ...     pass
"""

from .factory import (
    LoggerConfig,
    LoggerFactory,
    configure_logging,
    get_factory,
    get_logger,
    get_performance_logger,
    shutdown_logging,
)
from .formatters import JSONFormatter, TextFormatter, get_formatter
from .handlers import ConsoleHandler, RotatingFileHandler
from .performance import PerformanceLogger, PerformanceMetrics, TimingContext
from .structured import LogContext, StructuredLogger

__all__ = [
    # Factory and configuration
    "LoggerConfig",
    "LoggerFactory",
    "configure_logging",
    "get_factory",
    "get_logger",
    "get_performance_logger",
    "shutdown_logging",

    # Formatters
    "JSONFormatter",
    "TextFormatter",
    "get_formatter",

    # Handlers
    "ConsoleHandler",
    "RotatingFileHandler",

    # Performance logging
    "PerformanceLogger",
    "PerformanceMetrics",
    "TimingContext",

    # Structured logging
    "LogContext",
    "StructuredLogger",
]
