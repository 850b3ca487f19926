"""Logger factory and configuration for Sluice.

This module provides centralized logger creation and configuration of the
underlying stdlib and structlog machinery.

Classes:
    LoggerConfig: Configuration for the logging system
    LoggerFactory: Logger creation and configuration manager

Functions:
    configure_logging: Configure logging system globally
    get_logger: Get a structured logger
    get_performance_logger: Get a performance logger

Example:
    >>> from sluice.logging import configure_logging, get_logger
    >>> configure_logging(level="INFO", format="json")
    >>> logger = get_logger(__name__)
    >>> logger.info("Engine started", backend="main")
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import structlog

from sluice.config.models import LoggingConfig
from sluice.core.exceptions import ValidationError
from .formatters import get_formatter
from .handlers import ConsoleHandler, RotatingFileHandler
from .performance import PerformanceLogger
from .structured import StructuredLogger


@dataclass
class LoggerConfig:
    """Configuration for the logging system.

    Attributes:
        level: Log level
        format: Log format (json, text)
        console_output: Enable console output
        file_path: Log file path; file output is enabled when set
        max_file_size: Maximum file size before rotation
        backup_count: Number of backup files to keep
    """

    level: str = "INFO"
    format: str = "json"
    console_output: bool = True
    file_path: Optional[str] = None
    max_file_size: int = 10485760
    backup_count: int = 5


class LoggerFactory:
    """Factory for creating and configuring Sluice loggers.

    Creating loggers never configures the logging system implicitly; call
    ``configure`` (or ``configure_from_config``) once at startup. Until then
    structlog's own defaults apply, which keeps test-time capture intact.

    Example:
        >>> factory = LoggerFactory()
        >>> factory.configure_from_config(engine_config.logging)
        >>> logger = factory.get_logger("sluice.pool")
    """

    def __init__(self, config: Optional[LoggerConfig] = None) -> None:
        self.config = config or LoggerConfig()
        self.initialized = False
        self._handlers: list = []
        self._loggers: Dict[str, StructuredLogger] = {}
        self._performance_loggers: Dict[str, PerformanceLogger] = {}

    def configure_from_config(self, logging_config: LoggingConfig) -> None:
        """Configure factory from a LoggingConfig instance."""
        self.configure(
            LoggerConfig(
                level=logging_config.level,
                format=logging_config.format,
                console_output=logging_config.console_output,
                file_path=str(logging_config.file_path) if logging_config.file_path else None,
                max_file_size=logging_config.max_file_size,
                backup_count=logging_config.backup_count,
            )
        )

    def configure(self, config: LoggerConfig) -> None:
        """Configure stdlib handlers and structlog processors.

        Reconfiguring replaces the handlers this factory installed earlier.

        Raises:
            ValidationError: If the level is unknown
        """
        level = logging.getLevelName(config.level.upper())
        if not isinstance(level, int):
            raise ValidationError(f"Invalid log level: {config.level}", code="UNKNOWN_LOG_LEVEL")

        self.config = config
        self._configure_stdlib_logging(level)
        self._configure_structlog()
        self.initialized = True

    def _configure_stdlib_logging(self, level: int) -> None:
        root_logger = logging.getLogger()
        for handler in self._handlers:
            root_logger.removeHandler(handler)
            handler.close()
        self._handlers = []

        root_logger.setLevel(level)

        if self.config.console_output:
            console_handler = ConsoleHandler()
            console_handler.setLevel(level)
            console_handler.setFormatter(get_formatter(self.config.format))
            self._handlers.append(console_handler)

        if self.config.file_path:
            file_handler = RotatingFileHandler(
                self.config.file_path,
                maxBytes=self.config.max_file_size,
                backupCount=self.config.backup_count,
            )
            file_handler.setLevel(level)
            file_handler.setFormatter(get_formatter(self.config.format))
            self._handlers.append(file_handler)

        for handler in self._handlers:
            root_logger.addHandler(handler)

    def _configure_structlog(self) -> None:
        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                structlog.stdlib.add_logger_name,
                structlog.stdlib.PositionalArgumentsFormatter(),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.UnicodeDecoder(),
                structlog.stdlib.render_to_log_kwargs,
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
            logger_factory=structlog.stdlib.LoggerFactory(),
            context_class=dict,
            cache_logger_on_first_use=True,
        )

    def get_logger(self, name: str) -> StructuredLogger:
        """Get or create a structured logger."""
        logger = self._loggers.get(name)
        if logger is None:
            logger = self._loggers[name] = StructuredLogger(name)
        return logger

    def get_performance_logger(self, name: str, *, auto_log: bool = True) -> PerformanceLogger:
        """Get or create a shared performance logger."""
        perf_logger = self._performance_loggers.get(name)
        if perf_logger is None:
            perf_logger = PerformanceLogger(
                name,
                auto_log=auto_log,
                logger=self.get_logger(f"perf.{name}"),
            )
            self._performance_loggers[name] = perf_logger
        return perf_logger

    def get_logger_info(self) -> Dict[str, Any]:
        return {
            "config": {
                "level": self.config.level,
                "format": self.config.format,
                "console_output": self.config.console_output,
                "file_path": self.config.file_path,
            },
            "initialized": self.initialized,
            "loggers": sorted(self._loggers),
            "performance_loggers": sorted(self._performance_loggers),
            "handlers": [type(handler).__name__ for handler in self._handlers],
        }

    def shutdown(self) -> None:
        """Remove installed handlers and forget cached loggers."""
        root_logger = logging.getLogger()
        for handler in self._handlers:
            root_logger.removeHandler(handler)
            handler.close()
        self._handlers = []
        self._loggers.clear()
        self._performance_loggers.clear()
        self.initialized = False

    def __repr__(self) -> str:
        return (
            f"LoggerFactory("
            f"level={self.config.level!r}, "
            f"format={self.config.format!r}, "
            f"initialized={self.initialized})"
        )


_global_factory = LoggerFactory()


def configure_logging(
    *,
    level: str = "INFO",
    format: str = "json",
    console_output: bool = True,
    file_path: Optional[str] = None,
    **kwargs: Any,
) -> None:
    """Configure the Sluice logging system globally.

    Example:
        >>> configure_logging(level="DEBUG", format="text", file_path="/var/log/sluice.log")
    """
    _global_factory.configure(
        LoggerConfig(
            level=level,
            format=format,
            console_output=console_output,
            file_path=file_path,
            **kwargs,
        )
    )


def get_logger(name: str) -> StructuredLogger:
    """Get or create a structured logger using the global factory."""
    return _global_factory.get_logger(name)


def get_performance_logger(name: str, *, auto_log: bool = True) -> PerformanceLogger:
    """Get or create a performance logger using the global factory."""
    return _global_factory.get_performance_logger(name, auto_log=auto_log)


def get_factory() -> LoggerFactory:
    return _global_factory


def shutdown_logging() -> None:
    _global_factory.shutdown()
