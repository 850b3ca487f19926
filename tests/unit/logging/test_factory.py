"""Tests for logger factory, formatters and handlers."""

import json
import logging

import pytest

from sluice.core.exceptions import ValidationError
from sluice.logging import (
    ConsoleHandler,
    JSONFormatter,
    LoggerConfig,
    LoggerFactory,
    PerformanceLogger,
    RotatingFileHandler,
    StructuredLogger,
    TextFormatter,
    configure_logging,
    get_factory,
    get_formatter,
    get_logger,
    get_performance_logger,
    shutdown_logging,
)


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="sluice.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=10,
        msg="Statement executed",
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestLoggerFactory:
    """Test cases for LoggerFactory."""

    def test_not_initialized_by_default(self, logger_factory):
        assert logger_factory.initialized is False
        assert logger_factory.config.level == "INFO"

    def test_get_logger_is_cached(self, logger_factory):
        first = logger_factory.get_logger("sluice.pool")

        assert isinstance(first, StructuredLogger)
        assert logger_factory.get_logger("sluice.pool") is first
        assert logger_factory.initialized is False

    def test_get_performance_logger_is_shared(self, logger_factory):
        perf_logger = logger_factory.get_performance_logger("executor")

        assert isinstance(perf_logger, PerformanceLogger)
        assert logger_factory.get_performance_logger("executor") is perf_logger
        assert perf_logger.logger.name == "perf.executor"

    def test_configure_installs_handlers(self, logger_factory, temp_log_file):
        logger_factory.configure(
            LoggerConfig(level="DEBUG", format="text", console_output=True, file_path=str(temp_log_file))
        )

        info = logger_factory.get_logger_info()
        assert info["initialized"] is True
        assert info["handlers"] == ["ConsoleHandler", "RotatingFileHandler"]
        assert logging.getLogger().level == logging.DEBUG

    def test_reconfigure_replaces_handlers(self, logger_factory):
        logger_factory.configure(LoggerConfig(console_output=True))
        logger_factory.configure(LoggerConfig(console_output=True))

        installed = [h for h in logging.getLogger().handlers if isinstance(h, ConsoleHandler)]
        assert len(installed) == 1

    def test_configure_rejects_unknown_level(self, logger_factory):
        with pytest.raises(ValidationError):
            logger_factory.configure(LoggerConfig(level="LOUD"))

        assert logger_factory.initialized is False

    def test_configure_from_config(self, logger_factory, sample_logging_config):
        logger_factory.configure_from_config(sample_logging_config)

        info = logger_factory.get_logger_info()
        assert info["config"]["format"] == "json"
        assert info["config"]["file_path"] == str(sample_logging_config.file_path)
        assert info["handlers"] == ["RotatingFileHandler"]

    def test_events_reach_file_as_json(self, logger_factory, sample_logging_config):
        """Test a configured factory renders structured fields to the log file."""
        logger_factory.configure_from_config(sample_logging_config)
        logger = logger_factory.get_logger("sluice.factory.file")

        logger.info("Cache cleared", entries=12)
        for handler in logging.getLogger().handlers:
            handler.flush()

        lines = sample_logging_config.file_path.read_text().strip().splitlines()
        event = json.loads(lines[-1])
        assert event["message"] == "Cache cleared"
        assert event["entries"] == 12
        assert event["level"] == "INFO"

    def test_shutdown(self, logger_factory):
        logger_factory.configure(LoggerConfig(console_output=True))
        logger_factory.get_logger("sluice.pool")

        logger_factory.shutdown()

        info = logger_factory.get_logger_info()
        assert info["initialized"] is False
        assert info["loggers"] == []
        assert info["handlers"] == []

    def test_repr(self, logger_factory):
        assert "initialized=False" in repr(logger_factory)


class TestGlobalFunctions:
    """Test cases for module-level logging helpers."""

    def test_global_factory_helpers(self):
        logger = get_logger("sluice.global")

        assert get_factory().get_logger("sluice.global") is logger
        assert get_performance_logger("global") is get_factory().get_performance_logger("global")

    def test_configure_logging(self):
        configure_logging(level="WARNING", format="text", console_output=False)

        assert get_factory().initialized is True
        assert logging.getLogger().level == logging.WARNING

        shutdown_logging()
        assert get_factory().initialized is False


class TestFormatters:
    """Test cases for JSON and text formatters."""

    def test_json_formatter_includes_extras(self):
        output = json.loads(JSONFormatter().format(_record(table="people", rows=3)))

        assert output["message"] == "Statement executed"
        assert output["logger"] == "sluice.test"
        assert output["table"] == "people"
        assert output["rows"] == 3

    def test_json_formatter_location_and_exclusions(self):
        formatter = JSONFormatter(include_location=True, exclude_fields=["rows"], timestamp_format="unix")
        output = json.loads(formatter.format(_record(rows=3)))

        assert output["line"] == 10
        assert isinstance(output["timestamp"], float)
        assert "rows" not in output

    def test_json_formatter_exception(self):
        try:
            raise KeyError("missing")
        except KeyError:
            import sys
            record = _record()
            record.exc_info = sys.exc_info()

        output = json.loads(JSONFormatter().format(record))
        assert output["exception"]["type"] == "KeyError"

    def test_text_formatter(self):
        output = TextFormatter().format(_record(table="people"))

        assert "[INFO] sluice.test: Statement executed" in output
        assert "(table=people)" in output

    def test_text_formatter_truncates(self):
        output = TextFormatter(max_line_length=20).format(_record())

        assert len(output) == 20
        assert output.endswith("...")

    def test_get_formatter(self):
        assert isinstance(get_formatter("JSON"), JSONFormatter)
        assert isinstance(get_formatter("text"), TextFormatter)
        with pytest.raises(ValueError):
            get_formatter("xml")


class TestHandlers:
    """Test cases for log handlers."""

    def test_rotating_handler_creates_parent(self, temp_dir):
        path = temp_dir / "nested" / "dir" / "sluice.log"

        handler = RotatingFileHandler(path, maxBytes=1024, backupCount=2)
        handler.close()

        assert path.parent.exists()

    def test_rotating_handler_compresses(self, temp_dir):
        path = temp_dir / "sluice.log"
        handler = RotatingFileHandler(path, maxBytes=200, backupCount=2, compress_rotated=True)
        handler.setFormatter(TextFormatter())

        for _ in range(20):
            handler.emit(_record(padding="x" * 40))
        handler.close()

        assert (temp_dir / "sluice.log.1.gz").exists()
