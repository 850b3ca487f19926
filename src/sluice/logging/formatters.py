"""Log formatters for the Sluice logging system.

Structured fields from structlog arrive on the stdlib ``LogRecord`` as extra
attributes; both formatters render them alongside the message.

Classes:
    JSONFormatter: One JSON object per line for log aggregation
    TextFormatter: Human-readable single-line text

Example:
    >>> handler.setFormatter(get_formatter("json"))
"""

import json
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

# Attributes every LogRecord carries; anything else is a structured field.
STANDARD_RECORD_FIELDS = frozenset({
    "name", "msg", "args", "levelname", "levelno", "pathname",
    "filename", "module", "lineno", "funcName", "created",
    "msecs", "relativeCreated", "thread", "threadName",
    "processName", "process", "message", "exc_info", "exc_text",
    "stack_info", "taskName",
})


def extra_fields(record: logging.LogRecord, exclude: Iterable[str] = ()) -> Dict[str, Any]:
    """Return the structured fields attached to a record."""
    skip = STANDARD_RECORD_FIELDS.union(exclude)
    return {key: value for key, value in record.__dict__.items() if key not in skip}


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured log output.

    Example:
        {"message":"Statement executed","timestamp":"2026-03-02T10:30:45.123456",
         "level":"INFO","logger":"sluice.executor","state":"COMPLETED",
         "duration_ms":3.2}
    """

    def __init__(
        self,
        *,
        timestamp_format: str = "iso",
        include_location: bool = False,
        exclude_fields: Optional[list] = None,
    ) -> None:
        """Initialize JSON formatter.

        Args:
            timestamp_format: Timestamp format ("iso" or "unix")
            include_location: Include module, function and line number
            exclude_fields: Fields to drop from output
        """
        super().__init__()
        self.timestamp_format = timestamp_format
        self.include_location = include_location
        self.exclude_fields = set(exclude_fields or [])

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {"message": record.getMessage()}

        if self.timestamp_format == "unix":
            log_data["timestamp"] = record.created
        else:
            log_data["timestamp"] = datetime.fromtimestamp(record.created).isoformat()

        log_data["level"] = record.levelname
        log_data["logger"] = record.name

        if self.include_location:
            log_data["module"] = record.module
            log_data["function"] = record.funcName
            log_data["line"] = record.lineno

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info),
            }

        log_data.update(extra_fields(record))

        for key in self.exclude_fields:
            log_data.pop(key, None)

        try:
            return json.dumps(log_data, default=str, separators=(",", ":"))
        except (TypeError, ValueError) as e:
            return json.dumps({
                "message": record.getMessage(),
                "level": record.levelname,
                "timestamp": datetime.fromtimestamp(record.created).isoformat(),
                "error": f"JSON serialization failed: {e}",
            })


class TextFormatter(logging.Formatter):
    """Human-readable text formatter.

    Example:
        2026-03-02 10:30:45.123 [INFO] sluice.pool: Connection acquired (active=3, idle=1)
    """

    COLOR_CODES = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
        "RESET": "\033[0m",
    }

    def __init__(
        self,
        *,
        include_extras: bool = True,
        colors: bool = False,
        max_line_length: Optional[int] = None,
    ) -> None:
        super().__init__()
        self.include_extras = include_extras
        self.colors = colors
        self.max_line_length = max_line_length

    def format(self, record: logging.LogRecord) -> str:
        dt = datetime.fromtimestamp(record.created)
        parts = [dt.strftime("%Y-%m-%d %H:%M:%S.") + f"{dt.microsecond:06d}"[:3]]

        level = record.levelname
        if self.colors and level in self.COLOR_CODES:
            parts.append(f"{self.COLOR_CODES[level]}[{level}]{self.COLOR_CODES['RESET']}")
        else:
            parts.append(f"[{level}]")

        parts.append(f"{record.name}:")
        parts.append(record.getMessage())

        if self.include_extras:
            extras = [
                f"{key}={value}" if isinstance(value, str) else f"{key}={value!r}"
                for key, value in extra_fields(record).items()
            ]
            if extras:
                parts.append("(" + ", ".join(extras) + ")")

        formatted = " ".join(parts)

        if record.exc_info:
            formatted += "\n" + self.formatException(record.exc_info)

        if self.max_line_length and len(formatted) > self.max_line_length:
            formatted = formatted[:self.max_line_length - 3] + "..."

        return formatted


def get_formatter(format_type: str, **kwargs: Any) -> logging.Formatter:
    """Get formatter instance by type.

    Args:
        format_type: Formatter type ('json' or 'text')
        **kwargs: Additional formatter arguments

    Raises:
        ValueError: If format_type is not supported
    """
    format_type = format_type.lower()
    if format_type == "json":
        return JSONFormatter(**kwargs)
    if format_type == "text":
        return TextFormatter(**kwargs)
    raise ValueError(f"Unsupported formatter type: {format_type}")
