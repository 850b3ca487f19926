"""Log handlers for the Sluice logging system.

Classes:
    ConsoleHandler: Console output with stderr routing for errors
    RotatingFileHandler: Size-based rotation with optional gzip compression
"""

import gzip
import logging
import logging.handlers
import os
import shutil
import sys
from pathlib import Path
from typing import Dict, Optional, Union


class ConsoleHandler(logging.StreamHandler):
    """Console handler that sends ERROR and above to stderr.

    Colors are applied only when the stream is a terminal that supports
    them and ``NO_COLOR`` is unset.
    """

    def __init__(
        self,
        *,
        use_stderr_for_errors: bool = True,
        colors: bool = True,
        color_map: Optional[Dict[str, str]] = None,
    ) -> None:
        super().__init__(sys.stdout)
        self.use_stderr_for_errors = use_stderr_for_errors
        self.colors = colors and self._supports_color()
        self.color_map = color_map or {
            "DEBUG": "\033[36m",
            "INFO": "\033[32m",
            "WARNING": "\033[33m",
            "ERROR": "\033[31m",
            "CRITICAL": "\033[35m",
            "RESET": "\033[0m",
        }

    def _supports_color(self) -> bool:
        if not (hasattr(sys.stdout, "isatty") and sys.stdout.isatty()):
            return False
        if os.environ.get("NO_COLOR"):
            return False
        if os.environ.get("FORCE_COLOR"):
            return True
        term = os.environ.get("TERM", "")
        return "color" in term or term in ("xterm", "xterm-256color", "screen")

    def emit(self, record: logging.LogRecord) -> None:
        if self.use_stderr_for_errors and record.levelno >= logging.ERROR:
            original_stream = self.stream
            self.stream = sys.stderr
            try:
                super().emit(record)
            finally:
                self.stream = original_stream
        else:
            super().emit(record)

    def format(self, record: logging.LogRecord) -> str:
        formatted = super().format(record)
        if self.colors and record.levelname in self.color_map:
            formatted = f"{self.color_map[record.levelname]}{formatted}{self.color_map['RESET']}"
        return formatted


class RotatingFileHandler(logging.handlers.RotatingFileHandler):
    """Rotating file handler that creates parent directories.

    With ``compress_rotated`` enabled, rotated files are written as
    ``<name>.N.gz``.
    """

    def __init__(
        self,
        filename: Union[str, Path],
        *,
        maxBytes: int = 10485760,
        backupCount: int = 5,
        encoding: str = "utf-8",
        delay: bool = False,
        compress_rotated: bool = False,
    ) -> None:
        filename_path = Path(filename)
        filename_path.parent.mkdir(parents=True, exist_ok=True)

        super().__init__(
            str(filename_path),
            maxBytes=maxBytes,
            backupCount=backupCount,
            encoding=encoding,
            delay=delay,
        )
        if compress_rotated:
            self.namer = self._gzip_namer
            self.rotator = self._gzip_rotator

    @staticmethod
    def _gzip_namer(name: str) -> str:
        return name + ".gz"

    @staticmethod
    def _gzip_rotator(source: str, dest: str) -> None:
        with open(source, "rb") as f_in, gzip.open(dest, "wb") as f_out:
            shutil.copyfileobj(f_in, f_out)
        os.remove(source)
