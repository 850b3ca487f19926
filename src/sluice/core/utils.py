"""Utility functions for Sluice operations.

This module provides small helpers shared across the engine: identifier
validation, SQL text handling, hashing and canonical serialization for cache
keys, and duration formatting.

Example:
    >>> StringUtils.quote_identifier('weird"name')
    '"weird""name"'
    >>> FormatUtils.format_duration(0.0042)
    '4.20ms'
"""

import hashlib
import json
import re
from datetime import date, datetime
from decimal import Decimal
from typing import Any, List, TypeVar, Union

T = TypeVar("T")


class ValidationUtils:
    """Utility class for validation operations."""

    IDENTIFIER_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")

    @classmethod
    def validate_identifier(cls, identifier: str, *, allow_empty: bool = False) -> bool:
        """Validate identifier string.

        Args:
            identifier: String to validate as identifier
            allow_empty: Whether to allow empty strings

        Returns:
            True if identifier is valid

        Example:
            >>> ValidationUtils.validate_identifier("idx_people_age")
            True
            >>> ValidationUtils.validate_identifier("123_invalid")
            False
        """
        if not identifier:
            return allow_empty

        return bool(cls.IDENTIFIER_PATTERN.match(identifier))


class StringUtils:
    """Utility class for string and SQL text operations."""

    LIKE_ESCAPE = "\\"

    # String literals, quoted identifiers and comments, in that order.
    _LITERAL_PATTERN = re.compile(
        r"'(?:[^']|'')*'|\"(?:[^\"]|\"\")*\"|--[^\n]*|/\*.*?\*/",
        re.DOTALL,
    )

    @staticmethod
    def quote_identifier(identifier: str) -> str:
        """Quote an identifier with double quotes, doubling embedded quotes."""
        return '"' + identifier.replace('"', '""') + '"'

    @classmethod
    def escape_like(cls, value: str) -> str:
        """Escape LIKE wildcards so the value matches literally.

        Example:
            >>> StringUtils.escape_like("50%_off")
            '50\\\\%\\\\_off'
        """
        esc = cls.LIKE_ESCAPE
        return value.replace(esc, esc + esc).replace("%", esc + "%").replace("_", esc + "_")

    @classmethod
    def strip_sql_literals(cls, sql: str, *, keep_identifiers: bool = False) -> str:
        """Replace string literals, quoted identifiers and comments with blanks.

        Keyword scans over the result cannot be fooled by text inside quotes
        or comments.

        Args:
            sql: Statement text
            keep_identifiers: Leave double-quoted identifiers in place
        """
        def blank(match: "re.Match[str]") -> str:
            token = match.group(0)
            if keep_identifiers and token.startswith('"'):
                return token
            return " "

        return cls._LITERAL_PATTERN.sub(blank, sql)

    @staticmethod
    def compute_hash(text: str, *, algorithm: str = "sha256") -> str:
        """Compute hash of string.

        Args:
            text: String to hash
            algorithm: Hash algorithm to use

        Returns:
            Hex digest of hash
        """
        hasher = hashlib.new(algorithm)
        hasher.update(text.encode("utf-8"))
        return hasher.hexdigest()

    @staticmethod
    def canonical_json(value: Any) -> str:
        """Serialize a value deterministically.

        Mappings are emitted with sorted keys, so two logically identical
        requests serialize identically whatever their key order.
        """
        return json.dumps(value, sort_keys=True, separators=(",", ":"), default=_json_default)


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, bytes):
        return value.hex()
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=repr)
    if isinstance(value, tuple):
        return list(value)
    return repr(value)


class FormatUtils:
    """Utility class for formatting operations."""

    @staticmethod
    def format_duration(seconds: Union[int, float], *, precision: str = "auto") -> str:
        """Format duration into human-readable string.

        Args:
            seconds: Duration in seconds
            precision: Precision level ('auto', 'seconds', 'milliseconds', 'microseconds')

        Returns:
            Formatted duration string

        Example:
            >>> FormatUtils.format_duration(3661)
            '1h 1m 1s'
            >>> FormatUtils.format_duration(0.001)
            '1.00ms'
        """
        if seconds == 0:
            return "0s"

        abs_seconds = abs(seconds)
        sign = "-" if seconds < 0 else ""

        if precision == "auto":
            if abs_seconds >= 1:
                precision = "seconds"
            elif abs_seconds >= 0.001:
                precision = "milliseconds"
            else:
                precision = "microseconds"

        if precision == "microseconds":
            return f"{sign}{abs_seconds * 1_000_000:.2f}μs"
        if precision == "milliseconds":
            return f"{sign}{abs_seconds * 1000:.2f}ms"

        hours = int(abs_seconds // 3600)
        minutes = int((abs_seconds % 3600) // 60)
        secs = abs_seconds % 60

        parts = []
        if hours > 0:
            parts.append(f"{hours}h")
        if minutes > 0:
            parts.append(f"{minutes}m")
        if secs > 0 or not parts:
            if secs == int(secs):
                parts.append(f"{int(secs)}s")
            else:
                parts.append(f"{secs:.2f}s")

        return sign + " ".join(parts)


class ListUtils:
    """Utility class for list operations."""

    @staticmethod
    def deduplicate_list(items: List[T]) -> List[T]:
        """Remove duplicates from a list, keeping first occurrences in order."""
        seen = set()
        result = []
        for item in items:
            if item not in seen:
                seen.add(item)
                result.append(item)
        return result
