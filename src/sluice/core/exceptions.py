"""Sluice exception hierarchy.

This module defines the exception hierarchy for Sluice operations, providing
structured error handling with context and error codes. Every failure that
crosses the public boundary of the engine is one of these types; raw backing
store exceptions are always wrapped.

Classes:
    SluiceException: Base exception for all Sluice operations
    ConfigurationError: Configuration related errors
    ValidationError: Requests rejected before reaching the backing store
    ConnectionError: Connection and pool errors
    StatementError: Errors reported by the backing store for a statement
    CacheError: Query cache errors

Example:
    >>> try:
    ...     await engine.executor.execute(plan)
    ... except PoolExhaustedError as e:
    ...     logger.warning("Pool exhausted", error_code=e.code, context=e.context)
"""

from typing import Any, Dict, Optional


class SluiceException(Exception):
    """Base exception for all Sluice operations.

    Attributes:
        code: Unique error code for categorization
        context: Additional context information about the error
        cause: Original exception that caused this error (if any)
        retryable: Whether a caller may reasonably retry the request

    Example:
        >>> raise SluiceException(
        ...     "Operation failed",
        ...     code="OPERATION_FAILED",
        ...     context={"operation": "execute", "table": "people"}
        ... )
    """

    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        """Initialize Sluice exception.

        Args:
            message: Human-readable error description
            code: Unique error code for categorization (defaults to class name)
            context: Additional context information
            cause: Original exception that caused this error
        """
        super().__init__(message)
        self.message: str = message
        self.code: str = code or self.__class__.__name__
        self.context: Dict[str, Any] = context or {}
        self.cause: Optional[BaseException] = cause

    def __str__(self) -> str:
        """Return formatted error message with code."""
        return f"{self.code}: {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code!r}, "
            f"context={self.context!r}, "
            f"cause={self.cause!r})"
        )

    def public_message(self) -> str:
        """Return the message that may be shown to a caller.

        Context and cause are kept out of the public message; they are
        available through ``to_dict`` for logging.
        """
        return str(self)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for serialization.

        Returns:
            Dictionary representation of the exception
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "context": self.context,
            "retryable": self.retryable,
            "cause": str(self.cause) if self.cause else None,
        }


class ConfigurationError(SluiceException):
    """Configuration related errors.

    Raised when configuration is invalid, missing, or cannot be processed.
    """
    pass


class ValidationError(SluiceException):
    """Request validation errors.

    Raised when a request is rejected before any statement reaches the
    backing store. No connection is acquired for a request that fails
    validation.
    """
    pass


class UnknownTableError(ValidationError):
    """Raised when a table does not exist in the schema catalog."""
    pass


class UnknownColumnError(ValidationError):
    """Raised when a column does not exist on the referenced table."""
    pass


class InvalidOperatorError(ValidationError):
    """Raised when a filter operator is outside the allow-list."""
    pass


class InvalidSortError(ValidationError):
    """Raised when a sort direction is not ASC or DESC."""
    pass


class ConflictingPaginationError(ValidationError):
    """Raised when raw SQL already carries LIMIT/OFFSET and pagination is requested."""
    pass


class UnscopedMutationError(ValidationError):
    """Raised when UPDATE or DELETE has no condition and is not forced."""
    pass


class InvalidCommandError(ValidationError):
    """Raised when a structured command or raw statement is malformed."""
    pass


class InvalidPaginationError(ValidationError):
    """Raised when page or page size is out of range."""
    pass


class UnindexedRangeError(ValidationError):
    """Raised when an ordered range search targets an unindexed column.

    Only raised when the unindexed range policy is ``fail``.
    """
    pass


class IndexDefinitionError(ValidationError):
    """Raised when an index create or drop request is invalid."""
    pass


class ConnectionError(SluiceException):
    """Connection related errors.

    Base class for backing store connection and pool problems.
    """
    pass


class DatabaseConnectionError(ConnectionError):
    """Raised when a connection to the backing store cannot be established."""
    pass


class ConnectionPoolError(ConnectionError):
    """Connection pool management errors."""
    pass


class PoolExhaustedError(ConnectionPoolError):
    """Raised when no connection becomes available within the acquire timeout."""

    retryable = True


class TransientConnectionError(ConnectionError):
    """Connection-level failure that may succeed on a fresh connection.

    The executor retries a statement once on a new connection when this is
    raised, and discards the failed connection.
    """

    retryable = True


class StatementError(SluiceException):
    """Statement execution errors.

    Raised when the backing store rejects a statement. The backing store's
    message is surfaced unchanged; statement errors are never retried
    automatically.
    """

    def public_message(self) -> str:
        return self.message


class StatementTimeoutError(StatementError):
    """Raised when a statement exceeds the configured statement timeout."""

    def public_message(self) -> str:
        return str(self)


class CacheError(SluiceException):
    """Query cache errors."""
    pass


class CacheComputeFailure(CacheError):
    """Raised to single-flight joiners when the shared computation was abandoned."""
    pass


class ErrorCodes:
    """Common error codes for Sluice exceptions."""

    # Configuration errors
    CONFIG_NOT_FOUND = "CONFIG_NOT_FOUND"
    CONFIG_INVALID = "CONFIG_INVALID"

    # Validation errors
    UNKNOWN_TABLE = "UNKNOWN_TABLE"
    UNKNOWN_COLUMN = "UNKNOWN_COLUMN"
    INVALID_OPERATOR = "INVALID_OPERATOR"
    INVALID_SORT = "INVALID_SORT"
    CONFLICTING_PAGINATION = "CONFLICTING_PAGINATION"
    UNSCOPED_MUTATION = "UNSCOPED_MUTATION"
    INVALID_COMMAND = "INVALID_COMMAND"
    INVALID_PAGINATION = "INVALID_PAGINATION"
    UNINDEXED_RANGE = "UNINDEXED_RANGE"
    INVALID_INDEX = "INVALID_INDEX"

    # Connection errors
    CONNECTION_FAILED = "CONNECTION_FAILED"
    CONNECTION_LOST = "CONNECTION_LOST"
    POOL_EXHAUSTED = "POOL_EXHAUSTED"
    POOL_CLOSED = "POOL_CLOSED"

    # Statement errors
    STATEMENT_FAILED = "STATEMENT_FAILED"
    STATEMENT_TIMEOUT = "STATEMENT_TIMEOUT"
    METADATA_EXTRACTION_FAILED = "METADATA_EXTRACTION_FAILED"

    # Cache errors
    CACHE_COMPUTE_FAILED = "CACHE_COMPUTE_FAILED"

    # Generic
    INTERNAL_ERROR = "INTERNAL_ERROR"


def create_error_from_exception(
    exc: BaseException,
    message: Optional[str] = None,
    code: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None,
) -> SluiceException:
    """Create a Sluice exception from a generic exception.

    Args:
        exc: Original exception to convert
        message: Override message (uses original if not provided)
        code: Error code to assign
        context: Additional context information

    Returns:
        Appropriate Sluice exception type
    """
    if isinstance(exc, SluiceException):
        return exc

    exception_mapping = {
        ConnectionRefusedError: DatabaseConnectionError,
        FileNotFoundError: ConfigurationError,
        ValueError: ValidationError,
        TypeError: ValidationError,
    }
    exception_class = exception_mapping.get(type(exc), SluiceException)

    return exception_class(
        message or str(exc),
        code=code or ErrorCodes.INTERNAL_ERROR,
        context=context or {},
        cause=exc,
    )
