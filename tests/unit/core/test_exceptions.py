"""Tests for the Sluice exception hierarchy."""

import pytest

from sluice.core.exceptions import (
    CacheComputeFailure,
    CacheError,
    ConfigurationError,
    ConflictingPaginationError,
    ConnectionError,
    ConnectionPoolError,
    DatabaseConnectionError,
    ErrorCodes,
    IndexDefinitionError,
    InvalidCommandError,
    InvalidOperatorError,
    InvalidPaginationError,
    InvalidSortError,
    PoolExhaustedError,
    SluiceException,
    StatementError,
    StatementTimeoutError,
    TransientConnectionError,
    UnindexedRangeError,
    UnknownColumnError,
    UnknownTableError,
    UnscopedMutationError,
    ValidationError,
    create_error_from_exception,
)


class TestSluiceException:
    """Test cases for the base exception."""

    def test_defaults(self):
        error = SluiceException("Something broke")

        assert error.message == "Something broke"
        assert error.code == "SluiceException"
        assert error.context == {}
        assert error.cause is None
        assert error.retryable is False

    def test_str_includes_code(self):
        error = SluiceException("Unknown table: ghosts", code=ErrorCodes.UNKNOWN_TABLE)

        assert str(error) == "UNKNOWN_TABLE: Unknown table: ghosts"
        assert error.public_message() == str(error)

    def test_repr(self):
        error = SluiceException("boom", code="X", context={"table": "people"})

        assert "code='X'" in repr(error)
        assert "'table': 'people'" in repr(error)

    def test_to_dict(self):
        cause = OSError("disk")
        error = PoolExhaustedError(
            "No connection available",
            code=ErrorCodes.POOL_EXHAUSTED,
            context={"waited": 2.0},
            cause=cause,
        )

        assert error.to_dict() == {
            "error_type": "PoolExhaustedError",
            "message": "No connection available",
            "code": "POOL_EXHAUSTED",
            "context": {"waited": 2.0},
            "retryable": True,
            "cause": "disk",
        }


class TestHierarchy:
    """Test cases for the exception hierarchy."""

    @pytest.mark.parametrize(
        "error_class",
        [
            UnknownTableError,
            UnknownColumnError,
            InvalidOperatorError,
            InvalidSortError,
            ConflictingPaginationError,
            UnscopedMutationError,
            InvalidCommandError,
            InvalidPaginationError,
            UnindexedRangeError,
            IndexDefinitionError,
        ],
    )
    def test_validation_errors(self, error_class):
        error = error_class("rejected")

        assert isinstance(error, ValidationError)
        assert isinstance(error, SluiceException)
        assert error.retryable is False

    def test_connection_errors(self):
        assert issubclass(DatabaseConnectionError, ConnectionError)
        assert issubclass(PoolExhaustedError, ConnectionPoolError)
        assert issubclass(TransientConnectionError, ConnectionError)

    def test_connection_error_does_not_shadow_builtin_hierarchy(self):
        assert not issubclass(ConnectionError, OSError)

    def test_only_pool_exhaustion_and_transient_failures_are_retryable(self):
        assert PoolExhaustedError("x").retryable
        assert TransientConnectionError("x").retryable
        assert not DatabaseConnectionError("x").retryable
        assert not StatementError("x").retryable
        assert not StatementTimeoutError("x").retryable

    def test_statement_error_surfaces_backend_message(self):
        error = StatementError("no such column: agee", code=ErrorCodes.STATEMENT_FAILED)

        assert error.public_message() == "no such column: agee"

    def test_statement_timeout_public_message_keeps_code(self):
        error = StatementTimeoutError("Statement exceeded 5.0s", code=ErrorCodes.STATEMENT_TIMEOUT)

        assert error.public_message() == "STATEMENT_TIMEOUT: Statement exceeded 5.0s"
        assert isinstance(error, StatementError)

    def test_cache_errors(self):
        assert issubclass(CacheComputeFailure, CacheError)
        assert issubclass(ConfigurationError, SluiceException)


class TestCreateErrorFromException:
    """Test cases for create_error_from_exception."""

    def test_sluice_exception_passes_through(self):
        original = InvalidSortError("bad direction")

        assert create_error_from_exception(original) is original

    @pytest.mark.parametrize(
        "exc, expected",
        [
            (ValueError("bad"), ValidationError),
            (TypeError("bad"), ValidationError),
            (FileNotFoundError("missing"), ConfigurationError),
            (ConnectionRefusedError("refused"), DatabaseConnectionError),
            (RuntimeError("other"), SluiceException),
        ],
    )
    def test_mapping(self, exc, expected):
        error = create_error_from_exception(exc)

        assert type(error) is expected
        assert error.cause is exc
        assert error.code == ErrorCodes.INTERNAL_ERROR

    def test_overrides(self):
        error = create_error_from_exception(
            ValueError("bad"),
            message="Invalid page",
            code=ErrorCodes.INVALID_PAGINATION,
            context={"page": 0},
        )

        assert error.message == "Invalid page"
        assert error.code == "INVALID_PAGINATION"
        assert error.context == {"page": 0}
