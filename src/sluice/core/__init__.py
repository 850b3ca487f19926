"""Sluice core infrastructure.

This package provides the foundational components for the Sluice engine
including base classes, exception handling, collaborator protocols and
utilities.

Modules:
    base: Base classes and component registry
    exceptions: Exception hierarchy
    protocols: Collaborator protocols
    utils: Utility functions

Classes:
    BaseComponent: Base class for all components
    AsyncComponent: Base class for async components
    ComponentRegistry: Component registry
    SluiceException: Base exception class

Example:
    >>> from sluice.core import AsyncComponent
    >>> from sluice.core.exceptions import ValidationError
    >>> from sluice.core.utils import StringUtils
"""

from .base import (
    AsyncComponent,
    AsyncInitializable,
    BaseComponent,
    ComponentRegistry,
    Monitorable,
)
from .exceptions import (
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
from .protocols import MetadataInvalidator, WorkloadObserver
from .utils import FormatUtils, ListUtils, StringUtils, ValidationUtils

__all__ = [
    # Base classes
    "BaseComponent",
    "AsyncComponent",
    "ComponentRegistry",
    "AsyncInitializable",
    "Monitorable",

    # Exceptions
    "SluiceException",
    "ConfigurationError",
    "ValidationError",
    "UnknownTableError",
    "UnknownColumnError",
    "InvalidOperatorError",
    "InvalidSortError",
    "ConflictingPaginationError",
    "UnscopedMutationError",
    "InvalidCommandError",
    "InvalidPaginationError",
    "UnindexedRangeError",
    "IndexDefinitionError",
    "ConnectionError",
    "DatabaseConnectionError",
    "ConnectionPoolError",
    "PoolExhaustedError",
    "TransientConnectionError",
    "StatementError",
    "StatementTimeoutError",
    "CacheError",
    "CacheComputeFailure",
    "ErrorCodes",
    "create_error_from_exception",

    # Protocols
    "WorkloadObserver",
    "MetadataInvalidator",

    # Utilities
    "ValidationUtils",
    "StringUtils",
    "FormatUtils",
    "ListUtils",
]
