"""Command compilation: structured commands and raw SQL to statement plans."""

from .commands import (
    Condition,
    DeleteCommand,
    InsertCommand,
    OrderBy,
    SelectCommand,
    StructuredCommand,
    UpdateCommand,
    parse_command,
)
from .compiler import (
    ALLOWED_OPERATORS,
    SORT_DIRECTIONS,
    CommandCompiler,
    Predicate,
    normalize_direction,
    normalize_operator,
)
from .plan import CostClass, PaginationInfo, PaginationSpec, StatementKind, StatementPlan

__all__ = [
    # Commands
    "Condition",
    "OrderBy",
    "SelectCommand",
    "InsertCommand",
    "UpdateCommand",
    "DeleteCommand",
    "StructuredCommand",
    "parse_command",

    # Compiler
    "ALLOWED_OPERATORS",
    "SORT_DIRECTIONS",
    "CommandCompiler",
    "Predicate",
    "normalize_direction",
    "normalize_operator",

    # Plans
    "CostClass",
    "PaginationInfo",
    "PaginationSpec",
    "StatementKind",
    "StatementPlan",
]
