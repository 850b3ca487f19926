"""Structured command models.

A structured command is a JSON-like description of a CRUD intent. It is
modeled as a tagged union keyed by ``operation``; each variant declares its
own required fields and is validated before compilation.

Example:
    >>> command = parse_command({
    ...     "operation": "select",
    ...     "table": "people",
    ...     "conditions": {"age": {"operator": ">", "value": 30}, "city": "Oslo"},
    ...     "order_by": ["age DESC"],
    ...     "page": 1,
    ...     "page_size": 20,
    ... })
    >>> command.conditions["city"].operator
    '='
"""

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    NonNegativeInt,
    PositiveInt,
    TypeAdapter,
    ValidationError as PydanticValidationError,
    field_validator,
    model_validator,
)

from sluice.core.exceptions import ErrorCodes, InvalidCommandError

CONDITION_KEYS = frozenset({"operator", "value"})


class Condition(BaseModel):
    """A column condition: ``{operator, value}``.

    The operator is checked against the allow-list at compile time so the
    caller gets ``InvalidOperatorError`` rather than a shape error.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    operator: str = "="
    value: Any = None


class OrderBy(BaseModel):
    """One ordering term. Strings like ``"age DESC"`` are accepted."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    column: str = Field(..., min_length=1)
    direction: str = "ASC"

    @model_validator(mode="before")
    @classmethod
    def parse_shorthand(cls, data: Any) -> Any:
        if isinstance(data, str):
            parts = data.split()
            if len(parts) == 1:
                return {"column": parts[0]}
            if len(parts) == 2:
                return {"column": parts[0], "direction": parts[1]}
            raise ValueError(f"Cannot parse order term: {data!r}")
        return data


def _normalize_conditions(value: Any) -> Any:
    """Expand bare condition values to ``{operator: "=", value}``."""
    if not isinstance(value, dict):
        return value
    normalized = {}
    for column, condition in value.items():
        if isinstance(condition, Condition):
            normalized[column] = condition
        elif isinstance(condition, dict) and condition and set(condition) <= CONDITION_KEYS:
            normalized[column] = condition
        else:
            normalized[column] = {"operator": "=", "value": condition}
    return normalized


class _TableCommand(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    table: str = Field(..., min_length=1)


class _ConditionedCommand(_TableCommand):
    conditions: Dict[str, Condition] = Field(default_factory=dict)

    @field_validator("conditions", mode="before")
    @classmethod
    def expand_conditions(cls, v: Any) -> Any:
        return _normalize_conditions(v)


class SelectCommand(_ConditionedCommand):
    """Read rows, optionally filtered, ordered and paginated.

    Either ``limit``/``offset`` or ``page``/``page_size`` may be given, not
    both.
    """

    operation: Literal["SELECT"] = "SELECT"
    columns: Optional[List[str]] = None
    order_by: List[OrderBy] = Field(default_factory=list)
    limit: Optional[NonNegativeInt] = None
    offset: Optional[NonNegativeInt] = None
    page: Optional[PositiveInt] = None
    page_size: Optional[PositiveInt] = None

    @field_validator("order_by", mode="before")
    @classmethod
    def wrap_single_order(cls, v: Any) -> Any:
        if isinstance(v, (str, dict)):
            return [v]
        return v

    @model_validator(mode="after")
    def validate_paging(self) -> "SelectCommand":
        if (self.limit is not None or self.offset is not None) and (
            self.page is not None or self.page_size is not None
        ):
            raise ValueError("Use either limit/offset or page/page_size, not both")
        if self.offset is not None and self.limit is None:
            raise ValueError("offset requires limit")
        return self

    @property
    def is_paginated(self) -> bool:
        return self.page is not None or self.page_size is not None


class InsertCommand(_TableCommand):
    """Insert one row (``values``) or several rows with the same columns (``rows``)."""

    operation: Literal["INSERT"] = "INSERT"
    values: Optional[Dict[str, Any]] = None
    rows: Optional[List[Dict[str, Any]]] = None

    @model_validator(mode="after")
    def validate_rows(self) -> "InsertCommand":
        if (self.values is None) == (self.rows is None):
            raise ValueError("Exactly one of values or rows is required")
        if self.values is not None and not self.values:
            raise ValueError("values must not be empty")
        if self.rows is not None:
            if not self.rows or not self.rows[0]:
                raise ValueError("rows must contain at least one non-empty row")
            keys = set(self.rows[0])
            if any(set(row) != keys for row in self.rows[1:]):
                raise ValueError("all rows must have the same columns")
        return self

    @property
    def all_rows(self) -> List[Dict[str, Any]]:
        return [self.values] if self.values is not None else list(self.rows or [])


class UpdateCommand(_ConditionedCommand):
    """Update rows matching ``conditions``; unconditioned updates need ``force``."""

    operation: Literal["UPDATE"] = "UPDATE"
    values: Dict[str, Any] = Field(..., min_length=1)
    force: bool = False


class DeleteCommand(_ConditionedCommand):
    """Delete rows matching ``conditions``; unconditioned deletes need ``force``."""

    operation: Literal["DELETE"] = "DELETE"
    force: bool = False


StructuredCommand = Annotated[
    Union[SelectCommand, InsertCommand, UpdateCommand, DeleteCommand],
    Field(discriminator="operation"),
]

_command_adapter: TypeAdapter = TypeAdapter(StructuredCommand)


def parse_command(data: Union[Dict[str, Any], BaseModel]) -> Any:
    """Validate a command mapping into its typed variant.

    ``operation`` is matched case-insensitively.

    Raises:
        InvalidCommandError: If the mapping does not describe a valid command
    """
    if isinstance(data, (SelectCommand, InsertCommand, UpdateCommand, DeleteCommand)):
        return data
    if not isinstance(data, dict):
        raise InvalidCommandError(
            "Structured command must be a mapping",
            code=ErrorCodes.INVALID_COMMAND,
            context={"type": type(data).__name__},
        )

    payload = dict(data)
    operation = payload.get("operation")
    if isinstance(operation, str):
        payload["operation"] = operation.strip().upper()

    try:
        return _command_adapter.validate_python(payload)
    except PydanticValidationError as e:
        first = e.errors(include_url=False)[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise InvalidCommandError(
            f"Invalid structured command: {location + ': ' if location else ''}{first.get('msg')}",
            code=ErrorCodes.INVALID_COMMAND,
            context={"errors": e.errors(include_url=False, include_context=False)},
            cause=e,
        ) from e
