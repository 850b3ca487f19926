"""Tests for structured command models."""

import pytest
from pydantic import ValidationError as PydanticValidationError

from sluice.compiler import (
    DeleteCommand,
    InsertCommand,
    SelectCommand,
    UpdateCommand,
    parse_command,
)
from sluice.core.exceptions import ErrorCodes, InvalidCommandError


class TestParseCommand:
    """Test cases for command parsing."""

    def test_select_with_shorthand(self):
        command = parse_command(
            {
                "operation": "select",
                "table": "people",
                "conditions": {"age": {"operator": ">", "value": 30}, "city": "Oslo"},
                "order_by": "age DESC",
                "page": 2,
                "page_size": 5,
            }
        )

        assert isinstance(command, SelectCommand)
        assert command.conditions["age"].operator == ">"
        assert command.conditions["city"].operator == "="
        assert command.conditions["city"].value == "Oslo"
        assert command.order_by[0].column == "age"
        assert command.order_by[0].direction == "DESC"
        assert command.is_paginated

    def test_order_terms(self):
        command = parse_command(
            {"operation": "SELECT", "table": "people", "order_by": ["age", {"column": "name", "direction": "desc"}]}
        )

        assert [(term.column, term.direction) for term in command.order_by] == [("age", "ASC"), ("name", "desc")]

    def test_value_only_condition(self):
        command = parse_command({"operation": "select", "table": "people", "conditions": {"city": {"value": "Lima"}}})

        assert command.conditions["city"].operator == "="
        assert command.conditions["city"].value == "Lima"

    def test_null_condition(self):
        command = parse_command({"operation": "delete", "table": "people", "conditions": {"email": None}})

        assert isinstance(command, DeleteCommand)
        assert command.conditions["email"].value is None

    def test_insert_single_and_many(self):
        single = parse_command({"operation": "insert", "table": "orders", "values": {"amount": 1}})
        many = parse_command({"operation": "insert", "table": "orders", "rows": [{"amount": 1}, {"amount": 2}]})

        assert isinstance(single, InsertCommand)
        assert single.all_rows == [{"amount": 1}]
        assert len(many.all_rows) == 2

    def test_update(self):
        command = parse_command(
            {"operation": "update", "table": "people", "values": {"city": "Oslo"}, "conditions": {"id": 1}}
        )

        assert isinstance(command, UpdateCommand)
        assert not command.force

    def test_typed_command_passes_through(self):
        command = SelectCommand(table="people")

        assert parse_command(command) is command

    @pytest.mark.parametrize(
        "payload",
        [
            {"operation": "merge", "table": "people"},
            {"table": "people"},
            {"operation": "select"},
            {"operation": "select", "table": ""},
            {"operation": "select", "table": "people", "unexpected": True},
            {"operation": "select", "table": "people", "limit": 5, "page": 1},
            {"operation": "select", "table": "people", "offset": 5},
            {"operation": "select", "table": "people", "page": 0},
            {"operation": "select", "table": "people", "order_by": "age DESC NULLS"},
            {"operation": "insert", "table": "orders"},
            {"operation": "insert", "table": "orders", "values": {}},
            {"operation": "insert", "table": "orders", "values": {"a": 1}, "rows": [{"a": 1}]},
            {"operation": "insert", "table": "orders", "rows": [{"a": 1}, {"b": 2}]},
            {"operation": "insert", "table": "orders", "rows": []},
            {"operation": "update", "table": "people", "conditions": {"id": 1}},
            {"operation": "update", "table": "people", "values": {}},
        ],
    )
    def test_invalid_commands(self, payload):
        with pytest.raises(InvalidCommandError) as exc_info:
            parse_command(payload)

        assert exc_info.value.code == ErrorCodes.INVALID_COMMAND
        assert exc_info.value.context["errors"]

    def test_non_mapping(self):
        with pytest.raises(InvalidCommandError) as exc_info:
            parse_command(["select", "people"])

        assert exc_info.value.context == {"type": "list"}

    def test_commands_are_frozen(self):
        command = SelectCommand(table="people")

        with pytest.raises(PydanticValidationError):
            command.table = "orders"
