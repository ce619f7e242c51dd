"""Tests for tool argument validation."""

from __future__ import annotations

from typing import Any

import pytest

from tools.errors import ToolValidationError
from tools.validation import json_type_name, validate_tool_arguments

SCHEMA = {
    "type": "object",
    "properties": {
        "query": {"type": "string"},
        "limit": {"type": "integer"},
        "score": {"type": "number"},
        "tags": {"type": ["array", "null"]},
        "strict": {"type": "boolean"},
    },
    "required": ["query"],
}


@pytest.mark.parametrize(
    ("value", "expected"),
    [(True, "boolean"), (3, "number"), (2.5, "number"), ("x", "string"), ([], "array"), ({}, "object"), (None, "null")],
)
def test_json_type_name(value: Any, expected: str) -> None:
    assert json_type_name(value) == expected


def test_valid_arguments_pass() -> None:
    validate_tool_arguments("search", {"query": "x", "limit": 2, "score": 0.5, "tags": ["a"], "strict": False}, SCHEMA)


def test_extra_and_null_optional_arguments_pass() -> None:
    validate_tool_arguments("search", {"query": "x", "limit": None, "unknown": 1}, SCHEMA)


def test_no_schema_accepts_anything() -> None:
    validate_tool_arguments("anything", {"a": 1}, None)
    validate_tool_arguments("anything", {"a": 1}, {})


def test_all_problems_collected() -> None:
    with pytest.raises(ToolValidationError) as exc_info:
        validate_tool_arguments("search", {"limit": "ten", "strict": 1}, SCHEMA)

    error = exc_info.value
    assert error.missing == ["query"]
    assert error.invalid == [("limit", "integer", "string"), ("strict", "boolean", "number")]
    assert error.provided == ["limit", "strict"]
    assert error.message == (
        "Tool 'search' validation failed: Missing required parameters: query; "
        "Invalid parameter types: limit (expected integer, got string), strict (expected boolean, got number)"
    )
    assert error.to_result()["schema_hint"].startswith("Check the tool schema for 'search'")


def test_null_required_counts_as_missing() -> None:
    with pytest.raises(ToolValidationError, match="Missing required parameters: query"):
        validate_tool_arguments("search", {"query": None}, SCHEMA)


def test_union_type_label() -> None:
    with pytest.raises(ToolValidationError, match=r"tags \(expected array \| null, got string\)"):
        validate_tool_arguments("search", {"query": "x", "tags": "a"}, SCHEMA)


def test_nested_enum_and_item_problems_use_dotted_paths() -> None:
    schema = {
        "type": "object",
        "properties": {
            "mode": {"type": "string", "enum": ["fast", "full"]},
            "filters": {
                "type": "object",
                "properties": {
                    "tags": {"type": "array", "items": {"type": "string"}},
                    "owner": {"type": "string"},
                },
                "required": ["owner"],
            },
        },
        "required": ["mode"],
    }

    with pytest.raises(ToolValidationError) as exc_info:
        validate_tool_arguments("search", {"mode": "slow", "filters": {"tags": ["a", 2]}}, schema)

    error = exc_info.value
    assert error.missing == ["filters.owner"]
    assert ("mode", "one of fast | full", "'slow'") in error.invalid
    assert ("filters.tags.1", "string", "number") in error.invalid
    assert "Missing required parameters: filters.owner" in error.message


def test_code_must_be_a_string() -> None:
    schema = {"type": "object", "properties": {"code": {"type": "string"}}, "required": ["code"]}

    with pytest.raises(ToolValidationError, match=r"code \(expected string, got number\)"):
        validate_tool_arguments("run_code", {"code": 123}, schema)
