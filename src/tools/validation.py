"""
Argument validation for tool calls.

Runs the tool's JSON-schema ``parameters`` through a Draft 7 validator and
folds every reported problem into a single ``ToolValidationError``: required
fields that are absent (a top-level ``null`` counts as absent) and values
whose type, enum or other constraint does not hold. Nested problems are
named by their dotted path, e.g. ``filters.tags.1``.
"""

from __future__ import annotations

from typing import Any

from jsonschema import Draft7Validator, ValidationError

from tools.errors import ToolValidationError


def json_type_name(value: Any) -> str:
    """JSON type name of a Python value (``bool`` is boolean, not number)."""
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int | float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    if value is None:
        return "null"
    return type(value).__name__


def _path(error: ValidationError, *extra: str) -> str:
    return ".".join([*(str(part) for part in error.absolute_path), *extra])


def _expected(error: ValidationError) -> str:
    value = error.validator_value
    if error.validator == "type":
        return " | ".join(value) if isinstance(value, list) else str(value)
    if error.validator == "enum":
        return "one of " + " | ".join(str(option) for option in value)
    return f"{error.validator} {value}"


def _actual(error: ValidationError) -> str:
    if error.validator == "type":
        return json_type_name(error.instance)
    return repr(error.instance)


def validate_tool_arguments(tool_name: str, args: dict[str, Any], parameters: dict[str, Any] | None) -> None:
    """Validate arguments against a tool's parameter schema.

    Args:
        tool_name: Tool name used in the error message
        args: Decoded arguments from the model
        parameters: JSON-schema object describing the tool's parameters

    Raises:
        ToolValidationError: If any required field is missing or any value breaks the schema
    """
    if not parameters:
        return

    present = {name: value for name, value in args.items() if value is not None}

    missing: list[str] = []
    invalid: list[tuple[str, str, str]] = []
    for error in Draft7Validator(parameters).iter_errors(present):
        if error.validator == "required":
            instance = error.instance if isinstance(error.instance, dict) else {}
            missing.extend(_path(error, name) for name in error.validator_value if name not in instance)
        else:
            invalid.append((_path(error) or "(arguments)", _expected(error), _actual(error)))

    if missing or invalid:
        raise ToolValidationError(tool_name, list(dict.fromkeys(missing)), invalid, provided=list(args))


__all__ = ["json_type_name", "validate_tool_arguments"]
