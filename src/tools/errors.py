"""
Tool-side error taxonomy.

Tool failures are never raised across the executor boundary: each of these
exceptions knows how to render itself as the JSON result envelope the model
sees, so a failing tool becomes data the model can reason about.
"""

from __future__ import annotations

from typing import Any


class ToolError(Exception):
    """Base class for tool failures that are reported to the model as results."""

    def __init__(self, tool_name: str, message: str):
        self.tool_name = tool_name
        self.message = message
        super().__init__(message)

    def to_result(self) -> dict[str, Any]:
        return {"success": False, "error": self.message, "tool": self.tool_name}


class ToolNotFoundError(ToolError):
    """No native, plugin or chat-type tool answers to the requested name."""

    def __init__(self, tool_name: str):
        super().__init__(tool_name, f"Tool '{tool_name}' not found.")

    def to_result(self) -> dict[str, Any]:
        return {
            "success": False,
            "error": self.message,
            "available_tools_hint": "Call GET /api/tools or review the tool definitions you were given to see all available tools.",
        }


class ToolArgumentError(ToolError):
    """The model's argument payload could not be decoded into a JSON object."""

    def __init__(self, tool_name: str, detail: str):
        self.detail = detail
        super().__init__(tool_name, f"Failed to parse tool arguments: {detail}")

    def to_result(self) -> dict[str, Any]:
        return {
            "success": False,
            "error": self.message,
            "recoverable": True,
            "suggestion": f"Please check the parameters for {self.tool_name} and try again.",
        }


class ToolValidationError(ToolError):
    """Arguments are missing required fields or have the wrong JSON types."""

    def __init__(self, tool_name: str, missing: list[str], invalid: list[tuple[str, str, str]], provided: list[str]):
        self.missing = missing
        self.invalid = invalid
        self.provided = provided

        parts = []
        if missing:
            parts.append(f"Missing required parameters: {', '.join(missing)}")
        if invalid:
            details = ", ".join(f"{name} (expected {expected}, got {actual})" for name, expected, actual in invalid)
            parts.append(f"Invalid parameter types: {details}")
        super().__init__(tool_name, f"Tool '{tool_name}' validation failed: {'; '.join(parts)}")

    def to_result(self) -> dict[str, Any]:
        return {
            "success": False,
            "error": self.message,
            "tool": self.tool_name,
            "provided_args": self.provided,
            "schema_hint": f"Check the tool schema for '{self.tool_name}' to see required parameters and types.",
        }


class ToolAuthError(ToolError):
    """Delegated authorization for the tool's third-party provider is unavailable."""

    @classmethod
    def user_unknown(cls, tool_name: str) -> ToolAuthError:
        return cls(
            tool_name,
            f"Authentication required for tool '{tool_name}', but user could not be identified from token.",
        )

    @classmethod
    def token_missing(cls, tool_name: str, provider: str) -> ToolAuthError:
        return cls(
            tool_name,
            f"OAuth token not found or invalid for provider '{provider}'. "
            "Please connect the application in your settings.",
        )

    def to_result(self) -> dict[str, Any]:
        return {"success": False, "error": self.message}


class ToolExecutionError(ToolError):
    """The tool raised or timed out while running."""

    def __init__(self, tool_name: str, cause: BaseException):
        self.cause = cause
        detail = str(cause) or type(cause).__name__
        super().__init__(tool_name, f"Tool '{tool_name}' execution failed: {detail}")

    def to_result(self) -> dict[str, Any]:
        return {
            "success": False,
            "error": self.message,
            "tool": self.tool_name,
            "details": repr(self.cause),
            "recoverable": True,
        }


class ToolResponseParseError(ToolError):
    """Tool output was not JSON and could not be recovered."""

    def __init__(self, tool_name: str, parse_error: str, raw_preview: str):
        self.parse_error = parse_error
        self.raw_preview = raw_preview
        super().__init__(tool_name, "Tool response contained malformed JSON that could not be recovered")

    def to_result(self) -> dict[str, Any]:
        return {
            "success": False,
            "error": self.message,
            "parse_error": self.parse_error,
            "raw_output_preview": self.raw_preview,
            "recoverable": True,
            "suggestion": (
                f"The {self.tool_name} tool returned malformed JSON. The system attempted recovery but was "
                "unable to parse the response. The task will continue with this error noted."
            ),
            "recovery_attempted": True,
        }


__all__ = [
    "ToolArgumentError",
    "ToolAuthError",
    "ToolError",
    "ToolExecutionError",
    "ToolNotFoundError",
    "ToolResponseParseError",
    "ToolValidationError",
]
