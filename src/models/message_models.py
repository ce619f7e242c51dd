"""
Message and provider-result models shared by the adapters and the orchestration loop.

Chat history itself stays as plain provider-shaped dicts (it is sent to the
vendor SDKs verbatim); these models describe what an adapter hands back.
"""

from __future__ import annotations

import json

from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field


class TextContent(BaseModel):
    """Assistant content delivered as a single string (OpenAI-compatible vendors)."""

    kind: Literal["text"] = "text"
    text: str = ""

    def extract_text(self) -> str:
        return self.text


class BlockContent(BaseModel):
    """Assistant content delivered as typed blocks (Anthropic ``text``/``tool_use``)."""

    kind: Literal["blocks"] = "blocks"
    blocks: list[dict[str, Any]] = Field(default_factory=list)

    def extract_text(self) -> str:
        return "".join(block.get("text", "") for block in self.blocks if block.get("type") == "text")


AssistantContent = Annotated[TextContent | BlockContent, Field(discriminator="kind")]


class ToolCall(BaseModel):
    """A model-issued request to invoke a named tool with JSON-encoded arguments."""

    id: str
    name: str
    arguments: str = "{}"

    def parsed_arguments(self) -> dict[str, Any]:
        """Decode arguments; raises ValueError when they are not a JSON object."""
        value = json.loads(self.arguments or "{}")
        if not isinstance(value, dict):
            raise ValueError(f"Tool arguments must be a JSON object, got {type(value).__name__}")
        return value


class InvalidToolCall(BaseModel):
    """A tool call the adapter filtered out because it was malformed."""

    tool_name: str
    issues: list[str]
    attempted_args: str = ""

    def to_event(self) -> dict[str, Any]:
        return {"toolName": self.tool_name, "issues": self.issues, "attemptedArgs": self.attempted_args}


class AdapterResult(BaseModel):
    """Normalized outcome of one provider streaming call.

    Attributes:
        response_message: Provider-shaped assistant message to append to history
        content: Tagged assistant content (string or blocks)
        tool_calls: Validated calls to execute next; empty means final answer
        invalid_tool_calls: Malformed calls that were filtered out
        tool_call_error: Soft error the adapter recovered from by retrying
        tools_skipped: True when the model could not accept tool definitions
        tools_skipped_reason: Human-readable explanation for tools_skipped
        recovered_from_error: True when the adapter gave up and returned an apology
        recovered_error: Raw error text behind recovered_from_error
    """

    response_message: dict[str, Any]
    content: AssistantContent = Field(default_factory=TextContent)
    tool_calls: list[ToolCall] = Field(default_factory=list)
    invalid_tool_calls: list[InvalidToolCall] = Field(default_factory=list)
    tool_call_error: str | None = None
    tools_skipped: bool = False
    tools_skipped_reason: str | None = None
    recovered_from_error: bool = False
    recovered_error: str | None = None

    @property
    def text(self) -> str:
        """Final assistant text regardless of provider content shape."""
        return self.content.extract_text()


__all__ = [
    "AdapterResult",
    "AssistantContent",
    "BlockContent",
    "InvalidToolCall",
    "TextContent",
    "ToolCall",
]
