"""
API request/response models for the agnt-core endpoints.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from core.constants import DEFAULT_MODEL, DEFAULT_PROVIDER


class CamelModel(BaseModel):
    """Base model accepting both camelCase (client) and snake_case field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UploadedFile(CamelModel):
    """A file attached to a chat request, base64-encoded."""

    name: str
    mime_type: str = "application/octet-stream"
    data: str = Field(description="Base64 payload (a data: URI prefix is tolerated)")

    @field_validator("data")
    @classmethod
    def strip_data_uri(cls, v: str) -> str:
        if v.startswith("data:") and "," in v:
            return v.split(",", 1)[1]
        return v


class ChatRequest(CamelModel):
    """Inbound chat request.

    Either ``messages`` (full history ending with the new user turn) or
    ``message`` plus optional ``history`` must be supplied.
    """

    provider: str = DEFAULT_PROVIDER
    model: str = DEFAULT_MODEL
    messages: list[dict[str, Any]] | None = None
    message: str | None = None
    history: list[dict[str, Any]] = Field(default_factory=list)
    conversation_id: str | None = None
    chat_type: str | None = None
    agent_id: str | None = None
    workflow_id: str | None = None
    goal_id: str | None = None
    tool_id: str | None = None
    agent_context: dict[str, Any] | None = None
    workflow_context: dict[str, Any] | None = None
    goal_context: dict[str, Any] | None = None
    tool_context: dict[str, Any] | None = None
    agent_state: dict[str, Any] | None = None
    workflow_state: dict[str, Any] | None = None
    goal_state: dict[str, Any] | None = None
    tool_state: dict[str, Any] | None = None
    files: list[UploadedFile] = Field(default_factory=list)

    @field_validator("provider")
    @classmethod
    def normalize_provider(cls, v: str) -> str:
        return v.strip().lower()

    @model_validator(mode="after")
    def require_input(self) -> ChatRequest:
        if not self.messages and not (self.message and self.message.strip()):
            raise ValueError("Either 'messages' or 'message' is required")
        return self

    def build_messages(self) -> list[dict[str, Any]]:
        """Return the message list the run starts from."""
        if self.messages:
            return [dict(m) for m in self.messages]
        return [*(dict(m) for m in self.history), {"role": "user", "content": self.message}]


class ToolInfo(BaseModel):
    """Tool listing entry."""

    name: str
    description: str
    source: str
    parameters: dict[str, Any]
    auth_required: bool = False


class ToolListResponse(BaseModel):
    """Response for ``GET /api/tools``."""

    tools: list[ToolInfo]
    count: int


class ConversationLogResponse(BaseModel):
    """Persisted conversation log."""

    conversation_id: str
    user_id: str | None = None
    initial_prompt: str | None = None
    full_history: list[dict[str, Any]] = Field(default_factory=list)
    final_response: str | None = None
    tool_calls: list[dict[str, Any]] = Field(default_factory=list)
    errors: list[dict[str, Any]] = Field(default_factory=list)
    created_at: str | None = None
    updated_at: str | None = None


__all__ = [
    "ChatRequest",
    "ConversationLogResponse",
    "ToolInfo",
    "ToolListResponse",
    "UploadedFile",
]
