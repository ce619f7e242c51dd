"""
Stream event models for the orchestration loop.

Every event a run emits is a named event with a JSON object payload. The same
event is framed as SSE for ``POST /api/chat`` and as a typed JSON message for
the WebSocket endpoint.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from utils.json_utils import json_compact


class EventType(str, Enum):
    """Named events emitted during one orchestration run."""

    CONVERSATION_STARTED = "conversation_started"
    AGENT_EXECUTION_STARTED = "agent_execution_started"
    FILES_PROCESSED = "files_processed"
    CONTEXT_STATUS = "context_status"
    CONTEXT_MANAGED = "context_managed"
    ASSISTANT_MESSAGE = "assistant_message"
    CONTENT_DELTA = "content_delta"
    TOOLS_SKIPPED = "tools_skipped"
    INVALID_TOOL_CALLS = "invalid_tool_calls"
    TOOL_ERROR = "tool_error"
    TOOL_START = "tool_start"
    TOOL_END = "tool_end"
    TOOL_EXECUTIONS = "tool_executions"
    FRONTEND_EVENT = "frontend_event"
    IMAGE_GENERATED = "image_generated"
    DATA_CONTENT = "data_content"
    DATA_OFFLOADED = "data_offloaded"
    ERROR = "error"
    FINAL_CONTENT = "final_content"
    AGENT_EXECUTION_COMPLETED = "agent_execution_completed"
    DONE = "done"


class StreamEvent(BaseModel):
    """One named event with its payload."""

    event: EventType
    data: dict[str, Any] = Field(default_factory=dict)

    def to_sse(self) -> str:
        """Frame as a Server-Sent Events message."""
        return f"event: {self.event.value}\ndata: {json_compact(self.data)}\n\n"

    def to_ws_message(self) -> dict[str, Any]:
        """Flatten into a WebSocket JSON message (``type`` carries the event name)."""
        return {"type": self.event.value, **self.data}


#: Async callback a run uses to deliver events to its transport
EventSink = Callable[[StreamEvent], Awaitable[None]]


__all__ = ["EventSink", "EventType", "StreamEvent"]
