"""
Per-request run state for the orchestration loop.

One ``RunContext`` is created per chat request and is owned by exactly one
run. It is passed explicitly to adapters, the tool executor and tools; nothing
in it is shared across runs.
"""

from __future__ import annotations

import asyncio

from dataclasses import dataclass, field
from typing import Any, Literal

from api.websocket.task_manager import CancellationToken
from core.chat_types import ChatType
from core.constants import DEFAULT_TOOL_CONCURRENCY

ContentKind = Literal["image", "data"]


@dataclass(slots=True)
class PreservedContent:
    """A payload lifted out of the conversation and replaced by a reference token."""

    id: str
    kind: ContentKind
    payload: Any
    created_from_round: int
    path: str | None = None


class PreservedContentStore:
    """Reference id to payload map for one run.

    Entries are write-once; re-adding an id keeps the first payload.
    """

    def __init__(self) -> None:
        self._entries: dict[str, PreservedContent] = {}

    def add(
        self,
        ref_id: str,
        kind: ContentKind,
        payload: Any,
        created_from_round: int,
        path: str | None = None,
    ) -> PreservedContent:
        existing = self._entries.get(ref_id)
        if existing is not None:
            return existing
        entry = PreservedContent(ref_id, kind, payload, created_from_round, path)
        self._entries[ref_id] = entry
        return entry

    def get(self, ref_id: str) -> PreservedContent | None:
        return self._entries.get(ref_id)

    def entries(self, kind: ContentKind | None = None) -> list[PreservedContent]:
        return [e for e in self._entries.values() if kind is None or e.kind == kind]

    def __contains__(self, ref_id: object) -> bool:
        return ref_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)


@dataclass
class RunContext:
    """Transient state of one orchestration run.

    Attributes:
        conversation_id: Conversation the run belongs to
        provider: Provider key (``openai``, ``anthropic``, ...)
        model: Model identifier sent to the provider
        chat_type: Chat type deciding the tool set and system prompt
        user_id: Authenticated user, if any
        auth_token: Delegated bearer credential forwarded from the request
        preserved_content: Payloads referenced by ``IMAGE_REF``/``DATA_REF`` tokens
        images: Uploaded images (``{name, mime_type, data}``) for vision models
        cancellation_token: Token the transport fires to stop the run
        current_round: Tool round being executed (0 before the first round)
        assistant_message_id: Id of the assistant message being streamed
        tool_concurrency: Maximum concurrently running tools
    """

    conversation_id: str
    provider: str
    model: str
    chat_type: ChatType = ChatType.ORCHESTRATOR
    user_id: str | None = None
    auth_token: str | None = None

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

    preserved_content: PreservedContentStore = field(default_factory=PreservedContentStore)
    images: list[dict[str, Any]] = field(default_factory=list)
    cancellation_token: CancellationToken = field(default_factory=CancellationToken)
    current_round: int = 0
    assistant_message_id: str | None = None
    execution_id: str | None = None
    tool_concurrency: int = DEFAULT_TOOL_CONCURRENCY
    _tool_semaphore: asyncio.Semaphore | None = field(default=None, repr=False)

    @property
    def tool_semaphore(self) -> asyncio.Semaphore:
        """Semaphore bounding concurrent tool calls within this run (created lazily on the running loop)."""
        if self._tool_semaphore is None:
            self._tool_semaphore = asyncio.Semaphore(max(1, self.tool_concurrency))
        return self._tool_semaphore

    def state_for(self, kind: str) -> dict[str, Any] | None:
        return getattr(self, f"{kind}_state", None)

    def set_state(self, kind: str, state: dict[str, Any]) -> None:
        setattr(self, f"{kind}_state", state)

    def context_for(self, kind: str) -> dict[str, Any] | None:
        return getattr(self, f"{kind}_context", None)

    def id_for(self, kind: str) -> str | None:
        return getattr(self, f"{kind}_id", None)

    def to_tool_context(self) -> dict[str, Any]:
        """Context dict handed to plugin tools alongside their arguments."""
        return {
            "conversation_id": self.conversation_id,
            "user_id": self.user_id,
            "provider": self.provider,
            "model": self.model,
            "chat_type": self.chat_type.value,
            "agent_id": self.agent_id,
            "workflow_id": self.workflow_id,
            "goal_id": self.goal_id,
            "tool_id": self.tool_id,
            "round": self.current_round,
        }


__all__ = ["ContentKind", "PreservedContent", "PreservedContentStore", "RunContext"]
