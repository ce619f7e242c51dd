"""
Chat types and their per-type configuration.

A chat type decides which tool set a run sees and how its system prompt is
framed. The default ``orchestrator`` type is the general assistant.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

#: Agent id the client sends for the agent-management (builder) conversation
AGENT_MANAGEMENT_ID = "agent-chat"


class ChatType(str, Enum):
    """Conversation flavours supported by the orchestration loop."""

    ORCHESTRATOR = "orchestrator"
    AGENT = "agent"
    WORKFLOW = "workflow"
    GOAL = "goal"
    TOOL = "tool"


@dataclass(frozen=True, slots=True)
class ChatConfig:
    """Static configuration for one chat type.

    Attributes:
        chat_type: The chat type this config applies to
        execution_name: Default agent name recorded on execution records
        role_description: Opening line of the system prompt
        subject: Name of the entity the domain tools operate on (None for orchestrator)
    """

    chat_type: ChatType
    execution_name: str
    role_description: str
    subject: str | None = None


CHAT_CONFIGS: dict[ChatType, ChatConfig] = {
    ChatType.ORCHESTRATOR: ChatConfig(
        ChatType.ORCHESTRATOR,
        "Orchestrator",
        "You are AGNT, a capable assistant that can search the web, read pages, run code and manage files.",
    ),
    ChatType.AGENT: ChatConfig(
        ChatType.AGENT,
        "Agent Chat",
        "You are an AI agent configured by the user. Follow your configured instructions and use your tools.",
        subject="agent",
    ),
    ChatType.WORKFLOW: ChatConfig(
        ChatType.WORKFLOW,
        "Workflow",
        "You are a workflow designer. You help the user inspect and modify the workflow they are editing.",
        subject="workflow",
    ),
    ChatType.GOAL: ChatConfig(
        ChatType.GOAL,
        "Goal",
        "You are a goal planner. You help the user refine a goal and break it into tasks.",
        subject="goal",
    ),
    ChatType.TOOL: ChatConfig(
        ChatType.TOOL,
        "Tool",
        "You are a tool builder. You help the user define and refine a custom tool.",
        subject="tool",
    ),
}


def detect_chat_type(
    chat_type: str | None = None,
    agent_id: str | None = None,
    workflow_id: str | None = None,
    goal_id: str | None = None,
    tool_id: str | None = None,
) -> ChatType:
    """Resolve the chat type from an explicit value or from which id is present.

    Unknown explicit values fall back to the orchestrator.
    """
    if chat_type:
        try:
            return ChatType(chat_type.lower())
        except ValueError:
            return ChatType.ORCHESTRATOR
    if agent_id:
        return ChatType.AGENT
    if workflow_id:
        return ChatType.WORKFLOW
    if goal_id:
        return ChatType.GOAL
    if tool_id:
        return ChatType.TOOL
    return ChatType.ORCHESTRATOR


def get_chat_config(chat_type: ChatType) -> ChatConfig:
    return CHAT_CONFIGS[chat_type]


def execution_agent_name(chat_type: ChatType, agent_context: dict[str, Any] | None) -> str:
    """Name recorded on the execution record for a run."""
    if agent_context and agent_context.get("name"):
        return str(agent_context["name"])
    return CHAT_CONFIGS[chat_type].execution_name
