"""
System prompts for agnt-core.
Centralizes all prompt engineering for the orchestration loop.
"""

from __future__ import annotations

import json

from typing import Any

from core.chat_types import ChatType, get_chat_config

MAX_TOOLS_IN_PROMPT = 50

#: Entity context is embedded as JSON; longer payloads are cut to keep the prompt small
MAX_CONTEXT_CHARS_IN_PROMPT = 8000

TOOL_USE_GUIDANCE = """## Tool Use

- Call tools only when they help answer the request; answer directly when you can.
- When several independent lookups are needed, issue the tool calls together in one response.
- Tool arguments must be a JSON object matching the tool's parameters exactly.
- If a tool returns `"success": false`, read the error, fix the arguments or try another approach.
  Do not repeat an identical failing call.

## Large Content References

Large tool outputs are replaced in your context by reference tokens:
- `{{IMAGE_REF:<id>}}` marks an image that has already been shown to the user. Mention it, do not reproduce it.
- `{{DATA_REF:<id>}}` marks a large piece of data. You can pass the token as a tool argument
  (for example as `content` to `write_file`) and it will be replaced by the full data."""

STATE_TOOL_GUIDANCE = """## Editing the {subject}

Use `get_{subject}_state` to see the current {subject} (it includes changes already made in this
conversation) and `update_{subject}_state` to change fields. Only send the fields you change.
The user's editor updates immediately, so describe what you changed in your reply."""


def _render_bulleted_list(items: list[str], max_items: int, label: str) -> str:
    """Render up to ``max_items`` as markdown bullets with an overflow note."""
    lines = [f"- {item}" for item in items[:max_items]]
    if len(items) > max_items:
        lines.append(f"- ... and {len(items) - max_items} more {label}")
    return "\n".join(lines)


def _render_context(label: str, context: dict[str, Any]) -> str:
    payload = json.dumps(context, ensure_ascii=False, indent=2, default=str)
    if len(payload) > MAX_CONTEXT_CHARS_IN_PROMPT:
        payload = payload[:MAX_CONTEXT_CHARS_IN_PROMPT] + "\n... (truncated)"
    return f"## {label}\n\n```json\n{payload}\n```"


def _agent_sections(agent_context: dict[str, Any]) -> list[str]:
    sections = []
    name = agent_context.get("name")
    if name:
        sections.append(f"Your name is {name}.")
    instructions = agent_context.get("instructions") or agent_context.get("systemPrompt")
    if instructions:
        sections.append(f"## Your Instructions\n\n{instructions}")
    description = agent_context.get("description")
    if description:
        sections.append(f"## About You\n\n{description}")
    return sections


def build_system_prompt(
    chat_type: ChatType,
    current_date: str,
    model: str,
    tool_names: list[str] | None = None,
    entity_context: dict[str, Any] | None = None,
    agent_management: bool = False,
) -> str:
    """Build the system prompt for one run.

    Args:
        chat_type: Chat type deciding the role framing and state-tool guidance
        current_date: Human-readable current date and time
        model: Model serving the run
        tool_names: Names of the tools offered to the model
        entity_context: Context dict of the agent/workflow/goal/tool in focus
        agent_management: True for the agent-builder conversation

    Returns:
        Prompt text; the loop prepends it to any existing system message
    """
    config = get_chat_config(chat_type)
    role = config.role_description
    if agent_management:
        role = "You are the agent builder. You help the user create and configure AI agents."

    sections = [role, f"Current date: {current_date}\nModel: {model}"]

    if chat_type == ChatType.AGENT and entity_context and not agent_management:
        sections.extend(_agent_sections(entity_context))
    elif config.subject and entity_context:
        sections.append(_render_context(f"Current {config.subject.title()}", entity_context))

    if tool_names:
        sections.append(
            "## Available Tools\n\n" + _render_bulleted_list(sorted(tool_names), MAX_TOOLS_IN_PROMPT, "tools")
        )
        sections.append(TOOL_USE_GUIDANCE)

        subject = "agent" if agent_management else config.subject
        if subject and f"update_{subject}_state" in tool_names:
            sections.append(STATE_TOOL_GUIDANCE.format(subject=subject))

    return "\n\n".join(sections)


__all__ = ["build_system_prompt"]
