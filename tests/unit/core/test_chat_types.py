"""Tests for chat type detection and configuration."""

from __future__ import annotations

import pytest

from core.chat_types import ChatType, detect_chat_type, execution_agent_name, get_chat_config


@pytest.mark.parametrize(
    ("kwargs", "expected"),
    [
        ({}, ChatType.ORCHESTRATOR),
        ({"chat_type": "Workflow"}, ChatType.WORKFLOW),
        ({"chat_type": "suggestions"}, ChatType.ORCHESTRATOR),
        ({"agent_id": "a-1"}, ChatType.AGENT),
        ({"workflow_id": "w-1"}, ChatType.WORKFLOW),
        ({"goal_id": "g-1"}, ChatType.GOAL),
        ({"tool_id": "t-1"}, ChatType.TOOL),
        ({"agent_id": "a-1", "goal_id": "g-1"}, ChatType.AGENT),
        ({"chat_type": "goal", "agent_id": "a-1"}, ChatType.GOAL),
    ],
)
def test_detect_chat_type(kwargs: dict[str, str], expected: ChatType) -> None:
    assert detect_chat_type(**kwargs) == expected


def test_config_subjects() -> None:
    assert get_chat_config(ChatType.ORCHESTRATOR).subject is None
    assert get_chat_config(ChatType.TOOL).subject == "tool"


def test_execution_agent_name() -> None:
    assert execution_agent_name(ChatType.AGENT, {"name": "Scout"}) == "Scout"
    assert execution_agent_name(ChatType.WORKFLOW, None) == "Workflow"
    assert execution_agent_name(ChatType.ORCHESTRATOR, {"description": "x"}) == "Orchestrator"
