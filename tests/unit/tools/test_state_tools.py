"""Tests for chat-type state tools."""

from __future__ import annotations

from typing import Any

import pytest

from core.chat_types import ChatType
from core.run_context import RunContext
from tools.registry import ToolDefinition
from tools.state_tools import build_state_tools, field_update_events


def by_name(kind: str) -> dict[str, ToolDefinition]:
    return {tool.name: tool for tool in build_state_tools(kind)}


@pytest.fixture
def workflow_context() -> RunContext:
    return RunContext(
        conversation_id="conv-wf",
        provider="openai",
        model="gpt-4o",
        chat_type=ChatType.WORKFLOW,
        workflow_id="wf-1",
        workflow_context={"name": "Nightly report", "nodes": 3},
        workflow_state={"name": "Nightly report", "schedule": "0 2 * * *"},
    )


def test_tool_names_and_sources() -> None:
    tools = build_state_tools("goal")
    assert [t.name for t in tools] == ["get_goal_context", "get_goal_state", "update_goal_state"]
    assert {t.source for t in tools} == {"chat"}
    assert tools[2].parameters["required"] == ["updates"]


@pytest.mark.asyncio
async def test_get_context(workflow_context: RunContext) -> None:
    result = await by_name("workflow")["get_workflow_context"].handler({}, workflow_context)
    assert result == {"success": True, "workflowId": "wf-1", "context": {"name": "Nightly report", "nodes": 3}}


@pytest.mark.asyncio
async def test_get_context_missing(run_context: RunContext) -> None:
    result = await by_name("goal")["get_goal_context"].handler({}, run_context)
    assert result == {"success": False, "error": "No goal context was provided for this conversation."}


@pytest.mark.asyncio
async def test_get_state_defaults_to_empty(run_context: RunContext) -> None:
    result = await by_name("tool")["get_tool_state"].handler({}, run_context)
    assert result == {"success": True, "toolId": None, "state": {}}


@pytest.mark.asyncio
async def test_update_state(workflow_context: RunContext) -> None:
    original = workflow_context.workflow_state
    tools = by_name("workflow")

    result = await tools["update_workflow_state"].handler({"updates": {"schedule": "0 3 * * *"}}, workflow_context)

    expected_state = {"name": "Nightly report", "schedule": "0 3 * * *"}
    assert result["updatedFields"] == ["schedule"]
    assert result["state"] == expected_state
    assert result["message"] == "Updated 1 workflow field(s)."
    assert result["frontendEvents"] == [
        {"type": "workflow-field-updated", "data": {"field": "schedule", "value": "0 3 * * *"}},
        {"type": "workflow-state-updated", "data": {"id": "wf-1", "state": expected_state}},
    ]
    assert original == {"name": "Nightly report", "schedule": "0 2 * * *"}

    follow_up = await tools["get_workflow_state"].handler({}, workflow_context)
    assert follow_up["state"] == expected_state


@pytest.mark.asyncio
async def test_update_state_requires_changes(workflow_context: RunContext) -> None:
    result = await by_name("workflow")["update_workflow_state"].handler({"updates": {}}, workflow_context)
    assert result == {"success": False, "error": "No updates provided."}


def test_field_update_events() -> None:
    events: list[dict[str, Any]] = field_update_events("agent", {"name": "Scout", "model": "gpt-4o"})
    assert [e["data"]["field"] for e in events] == ["name", "model"]
    assert {e["type"] for e in events} == {"agent-field-updated"}
