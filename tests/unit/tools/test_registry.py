"""Tests for the tool catalog."""

from __future__ import annotations

from typing import Any

import pytest

from core.chat_types import AGENT_MANAGEMENT_ID, ChatType
from core.run_context import RunContext
from tools.registry import ToolCatalog, ToolDefinition, build_default_catalog, dedupe_schemas


async def handler(args: dict[str, Any], run_context: RunContext) -> dict[str, Any]:
    return {"success": True}


def tool(name: str, source: Any = "native") -> ToolDefinition:
    return ToolDefinition(name, f"{name} tool", {"type": "object", "properties": {}}, handler, source=source)


class FakePluginRegistry:
    def __init__(self, tools: list[ToolDefinition]):
        self._tools = tools
        self.reloads = 0

    def tools(self) -> list[ToolDefinition]:
        return list(self._tools)

    async def reload(self) -> int:
        self.reloads += 1
        return len(self._tools)


@pytest.fixture
def catalog() -> ToolCatalog:
    plugins = FakePluginRegistry([tool("slack-post", "plugin"), tool("web_search", "plugin")])
    return ToolCatalog(
        [tool("web_search"), tool("read_file")],
        plugins,  # type: ignore[arg-type]
        {ChatType.AGENT: [tool("update_agent_state", "chat")], ChatType.WORKFLOW: [tool("get_workflow_state", "chat")]},
    )


def context(chat_type: ChatType = ChatType.ORCHESTRATOR, agent_id: str | None = None) -> RunContext:
    return RunContext(conversation_id="c", provider="openai", model="gpt-4o", chat_type=chat_type, agent_id=agent_id)


class TestToolsFor:
    """Tests for per-run tool selection."""

    def test_orchestrator_sees_native_then_plugins(self, catalog: ToolCatalog) -> None:
        tools = catalog.tools_for(context())
        assert [t.name for t in tools] == ["web_search", "read_file", "slack-post"]
        assert tools[0].source == "native"

    def test_workflow_sees_only_its_tools(self, catalog: ToolCatalog) -> None:
        assert [t.name for t in catalog.tools_for(context(ChatType.WORKFLOW))] == ["get_workflow_state"]

    def test_agent_management_uses_agent_tools(self, catalog: ToolCatalog) -> None:
        names = [t.name for t in catalog.tools_for(context(ChatType.AGENT, AGENT_MANAGEMENT_ID))]
        assert names == ["update_agent_state"]

    def test_configured_agent_uses_general_tools(self, catalog: ToolCatalog) -> None:
        names = [t.name for t in catalog.tools_for(context(ChatType.AGENT, "agent-123"))]
        assert "update_agent_state" not in names
        assert "web_search" in names

    def test_goal_without_chat_tools_falls_back(self, catalog: ToolCatalog) -> None:
        assert "read_file" in [t.name for t in catalog.tools_for(context(ChatType.GOAL))]


class TestResolve:
    """Tests for name resolution."""

    def test_exact_and_dashed(self, catalog: ToolCatalog) -> None:
        assert catalog.resolve("read_file", context()).name == "read_file"
        assert catalog.resolve("slack_post", context()).name == "slack-post"

    def test_invisible_tool_not_resolved(self, catalog: ToolCatalog) -> None:
        assert catalog.resolve("update_agent_state", context()) is None


def test_schemas_and_dedupe(catalog: ToolCatalog) -> None:
    schemas = catalog.schemas_for(context())
    assert schemas[0] == {
        "type": "function",
        "function": {"name": "web_search", "description": "web_search tool", "parameters": {"type": "object", "properties": {}}},
    }
    duplicated = [schemas[0], schemas[0], {"name": "anthropic_style"}]
    assert len(dedupe_schemas(duplicated)) == 2


@pytest.mark.asyncio
async def test_reload_and_all_tools(catalog: ToolCatalog) -> None:
    assert await catalog.reload() == 2
    assert len(catalog.all_tools()) == 6
    assert await ToolCatalog([tool("a")]).reload() == 0


def test_default_catalog() -> None:
    catalog = build_default_catalog()
    native = {t.name for t in catalog.tools_for(context())}
    assert {"web_search", "web_scrape", "execute_python_code", "list_files", "read_file", "write_file"} <= native
    goal_tools = {t.name for t in catalog.tools_for(context(ChatType.GOAL))}
    assert goal_tools == {"get_goal_context", "get_goal_state", "update_goal_state"}
