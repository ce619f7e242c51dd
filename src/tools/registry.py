"""
Tool registry for the orchestration loop.

A ``ToolCatalog`` is injected into each run. It combines three sources:

- native built-in tools (web search, scraping, code execution, files);
- the hot-reloadable plugin registry;
- chat-type tool sets (state tools for agent-management, workflow, goal and
  tool conversations).

The catalog decides which tools a run sees and resolves a model-issued name
to its definition.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal

from core.chat_types import AGENT_MANAGEMENT_ID, ChatType
from core.run_context import RunContext
from utils.logger import logger

if TYPE_CHECKING:
    from tools.plugins import PluginToolRegistry

# Handlers receive decoded arguments and the run context; they may return
# JSON text or any JSON-serializable value.
ToolHandler = Callable[[dict[str, Any], RunContext], Awaitable[Any]]

ToolSource = Literal["native", "plugin", "chat"]


@dataclass(frozen=True, slots=True)
class ToolDefinition:
    """A callable tool and the schema the model sees.

    Attributes:
        name: Unique tool name
        description: Description shown to the model
        parameters: JSON-schema object for the arguments
        handler: Async callable executing the tool
        source: Where the tool comes from
        auth_required: Whether the tool needs a delegated OAuth token
        auth_provider: OAuth provider key used to look the token up
        plugin_name: Owning plugin for plugin tools
    """

    name: str
    description: str
    parameters: dict[str, Any]
    handler: ToolHandler
    source: ToolSource = "native"
    auth_required: bool = False
    auth_provider: str | None = None
    plugin_name: str | None = None

    def to_schema(self) -> dict[str, Any]:
        """OpenAI-style function tool schema (adapters convert for other vendors)."""
        return {
            "type": "function",
            "function": {"name": self.name, "description": self.description, "parameters": self.parameters},
        }


def dedupe_schemas(schemas: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Drop schemas whose function name was already seen, keeping the first."""
    seen: set[str] = set()
    unique = []
    for schema in schemas:
        name = (schema.get("function") or {}).get("name") or schema.get("name")
        if name and name not in seen:
            seen.add(name)
            unique.append(schema)
    return unique


class ToolCatalog:
    """Resolves the tool set for a run and looks tools up by name."""

    def __init__(
        self,
        native_tools: list[ToolDefinition],
        plugin_registry: PluginToolRegistry | None = None,
        chat_tools: dict[ChatType, list[ToolDefinition]] | None = None,
    ):
        self._native = {tool.name: tool for tool in native_tools}
        self.plugin_registry = plugin_registry
        self._chat_tools = {
            chat_type: {tool.name: tool for tool in tools} for chat_type, tools in (chat_tools or {}).items()
        }

    def _uses_chat_tools(self, run_context: RunContext) -> bool:
        if run_context.chat_type == ChatType.AGENT:
            return run_context.agent_id == AGENT_MANAGEMENT_ID
        return run_context.chat_type in self._chat_tools

    def tools_for(self, run_context: RunContext) -> list[ToolDefinition]:
        """Tools visible to a run, de-duplicated by name (chat-type tools win, then native, then plugins)."""
        if self._uses_chat_tools(run_context):
            return list(self._chat_tools.get(run_context.chat_type, {}).values())

        tools = dict(self._native)
        if self.plugin_registry is not None:
            for tool in self.plugin_registry.tools():
                tools.setdefault(tool.name, tool)
        return list(tools.values())

    def schemas_for(self, run_context: RunContext) -> list[dict[str, Any]]:
        return dedupe_schemas([tool.to_schema() for tool in self.tools_for(run_context)])

    def resolve(self, name: str, run_context: RunContext) -> ToolDefinition | None:
        """Find a tool by name; plugin-style names are also tried with ``_`` replaced by ``-``."""
        visible = {tool.name: tool for tool in self.tools_for(run_context)}
        for candidate in (name, name.replace("_", "-")):
            if candidate in visible:
                return visible[candidate]
        return None

    def all_tools(self) -> list[ToolDefinition]:
        """Every registered tool across all sources (for listing)."""
        tools = list(self._native.values())
        if self.plugin_registry is not None:
            tools.extend(self.plugin_registry.tools())
        for chat_tools in self._chat_tools.values():
            tools.extend(chat_tools.values())
        return tools

    async def reload(self) -> int:
        """Rescan plugins; returns the number of plugin tools now registered."""
        if self.plugin_registry is None:
            return 0
        count = await self.plugin_registry.reload()
        logger.info(f"Tool catalog reloaded: {len(self._native)} native, {count} plugin tools")
        return count


def build_default_catalog(plugin_registry: PluginToolRegistry | None = None) -> ToolCatalog:
    """Catalog with every native tool and the chat-type state tools."""
    from tools.code_interpreter import CODE_INTERPRETER_TOOLS
    from tools.file_operations import FILE_TOOLS
    from tools.state_tools import build_state_tools
    from tools.web_tools import WEB_TOOLS

    native = [*WEB_TOOLS, *CODE_INTERPRETER_TOOLS, *FILE_TOOLS]
    chat_tools = {
        ChatType.AGENT: build_state_tools("agent"),
        ChatType.WORKFLOW: build_state_tools("workflow"),
        ChatType.GOAL: build_state_tools("goal"),
        ChatType.TOOL: build_state_tools("tool"),
    }
    return ToolCatalog(native, plugin_registry, chat_tools)


__all__ = ["ToolCatalog", "ToolDefinition", "ToolHandler", "build_default_catalog", "dedupe_schemas"]
