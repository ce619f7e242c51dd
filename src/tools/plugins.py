"""
Hot-reloadable plugin tools.

Each plugin is a directory under the plugin root containing:

- ``manifest.json``: ``{"name", "description", "parameters", "authRequired"?, "authProvider"?}``
- ``tool.py``: module exposing ``execute(params, context)`` (sync or async)

``reload()`` rescans the directory and atomically swaps the registered set.
Runs in flight keep the tools they resolved; reloads are serialized by a lock.
"""

from __future__ import annotations

import asyncio
import importlib.util
import inspect
import json
import sys

from pathlib import Path
from typing import Any

from core.run_context import RunContext
from tools.registry import ToolDefinition
from utils.logger import logger

MANIFEST_FILE = "manifest.json"
ENTRYPOINT_FILE = "tool.py"


class PluginLoadError(Exception):
    """A plugin directory could not be turned into a tool."""


def _make_handler(plugin_name: str, execute: Any) -> Any:
    async def handler(args: dict[str, Any], run_context: RunContext) -> Any:
        result = execute(args, run_context.to_tool_context())
        if inspect.isawaitable(result):
            result = await result
        return result

    handler.__name__ = f"plugin_{plugin_name}"
    return handler


def load_plugin(plugin_dir: Path) -> ToolDefinition:
    """Load one plugin directory.

    Raises:
        PluginLoadError: If the manifest or entrypoint is missing or invalid
    """
    manifest_path = plugin_dir / MANIFEST_FILE
    entry_path = plugin_dir / ENTRYPOINT_FILE
    if not manifest_path.is_file() or not entry_path.is_file():
        raise PluginLoadError(f"{plugin_dir.name}: expected {MANIFEST_FILE} and {ENTRYPOINT_FILE}")

    try:
        manifest = json.loads(manifest_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise PluginLoadError(f"{plugin_dir.name}: invalid manifest: {e}") from e

    name = manifest.get("name")
    if not isinstance(name, str) or not name:
        raise PluginLoadError(f"{plugin_dir.name}: manifest has no name")

    module_name = f"agnt_plugins.{plugin_dir.name}"
    spec = importlib.util.spec_from_file_location(module_name, entry_path)
    if spec is None or spec.loader is None:
        raise PluginLoadError(f"{plugin_dir.name}: cannot import {ENTRYPOINT_FILE}")

    module = importlib.util.module_from_spec(spec)
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        raise PluginLoadError(f"{plugin_dir.name}: import failed: {e}") from e
    sys.modules[module_name] = module

    execute = getattr(module, "execute", None)
    if not callable(execute):
        raise PluginLoadError(f"{plugin_dir.name}: {ENTRYPOINT_FILE} does not define execute(params, context)")

    return ToolDefinition(
        name=name,
        description=manifest.get("description", ""),
        parameters=manifest.get("parameters") or {"type": "object", "properties": {}},
        handler=_make_handler(name, execute),
        source="plugin",
        auth_required=bool(manifest.get("authRequired", False)),
        auth_provider=manifest.get("authProvider"),
        plugin_name=plugin_dir.name,
    )


class PluginToolRegistry:
    """Plugin tools discovered under a directory."""

    def __init__(self, plugin_dir: Path):
        self.plugin_dir = plugin_dir
        self._tools: dict[str, ToolDefinition] = {}
        self._lock = asyncio.Lock()

    def tools(self) -> list[ToolDefinition]:
        return list(self._tools.values())

    def get(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    def _scan(self) -> dict[str, ToolDefinition]:
        found: dict[str, ToolDefinition] = {}
        if not self.plugin_dir.is_dir():
            logger.debug(f"Plugin directory {self.plugin_dir} does not exist")
            return found

        for entry in sorted(self.plugin_dir.iterdir()):
            if not entry.is_dir() or entry.name.startswith((".", "_")):
                continue
            try:
                tool = load_plugin(entry)
            except PluginLoadError as e:
                logger.warning(f"Skipping plugin: {e}")
                continue
            if tool.name in found:
                logger.warning(f"Duplicate plugin tool name '{tool.name}' in {entry.name}, keeping first")
                continue
            found[tool.name] = tool
        return found

    async def reload(self) -> int:
        """Rescan the plugin directory; returns the number of loaded tools."""
        async with self._lock:
            tools = await asyncio.to_thread(self._scan)
            self._tools = tools
        logger.info(f"Loaded {len(tools)} plugin tool(s) from {self.plugin_dir}")
        return len(tools)


__all__ = ["PluginLoadError", "PluginToolRegistry", "load_plugin"]
