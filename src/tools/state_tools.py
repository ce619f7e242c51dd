"""
Chat-type state tools.

Agent-management, workflow, goal and tool conversations edit an entity the
client is showing. These tools let the model read that entity's context and
state and propose updates; updates are applied to the run's copy of the state
and reported back as ``frontendEvents`` the loop forwards to the client, which
owns persistence.
"""

from __future__ import annotations

import copy

from typing import Any

from core.run_context import RunContext
from tools.registry import ToolDefinition


def field_update_events(kind: str, updates: dict[str, Any]) -> list[dict[str, Any]]:
    """One ``<kind>-field-updated`` event per changed top-level field."""
    return [{"type": f"{kind}-field-updated", "data": {"field": key, "value": value}} for key, value in updates.items()]


def build_state_tools(kind: str) -> list[ToolDefinition]:
    """Create ``get_<kind>_context``, ``get_<kind>_state`` and ``update_<kind>_state`` tools."""

    async def get_context(args: dict[str, Any], run_context: RunContext) -> dict[str, Any]:
        context = run_context.context_for(kind)
        if context is None:
            return {"success": False, "error": f"No {kind} context was provided for this conversation."}
        return {"success": True, f"{kind}Id": run_context.id_for(kind), "context": context}

    async def get_state(args: dict[str, Any], run_context: RunContext) -> dict[str, Any]:
        return {"success": True, f"{kind}Id": run_context.id_for(kind), "state": run_context.state_for(kind) or {}}

    async def update_state(args: dict[str, Any], run_context: RunContext) -> dict[str, Any]:
        updates = args["updates"]
        if not updates:
            return {"success": False, "error": "No updates provided."}

        state = copy.deepcopy(run_context.state_for(kind) or {})
        state.update(updates)
        run_context.set_state(kind, state)

        events = field_update_events(kind, updates)
        events.append({"type": f"{kind}-state-updated", "data": {"id": run_context.id_for(kind), "state": state}})
        return {
            "success": True,
            f"{kind}Id": run_context.id_for(kind),
            "updatedFields": list(updates),
            "state": state,
            "message": f"Updated {len(updates)} {kind} field(s).",
            "frontendEvents": events,
        }

    return [
        ToolDefinition(
            name=f"get_{kind}_context",
            description=f"Get the context of the {kind} being edited in this conversation.",
            parameters={"type": "object", "properties": {}, "required": []},
            handler=get_context,
            source="chat",
        ),
        ToolDefinition(
            name=f"get_{kind}_state",
            description=f"Get the current editable state of the {kind} (including changes made in this conversation).",
            parameters={"type": "object", "properties": {}, "required": []},
            handler=get_state,
            source="chat",
        ),
        ToolDefinition(
            name=f"update_{kind}_state",
            description=(
                f"Update fields of the {kind} being edited. Pass only the fields to change; "
                "the user's editor is updated immediately."
            ),
            parameters={
                "type": "object",
                "properties": {
                    "updates": {
                        "type": "object",
                        "description": f"Map of {kind} field names to their new values.",
                    },
                },
                "required": ["updates"],
            },
            handler=update_state,
            source="chat",
        ),
    ]


__all__ = ["build_state_tools", "field_update_events"]
