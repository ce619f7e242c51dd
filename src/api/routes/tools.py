from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from api.dependencies import Catalog
from models.api_models import ToolInfo, ToolListResponse

router = APIRouter()


@router.get("/api/tools", response_model=ToolListResponse)
async def list_tools(catalog: Catalog) -> ToolListResponse:
    """List every registered tool (native, plugin and chat-type tools)."""
    tools = [
        ToolInfo(
            name=tool.name,
            description=tool.description,
            source=tool.source,
            parameters=tool.parameters,
            auth_required=tool.auth_required,
        )
        for tool in catalog.all_tools()
    ]
    return ToolListResponse(tools=tools, count=len(tools))


@router.post("/api/tools/reload")
async def reload_tools(catalog: Catalog) -> dict[str, Any]:
    """Rescan the plugin directory."""
    plugin_count = await catalog.reload()
    return {"success": True, "pluginTools": plugin_count, "totalTools": len(catalog.all_tools())}
