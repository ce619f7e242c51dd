from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request

from core.constants import get_settings
from utils.db_utils import check_pool_health

router = APIRouter()


@router.get("/health")
async def health_check(request: Request) -> dict[str, Any]:
    """Health check with database, WebSocket and tool catalog status."""
    pool = getattr(request.app.state, "db_pool", None)
    db_health = await check_pool_health(pool) if pool is not None else {"healthy": False, "error": "not configured"}

    ws_manager = getattr(request.app.state, "ws_manager", None)
    ws_stats = ws_manager.get_stats() if ws_manager else {"error": "not initialized"}

    catalog = getattr(request.app.state, "tool_catalog", None)
    tool_count = len(catalog.all_tools()) if catalog is not None else 0

    # The engine serves chats without a database; persistence is then skipped
    is_healthy = not ws_stats.get("shutting_down", False)

    return {
        "status": "healthy" if is_healthy and db_health["healthy"] else "degraded" if is_healthy else "unhealthy",
        "version": get_settings().app_version,
        "database": db_health,
        "websocket": ws_stats,
        "tools": {"count": tool_count},
    }


@router.get("/health/live")
async def liveness_check() -> dict[str, Any]:
    """Kubernetes-style liveness check (just confirms process is running)."""
    return {"alive": True}
