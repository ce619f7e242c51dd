"""
WebSocket error frames for agnt-core.

Errors that happen outside a run (bad frames, rejected connections) are sent
as ``WebSocketError`` frames; errors inside a run travel as ``error`` events.
"""

from __future__ import annotations

import contextlib

from fastapi import WebSocket

from api.middleware.request_context import get_request_id
from models.error_models import ErrorCode, WebSocketError
from utils.logger import logger


class WSCloseCode:
    """WebSocket close codes (RFC 6455 plus application range)."""

    NORMAL = 1000
    GOING_AWAY = 1001
    POLICY_VIOLATION = 1008
    INTERNAL_ERROR = 1011
    TRY_AGAIN_LATER = 1013

    INVALID_CONVERSATION = 4400
    IDLE_TIMEOUT = 4000


async def send_ws_error(
    websocket: WebSocket,
    code: ErrorCode,
    message: str,
    conversation_id: str | None = None,
    recoverable: bool = True,
) -> None:
    """Send a standardized error frame; a closed socket is only logged."""
    error = WebSocketError(
        code=code,
        message=message,
        request_id=get_request_id(),
        conversation_id=conversation_id,
        recoverable=recoverable,
    )
    try:
        await websocket.send_json(error.to_dict())
    except Exception as e:
        # Connection may already be closed
        logger.warning(f"Failed to send WebSocket error: {e}")


async def close_with_error(
    websocket: WebSocket,
    code: ErrorCode,
    message: str,
    close_code: int,
    conversation_id: str | None = None,
) -> None:
    """Send a final error frame and close the connection."""
    await send_ws_error(websocket, code, message, conversation_id=conversation_id, recoverable=False)
    with contextlib.suppress(Exception):
        await websocket.close(code=close_code, reason=message.encode("utf-8")[:123].decode("utf-8", errors="ignore"))


__all__ = ["WSCloseCode", "close_with_error", "send_ws_error"]
