from __future__ import annotations

import asyncio

from collections.abc import AsyncIterator
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from fastapi.responses import StreamingResponse
from pydantic import ValidationError

from api.dependencies import AuthToken, Chat, UserId
from api.middleware.exception_handlers import AppException
from api.middleware.request_context import create_websocket_context
from api.services.auth_service import strip_bearer, user_id_from_token
from api.services.chat_service import ChatService
from api.websocket.errors import WSCloseCode, send_ws_error
from api.websocket.manager import WebSocketManager
from api.websocket.task_manager import CancellationToken
from models.api_models import ChatRequest
from models.error_models import ErrorCode
from models.event_models import StreamEvent
from utils.logger import logger
from utils.validation import validate_conversation_id

router = APIRouter()

#: Seconds between keepalive pings on chat WebSockets
WS_PING_INTERVAL = 30.0

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}

# Runs outlive a disconnected SSE client until they finish their bookkeeping;
# keep references so they are not garbage collected (RUF006)
_background_tasks: set[asyncio.Task[Any]] = set()


def _keep(task: asyncio.Task[Any]) -> None:
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)


def _check_conversation_id(conversation_id: str | None) -> None:
    if conversation_id and not validate_conversation_id(conversation_id):
        raise AppException(
            code=ErrorCode.VALIDATION_INVALID_FORMAT,
            message="Invalid conversationId format",
            details={"conversation_id": conversation_id},
        )


@router.post("/api/chat")
async def chat_stream(body: ChatRequest, chat: Chat, auth_token: AuthToken, user_id: UserId) -> StreamingResponse:
    """Run one chat request and stream its events as Server-Sent Events.

    The run executes in its own task; if the client disconnects, the run's
    cancellation token is fired and the run finalizes as failed.
    """
    _check_conversation_id(body.conversation_id)

    token = CancellationToken()
    queue: asyncio.Queue[StreamEvent | None] = asyncio.Queue()

    async def emit(event: StreamEvent) -> None:
        await queue.put(event)

    async def run() -> None:
        try:
            await chat.run_chat(body, emit, user_id=user_id, auth_token=auth_token, cancellation_token=token)
        finally:
            queue.put_nowait(None)

    async def event_stream() -> AsyncIterator[str]:
        task = asyncio.create_task(run())
        _keep(task)
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield event.to_sse()
        finally:
            if not task.done():
                logger.info("SSE client disconnected, cancelling run")
                _keep(asyncio.create_task(token.cancel("client disconnected")))

    return StreamingResponse(event_stream(), media_type="text/event-stream", headers=SSE_HEADERS)


@router.websocket("/ws/chat/{conversation_id}")
async def chat_websocket(websocket: WebSocket, conversation_id: str) -> None:
    """WebSocket endpoint: ``message`` frames start runs, ``interrupt`` cancels the active one."""
    ws_manager: WebSocketManager = websocket.app.state.ws_manager
    chat_service: ChatService = websocket.app.state.chat_service

    if not validate_conversation_id(conversation_id):
        await websocket.close(code=WSCloseCode.INVALID_CONVERSATION)
        return
    if not await ws_manager.connect(websocket, conversation_id):
        await websocket.close(code=WSCloseCode.TRY_AGAIN_LATER)
        return

    auth_token = strip_bearer(websocket.headers.get("authorization") or websocket.query_params.get("token"))
    user_id = websocket.headers.get("x-user-id") or user_id_from_token(auth_token)
    create_websocket_context(conversation_id, user_id)

    keepalive_task = asyncio.create_task(_keepalive(websocket))
    try:
        async for data in websocket.iter_json():
            await ws_manager.touch(websocket)
            msg_type = data.get("type") if isinstance(data, dict) else None

            if msg_type == "message":
                await _start_run(websocket, data, conversation_id, chat_service, ws_manager, user_id, auth_token)
            elif msg_type == "interrupt":
                logger.info(f"Interrupt message received for conversation {conversation_id}")
                if not await ws_manager.interrupt(conversation_id):
                    logger.info(f"No active run to interrupt for conversation {conversation_id}")
            elif msg_type == "pong":
                continue
            else:
                await send_ws_error(
                    websocket, ErrorCode.WS_MESSAGE_INVALID, f"Unknown message type: {msg_type}", conversation_id
                )
    except WebSocketDisconnect:
        pass  # Normal client disconnect
    except RuntimeError as e:
        # Handle "WebSocket is not connected" errors gracefully
        if "not connected" not in str(e).lower():
            raise
    finally:
        keepalive_task.cancel()
        await ws_manager.disconnect(websocket, conversation_id)
        if conversation_id not in ws_manager.connections:
            await ws_manager.interrupt(conversation_id, "client disconnected")


async def _start_run(
    websocket: WebSocket,
    data: dict[str, Any],
    conversation_id: str,
    chat_service: ChatService,
    ws_manager: WebSocketManager,
    user_id: str | None,
    auth_token: str | None,
) -> None:
    """Validate a ``message`` frame and start its run as a background task."""
    if ws_manager.has_active_run(conversation_id):
        await send_ws_error(
            websocket,
            ErrorCode.WS_MESSAGE_INVALID,
            "A run is already in progress for this conversation. Send an interrupt first.",
            conversation_id,
        )
        return

    payload = {key: value for key, value in data.items() if key != "type"}
    payload["conversationId"] = conversation_id
    try:
        request = ChatRequest.model_validate(payload)
    except ValidationError as e:
        await send_ws_error(
            websocket,
            ErrorCode.WS_MESSAGE_INVALID,
            f"Invalid chat message: {e.errors()[0]['msg'] if e.errors() else e}",
            conversation_id,
        )
        return

    token = CancellationToken()
    task = asyncio.create_task(
        chat_service.run_chat(
            request,
            ws_manager.event_sink(conversation_id),
            user_id=user_id,
            auth_token=auth_token,
            cancellation_token=token,
        )
    )
    ws_manager.register_run(conversation_id, token, task)


async def _keepalive(websocket: WebSocket) -> None:
    """Send periodic ping frames."""
    while True:
        await asyncio.sleep(WS_PING_INTERVAL)
        try:
            await websocket.send_json({"type": "ping"})
        except Exception:
            break
