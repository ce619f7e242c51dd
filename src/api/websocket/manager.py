"""
WebSocket connection registry keyed by conversation id.

Besides connections, the manager tracks the run active on each conversation
so an ``interrupt`` frame (or shutdown) can fire its cancellation token.
"""

from __future__ import annotations

import asyncio
import contextlib
import time

from dataclasses import dataclass
from typing import Any

from fastapi import WebSocket

from api.websocket.errors import WSCloseCode
from api.websocket.task_manager import CancellationToken
from models.event_models import EventSink, StreamEvent
from utils.logger import logger


@dataclass
class ActiveRun:
    """A run in flight on a conversation."""

    token: CancellationToken
    task: asyncio.Task[Any]


class WebSocketManager:
    """Manage WebSocket connections per conversation with idle timeout and connection limits."""

    def __init__(
        self,
        idle_timeout_seconds: float = 600.0,
        max_connections: int = 100,
        max_connections_per_conversation: int = 3,
    ) -> None:
        """Initialize the WebSocket manager.

        Args:
            idle_timeout_seconds: Close connections idle longer than this (default 10 min)
            max_connections: Maximum total connections allowed
            max_connections_per_conversation: Maximum connections per conversation
        """
        self.connections: dict[str, set[WebSocket]] = {}
        self.last_activity: dict[WebSocket, float] = {}
        self.active_runs: dict[str, ActiveRun] = {}
        self.idle_timeout = idle_timeout_seconds
        self.max_connections = max_connections
        self.max_connections_per_conversation = max_connections_per_conversation
        self._lock = asyncio.Lock()
        self._idle_checker_task: asyncio.Task[None] | None = None
        self._shutting_down = False

    async def connect(self, websocket: WebSocket, conversation_id: str) -> bool:
        """Accept and register a connection.

        Returns:
            True if the connection was accepted, False if rejected due to limits
        """
        async with self._lock:
            if self._shutting_down:
                logger.warning(f"Rejecting connection during shutdown for conversation {conversation_id}")
                return False

            if self.connection_count >= self.max_connections:
                logger.warning(f"Rejecting connection: max connections ({self.max_connections}) reached")
                return False

            existing = len(self.connections.get(conversation_id, set()))
            if existing >= self.max_connections_per_conversation:
                logger.warning(
                    f"Rejecting connection: conversation {conversation_id} at limit "
                    f"({self.max_connections_per_conversation})"
                )
                return False

            await websocket.accept()
            self.connections.setdefault(conversation_id, set()).add(websocket)
            self.last_activity[websocket] = time.monotonic()

            logger.info(
                f"WebSocket connected for conversation {conversation_id} "
                f"(total: {self.connection_count}, conversation: {existing + 1})"
            )
            return True

    async def disconnect(self, websocket: WebSocket, conversation_id: str) -> None:
        async with self._lock:
            if conversation_id in self.connections:
                self.connections[conversation_id].discard(websocket)
                if not self.connections[conversation_id]:
                    del self.connections[conversation_id]
            self.last_activity.pop(websocket, None)

    async def touch(self, websocket: WebSocket) -> None:
        """Update last activity time for a connection."""
        async with self._lock:
            if websocket in self.last_activity:
                self.last_activity[websocket] = time.monotonic()

    async def send(self, conversation_id: str, message: dict[str, Any]) -> None:
        """Send a JSON message to every connection of a conversation."""
        for ws in list(self.connections.get(conversation_id, set())):
            try:
                await ws.send_json(message)
            except Exception:  # noqa: PERF203
                await self.disconnect(ws, conversation_id)

    def event_sink(self, conversation_id: str) -> EventSink:
        """Event sink that forwards run events to a conversation's sockets."""

        async def emit(event: StreamEvent) -> None:
            await self.send(conversation_id, event.to_ws_message())

        return emit

    async def broadcast(self, message: dict[str, Any]) -> None:
        for conversation_id in list(self.connections.keys()):
            await self.send(conversation_id, message)

    # ------------------------------------------------------------------
    # Active runs
    # ------------------------------------------------------------------

    def has_active_run(self, conversation_id: str) -> bool:
        run = self.active_runs.get(conversation_id)
        return run is not None and not run.task.done()

    def register_run(self, conversation_id: str, token: CancellationToken, task: asyncio.Task[Any]) -> None:
        self.active_runs[conversation_id] = ActiveRun(token, task)
        task.add_done_callback(lambda t: self._clear_run(conversation_id, t))

    def _clear_run(self, conversation_id: str, task: asyncio.Task[Any]) -> None:
        run = self.active_runs.get(conversation_id)
        if run is not None and run.task is task:
            del self.active_runs[conversation_id]

    async def interrupt(self, conversation_id: str, reason: str = "interrupted by user") -> bool:
        """Fire the cancellation token of the conversation's active run.

        Returns:
            True if a run was interrupted
        """
        run = self.active_runs.get(conversation_id)
        if run is None or run.task.done():
            return False
        await run.token.cancel(reason)
        return True

    # ------------------------------------------------------------------
    # Idle checks and shutdown
    # ------------------------------------------------------------------

    async def start_idle_checker(self) -> None:
        """Start background task to close idle connections."""
        if self._idle_checker_task is None:
            self._idle_checker_task = asyncio.create_task(self._check_idle_connections())
            logger.info(f"WebSocket idle checker started (timeout: {self.idle_timeout}s)")

    async def stop_idle_checker(self) -> None:
        if self._idle_checker_task:
            self._idle_checker_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._idle_checker_task
            self._idle_checker_task = None
            logger.info("WebSocket idle checker stopped")

    async def _check_idle_connections(self) -> None:
        check_interval = min(60.0, self.idle_timeout / 2)
        while True:
            await asyncio.sleep(check_interval)
            await self._close_idle_connections()

    async def _close_idle_connections(self) -> None:
        """Close connections idle too long, unless their conversation has a run in flight."""
        now = time.monotonic()
        to_close: list[tuple[WebSocket, str]] = []

        async with self._lock:
            for conversation_id, websockets in list(self.connections.items()):
                if self.has_active_run(conversation_id):
                    continue
                for ws in list(websockets):
                    if now - self.last_activity.get(ws, now) > self.idle_timeout:
                        to_close.append((ws, conversation_id))

        # Close outside the lock to avoid deadlock
        for ws, conversation_id in to_close:
            logger.info(f"Closing idle WebSocket for conversation {conversation_id}")
            with contextlib.suppress(Exception):
                await ws.close(code=WSCloseCode.IDLE_TIMEOUT, reason="Idle timeout")
            await self.disconnect(ws, conversation_id)

    async def graceful_shutdown(self, timeout: float = 10.0) -> None:
        """Cancel active runs, notify clients and close every connection."""
        self._shutting_down = True
        logger.info(f"Initiating graceful WebSocket shutdown (timeout: {timeout}s)")
        await self.stop_idle_checker()

        for conversation_id in list(self.active_runs):
            await self.interrupt(conversation_id, "server shutdown")

        await self.broadcast({"type": "server_shutdown", "message": "Server is shutting down"})

        async with self._lock:
            all_connections = [(ws, cid) for cid, websockets in self.connections.items() for ws in websockets]

        async def close_connection(ws: WebSocket, conversation_id: str) -> None:
            with contextlib.suppress(Exception):
                await ws.close(code=WSCloseCode.GOING_AWAY, reason="Server shutdown")
            await self.disconnect(ws, conversation_id)

        if all_connections:
            try:
                await asyncio.wait_for(
                    asyncio.gather(*(close_connection(ws, cid) for ws, cid in all_connections)), timeout=timeout
                )
            except asyncio.TimeoutError:
                logger.warning(f"Timeout closing {len(all_connections)} WebSocket connections")

        logger.info(f"WebSocket shutdown complete (closed {len(all_connections)} connections)")

    @property
    def connection_count(self) -> int:
        return sum(len(ws_set) for ws_set in self.connections.values())

    def get_stats(self) -> dict[str, Any]:
        """Get connection statistics."""
        return {
            "total_connections": self.connection_count,
            "total_conversations": len(self.connections),
            "active_runs": sum(1 for cid in self.active_runs if self.has_active_run(cid)),
            "max_connections": self.max_connections,
            "max_per_conversation": self.max_connections_per_conversation,
            "idle_timeout": self.idle_timeout,
            "shutting_down": self._shutting_down,
        }


__all__ = ["ActiveRun", "WebSocketManager"]
