"""
Per-request context for log correlation.

Each HTTP request and each WebSocket connection gets a ``RequestContext`` in a
context variable. The chat loop fills in the conversation, user and execution
ids once it knows them, and every log line and error envelope written while
serving that request carries them.
"""

from __future__ import annotations

import secrets
import time

from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

_request_context: ContextVar[RequestContext | None] = ContextVar("request_context", default=None)

REQUEST_ID_HEADER = "X-Request-ID"


@dataclass
class RequestContext:
    request_id: str
    transport: str
    path: str
    started: float = field(default_factory=time.monotonic)
    conversation_id: str | None = None
    user_id: str | None = None
    execution_id: str | None = None

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.started) * 1000

    def to_log_context(self) -> dict[str, Any]:
        """Non-empty ids plus timing, ready to pass as logging extras."""
        ctx: dict[str, Any] = {
            "request_id": self.request_id,
            "transport": self.transport,
            "path": self.path,
            "elapsed_ms": round(self.elapsed_ms, 2),
        }
        for key in ("conversation_id", "user_id", "execution_id"):
            if value := getattr(self, key):
                ctx[key] = value
        return ctx


def get_request_context() -> RequestContext | None:
    return _request_context.get()


def get_request_id() -> str | None:
    ctx = _request_context.get()
    return ctx.request_id if ctx else None


def update_request_context(
    conversation_id: str | None = None, user_id: str | None = None, execution_id: str | None = None
) -> None:
    """Record ids learned mid-request; None leaves a field unchanged."""
    ctx = _request_context.get()
    if ctx is None:
        return
    ctx.conversation_id = conversation_id or ctx.conversation_id
    ctx.user_id = user_id or ctx.user_id
    ctx.execution_id = execution_id or ctx.execution_id


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Open a context per HTTP request and echo its id in the response headers."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        context = RequestContext(
            request_id=request.headers.get(REQUEST_ID_HEADER) or f"req_{secrets.token_hex(8)}",
            transport="http",
            path=request.url.path,
            user_id=request.headers.get("X-User-Id"),
        )
        token = _request_context.set(context)
        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = context.request_id
            response.headers["X-Response-Time"] = f"{context.elapsed_ms:.2f}ms"
            return response
        finally:
            _request_context.reset(token)


def create_websocket_context(conversation_id: str, user_id: str | None = None) -> RequestContext:
    """Open a context for the lifetime of one WebSocket connection."""
    context = RequestContext(
        request_id=f"ws_{secrets.token_hex(8)}",
        transport="websocket",
        path=f"/ws/chat/{conversation_id}",
        conversation_id=conversation_id,
        user_id=user_id,
    )
    _request_context.set(context)
    return context


__all__ = [
    "REQUEST_ID_HEADER",
    "RequestContext",
    "RequestContextMiddleware",
    "create_websocket_context",
    "get_request_context",
    "get_request_id",
    "update_request_context",
]
