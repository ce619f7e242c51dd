from __future__ import annotations

from typing import Annotated

import asyncpg

from fastapi import Depends, Header, Request

from api.middleware.exception_handlers import DatabaseError
from api.services.auth_service import strip_bearer, user_id_from_token
from api.services.chat_service import ChatService
from api.services.conversation_log_service import ConversationLogService
from api.websocket.manager import WebSocketManager
from models.error_models import ErrorCode
from tools.registry import ToolCatalog


async def get_db(request: Request) -> asyncpg.Pool:
    """Get the database pool; raises when the app started without one."""
    pool = getattr(request.app.state, "db_pool", None)
    if pool is None:
        raise DatabaseError("Database is not available", code=ErrorCode.DATABASE_UNAVAILABLE)
    return pool


def get_chat_service(request: Request) -> ChatService:
    return request.app.state.chat_service


def get_tool_catalog(request: Request) -> ToolCatalog:
    return request.app.state.tool_catalog


def get_ws_manager(request: Request) -> WebSocketManager:
    return request.app.state.ws_manager


def get_conversation_log_service(db: Annotated[asyncpg.Pool, Depends(get_db)]) -> ConversationLogService:
    return ConversationLogService(db)


def get_auth_token(authorization: Annotated[str | None, Header()] = None) -> str | None:
    """Bearer credential forwarded to tools on behalf of the caller."""
    return strip_bearer(authorization)


def get_user_id(
    auth_token: Annotated[str | None, Depends(get_auth_token)],
    x_user_id: Annotated[str | None, Header()] = None,
) -> str | None:
    """Caller id from ``X-User-Id``, falling back to the bearer token's claims."""
    return x_user_id or user_id_from_token(auth_token)


# Type aliases for cleaner route signatures
DB = Annotated[asyncpg.Pool, Depends(get_db)]
Chat = Annotated[ChatService, Depends(get_chat_service)]
Catalog = Annotated[ToolCatalog, Depends(get_tool_catalog)]
WSManager = Annotated[WebSocketManager, Depends(get_ws_manager)]
ConversationLogs = Annotated[ConversationLogService, Depends(get_conversation_log_service)]
AuthToken = Annotated[str | None, Depends(get_auth_token)]
UserId = Annotated[str | None, Depends(get_user_id)]
