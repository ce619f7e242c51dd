from __future__ import annotations

from fastapi import APIRouter

from api.dependencies import ConversationLogs
from api.middleware.exception_handlers import ConversationNotFoundError
from models.api_models import ConversationLogResponse

router = APIRouter()


@router.get("/api/conversations/{conversation_id}", response_model=ConversationLogResponse)
async def get_conversation(conversation_id: str, logs: ConversationLogs) -> ConversationLogResponse:
    """Return the persisted log of a conversation."""
    log = await logs.get_conversation_log(conversation_id)
    if log is None:
        raise ConversationNotFoundError(conversation_id)
    return ConversationLogResponse(**log)
