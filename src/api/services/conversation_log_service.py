"""
Conversation log persistence.

One row per conversation in ``conversation_logs``, upserted at the end of
every run. The initial prompt is written by the first run and kept.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import asyncpg

from utils.db_utils import with_retry


class ConversationLogService:
    """Reads and writes ``conversation_logs`` rows."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    @with_retry(max_attempts=3)
    async def upsert_conversation_log(
        self,
        conversation_id: str,
        user_id: str | None,
        initial_prompt: str | None,
        full_history: list[dict[str, Any]],
        final_response: str | None,
        tool_calls: list[dict[str, Any]],
        errors: list[dict[str, Any]] | None = None,
    ) -> None:
        """Insert or update the log for a conversation (``initial_prompt`` is kept from the first turn)."""
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO conversation_logs (
                    conversation_id, user_id, initial_prompt, full_history,
                    final_response, tool_calls, errors
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                ON CONFLICT (conversation_id) DO UPDATE SET
                    user_id = COALESCE(conversation_logs.user_id, EXCLUDED.user_id),
                    initial_prompt = COALESCE(conversation_logs.initial_prompt, EXCLUDED.initial_prompt),
                    full_history = EXCLUDED.full_history,
                    final_response = EXCLUDED.final_response,
                    tool_calls = EXCLUDED.tool_calls,
                    errors = EXCLUDED.errors,
                    updated_at = NOW()
                """,
                conversation_id,
                user_id,
                initial_prompt,
                full_history,
                final_response,
                tool_calls,
                errors or [],
            )

    async def get_conversation_log(self, conversation_id: str) -> dict[str, Any] | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT conversation_id, user_id, initial_prompt, full_history, final_response,
                       tool_calls, errors, created_at, updated_at
                FROM conversation_logs
                WHERE conversation_id = $1
                """,
                conversation_id,
            )
        if not row:
            return None
        return self._row_to_log(row)

    def _row_to_log(self, row: asyncpg.Record) -> dict[str, Any]:
        data = dict(row)
        for key in ("created_at", "updated_at"):
            if isinstance(data.get(key), datetime):
                data[key] = data[key].isoformat()
        for key in ("full_history", "tool_calls", "errors"):
            data[key] = data.get(key) or []
        return data


__all__ = ["ConversationLogService"]
