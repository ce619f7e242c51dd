"""
Execution tracking for the Runs screen.

Each orchestration run owns one ``agent_executions`` row and one
``tool_executions`` row per tool call. Both follow
``started -> running -> completed | failed``.
"""

from __future__ import annotations

import uuid

from typing import Any, Literal

import asyncpg

from core.constants import EXECUTION_PROMPT_PREVIEW_LENGTH, EXECUTION_RESPONSE_PREVIEW_LENGTH
from utils.db_utils import with_retry
from utils.logger import logger

ExecutionStatus = Literal["started", "running", "completed", "failed"]


class ExecutionService:
    """Writes execution and tool-execution records."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def create_execution(
        self,
        user_id: str | None,
        agent_id: str | None,
        agent_name: str,
        conversation_id: str,
        initial_prompt: str,
        provider: str,
        model: str,
    ) -> str:
        """Insert an execution record in ``started`` state and return its id."""
        execution_id = str(uuid.uuid4())
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO agent_executions (
                    id, user_id, agent_id, agent_name, conversation_id,
                    status, initial_prompt, provider, model
                )
                VALUES ($1, $2, $3, $4, $5, 'started', $6, $7, $8)
                """,
                execution_id,
                user_id,
                agent_id,
                agent_name,
                conversation_id,
                initial_prompt[:EXECUTION_PROMPT_PREVIEW_LENGTH],
                provider,
                model,
            )
        logger.debug(f"Created execution {execution_id} for {agent_name}")
        return execution_id

    async def update_status(self, execution_id: str, status: ExecutionStatus) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                "UPDATE agent_executions SET status = $2 WHERE id = $1",
                execution_id,
                status,
            )

    @with_retry(max_attempts=3)
    async def finalize_execution(
        self,
        execution_id: str,
        status: ExecutionStatus,
        final_response: str,
        tool_calls_count: int,
        error: str | None = None,
    ) -> None:
        """Set the terminal status, end time, response preview and tool count."""
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE agent_executions
                SET status = $2,
                    end_time = NOW(),
                    final_response = $3,
                    tool_calls_count = $4,
                    error = $5
                WHERE id = $1
                """,
                execution_id,
                status,
                (final_response or "")[:EXECUTION_RESPONSE_PREVIEW_LENGTH],
                tool_calls_count,
                error,
            )

    async def create_tool_executions(
        self,
        execution_id: str,
        calls: list[tuple[str, str, dict[str, Any]]],
    ) -> dict[str, str]:
        """Insert one ``running`` row per ``(tool_call_id, tool_name, input)``.

        Returns:
            Map of tool call id to tool execution id
        """
        if not calls:
            return {}
        ids = {tool_call_id: str(uuid.uuid4()) for tool_call_id, _, _ in calls}
        async with self.pool.acquire() as conn:
            await conn.executemany(
                """
                INSERT INTO tool_executions (id, execution_id, tool_name, tool_call_id, status, input)
                VALUES ($1, $2, $3, $4, 'running', $5)
                """,
                [(ids[call_id], execution_id, name, call_id, args) for call_id, name, args in calls],
            )
        return ids

    async def complete_tool_executions(self, results: list[tuple[str, Any, str | None]]) -> None:
        """Finish tool executions from ``(tool_execution_id, output, error)``; an error marks it failed."""
        if not results:
            return
        async with self.pool.acquire() as conn:
            await conn.executemany(
                """
                UPDATE tool_executions
                SET status = $2, end_time = NOW(), output = $3, error = $4
                WHERE id = $1
                """,
                [(tool_id, "failed" if error else "completed", output, error) for tool_id, output, error in results],
            )

    async def get_execution(self, execution_id: str) -> dict[str, Any] | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM agent_executions WHERE id = $1", execution_id)
            if not row:
                return None
            tools = await conn.fetch(
                "SELECT * FROM tool_executions WHERE execution_id = $1 ORDER BY start_time",
                execution_id,
            )
        return {**dict(row), "tool_executions": [dict(t) for t in tools]}


__all__ = ["ExecutionService", "ExecutionStatus"]
