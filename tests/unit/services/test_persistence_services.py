"""Tests for the conversation log, execution and OAuth token services."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import MagicMock

import pytest

from jose import jwt

from api.services.auth_service import OAuthTokenService, strip_bearer, user_id_from_token
from api.services.conversation_log_service import ConversationLogService
from api.services.execution_service import ExecutionService
from core.constants import EXECUTION_PROMPT_PREVIEW_LENGTH


class TestConversationLogService:
    """Tests for ConversationLogService."""

    @pytest.mark.asyncio
    async def test_upsert_passes_all_columns(self, mock_pool: MagicMock) -> None:
        service = ConversationLogService(mock_pool)
        history = [{"role": "user", "content": "hi"}]

        await service.upsert_conversation_log("conv-1", "user-1", "hi", history, "hello", [], None)

        query, *params = mock_pool.conn.execute.await_args.args
        assert "ON CONFLICT (conversation_id)" in query
        assert "COALESCE(conversation_logs.initial_prompt" in query
        assert params == ["conv-1", "user-1", "hi", history, "hello", [], []]

    @pytest.mark.asyncio
    async def test_upsert_retries_transient_failure(self, mock_pool: MagicMock, monkeypatch: pytest.MonkeyPatch) -> None:
        async def no_sleep(delay: float) -> None:
            return None

        monkeypatch.setattr("utils.db_utils.asyncio.sleep", no_sleep)
        mock_pool.conn.execute.side_effect = [ConnectionResetError("reset"), None]
        service = ConversationLogService(mock_pool)

        await service.upsert_conversation_log("conv-1", None, "hi", [], "", [])

        assert mock_pool.conn.execute.await_count == 2

    @pytest.mark.asyncio
    async def test_get_missing_log(self, mock_pool: MagicMock) -> None:
        assert await ConversationLogService(mock_pool).get_conversation_log("nope") is None

    @pytest.mark.asyncio
    async def test_get_log_normalizes_row(self, mock_pool: MagicMock) -> None:
        created = datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC)
        mock_pool.conn.fetchrow.return_value = {
            "conversation_id": "conv-1",
            "user_id": None,
            "initial_prompt": "hi",
            "full_history": None,
            "final_response": "hello",
            "tool_calls": [{"name": "web_search"}],
            "errors": None,
            "created_at": created,
            "updated_at": created,
        }

        log = await ConversationLogService(mock_pool).get_conversation_log("conv-1")

        assert log is not None
        assert log["created_at"] == "2026-01-02T03:04:05+00:00"
        assert log["full_history"] == []
        assert log["errors"] == []
        assert log["tool_calls"] == [{"name": "web_search"}]


class TestExecutionService:
    """Tests for ExecutionService."""

    @pytest.mark.asyncio
    async def test_create_execution(self, mock_pool: MagicMock) -> None:
        service = ExecutionService(mock_pool)

        execution_id = await service.create_execution(
            "user-1", "agent-1", "Research Bot", "conv-1", "p" * 5000, "openai", "gpt-4o"
        )

        query, *params = mock_pool.conn.execute.await_args.args
        assert "'started'" in query
        assert params[0] == execution_id
        assert params[3] == "Research Bot"
        assert len(params[5]) == EXECUTION_PROMPT_PREVIEW_LENGTH

    @pytest.mark.asyncio
    async def test_finalize_execution(self, mock_pool: MagicMock) -> None:
        await ExecutionService(mock_pool).finalize_execution("exec-1", "failed", "partial", 3, "cancelled")

        _, *params = mock_pool.conn.execute.await_args.args
        assert params == ["exec-1", "failed", "partial", 3, "cancelled"]

    @pytest.mark.asyncio
    async def test_tool_execution_lifecycle(self, mock_pool: MagicMock) -> None:
        service = ExecutionService(mock_pool)

        ids = await service.create_tool_executions(
            "exec-1", [("call_1", "web_search", {"query": "a"}), ("call_2", "read_file", {"path": "x"})]
        )
        rows = mock_pool.conn.executemany.await_args.args[1]
        assert set(ids) == {"call_1", "call_2"}
        assert rows[0] == (ids["call_1"], "exec-1", "web_search", "call_1", {"query": "a"})

        await service.complete_tool_executions([(ids["call_1"], {"ok": True}, None), (ids["call_2"], None, "boom")])
        rows = mock_pool.conn.executemany.await_args.args[1]
        assert rows == [(ids["call_1"], "completed", {"ok": True}, None), (ids["call_2"], "failed", None, "boom")]

    @pytest.mark.asyncio
    async def test_empty_batches_skip_database(self, mock_pool: MagicMock) -> None:
        service = ExecutionService(mock_pool)

        assert await service.create_tool_executions("exec-1", []) == {}
        await service.complete_tool_executions([])

        mock_pool.acquire.assert_not_called()

    @pytest.mark.asyncio
    async def test_get_execution_includes_tools(self, mock_pool: MagicMock) -> None:
        mock_pool.conn.fetchrow.return_value = {"id": "exec-1", "status": "completed"}
        mock_pool.conn.fetch.return_value = [{"id": "t-1", "tool_name": "web_search"}]

        execution = await ExecutionService(mock_pool).get_execution("exec-1")

        assert execution == {
            "id": "exec-1",
            "status": "completed",
            "tool_executions": [{"id": "t-1", "tool_name": "web_search"}],
        }


class TestAuthTokens:
    """Tests for bearer token parsing and OAuth token lookup."""

    def test_strip_bearer(self) -> None:
        assert strip_bearer("Bearer abc") == "abc"
        assert strip_bearer("  bearer  abc ") == "abc"
        assert strip_bearer("abc") == "abc"
        assert strip_bearer("Bearer ") is None
        assert strip_bearer("  BEARER\t") is None
        assert strip_bearer("bearer") is None
        assert strip_bearer(None) is None

    @pytest.mark.parametrize(
        ("claims", "expected"),
        [
            ({"userId": "u-1", "sub": "s-1"}, "u-1"),
            ({"id": 42}, "42"),
            ({"sub": "s-1"}, "s-1"),
            ({"email": "a@b.c"}, None),
        ],
    )
    def test_user_id_from_token(self, claims: dict[str, Any], expected: str | None) -> None:
        token = jwt.encode(claims, "any-secret", algorithm="HS256")
        assert user_id_from_token(f"Bearer {token}") == expected

    def test_garbage_token(self) -> None:
        assert user_id_from_token("Bearer not-a-jwt") is None
        assert user_id_from_token(None) is None

    @pytest.mark.asyncio
    async def test_valid_access_token(self, mock_pool: MagicMock) -> None:
        mock_pool.conn.fetchrow.return_value = {
            "access_token": "gh-token",
            "expires_at": datetime.now(UTC) + timedelta(hours=1),
        }

        token = await OAuthTokenService(mock_pool).get_valid_access_token("u-1", "github")

        assert token == "gh-token"
        assert mock_pool.conn.fetchrow.await_args.args[1:] == ("u-1", "github")

    @pytest.mark.asyncio
    async def test_expired_or_missing_token(self, mock_pool: MagicMock) -> None:
        service = OAuthTokenService(mock_pool)
        assert await service.get_valid_access_token("u-1", "github") is None

        mock_pool.conn.fetchrow.return_value = {
            "access_token": "old",
            "expires_at": datetime.now(UTC) - timedelta(minutes=1),
        }
        assert await service.get_valid_access_token("u-1", "github") is None

    @pytest.mark.asyncio
    async def test_token_without_expiry(self, mock_pool: MagicMock) -> None:
        mock_pool.conn.fetchrow.return_value = {"access_token": "forever", "expires_at": None}
        assert await OAuthTokenService(mock_pool).get_valid_access_token("u-1", "slack") == "forever"
