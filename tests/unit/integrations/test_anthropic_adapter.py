"""Tests for the Anthropic Messages API adapter."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, Mock

import pytest

from integrations.adapters.anthropic_adapter import (
    AnthropicAdapter,
    max_tokens_for_model,
    split_system,
    to_anthropic_tools,
)
from models.message_models import BlockContent

SEARCH_SCHEMA = {
    "type": "function",
    "function": {
        "name": "web_search",
        "description": "Search the web",
        "parameters": {"type": "object", "properties": {"query": {"type": "string"}}},
    },
}


def block_start(index: int, block_type: str, **fields: Any) -> Any:
    return SimpleNamespace(type="content_block_start", index=index, content_block=SimpleNamespace(type=block_type, **fields))


def text_delta(index: int, text: str) -> Any:
    return SimpleNamespace(type="content_block_delta", index=index, delta=SimpleNamespace(type="text_delta", text=text))


def json_delta(index: int, partial: str) -> Any:
    return SimpleNamespace(
        type="content_block_delta", index=index, delta=SimpleNamespace(type="input_json_delta", partial_json=partial)
    )


def block_stop(index: int) -> Any:
    return SimpleNamespace(type="content_block_stop", index=index)


async def stream_of(*events: Any) -> Any:
    for event in events:
        yield event


@pytest.fixture
def client() -> Mock:
    mock = Mock()
    mock.messages.create = AsyncMock()
    return mock


@pytest.fixture
def adapter(client: Mock) -> AnthropicAdapter:
    return AnthropicAdapter(client, "claude-sonnet-4-5", "anthropic", max_retries=0, base_delay=0.0, max_delay=0.0)


class TestAnthropicHelpers:
    """Tests for request conversion helpers."""

    @pytest.mark.parametrize(
        ("model", "expected"),
        [
            ("claude-3-7-sonnet-20250219", 64000),
            ("claude-sonnet-4-20250514", 64000),
            ("claude-opus-4-1", 32000),
            ("claude-3-5-haiku-20241022", 8192),
            ("claude-3-haiku-20240307", 4096),
            ("some-other-model", 4096),
        ],
    )
    def test_max_tokens_for_model(self, model: str, expected: int) -> None:
        assert max_tokens_for_model(model) == expected

    def test_to_anthropic_tools(self) -> None:
        assert to_anthropic_tools([SEARCH_SCHEMA]) == [
            {
                "name": "web_search",
                "description": "Search the web",
                "input_schema": {"type": "object", "properties": {"query": {"type": "string"}}},
            }
        ]

    def test_to_anthropic_tools_defaults_schema(self) -> None:
        tools = to_anthropic_tools([{"type": "function", "function": {"name": "ping"}}])
        assert tools[0]["input_schema"] == {"type": "object", "properties": {}}

    def test_split_system(self) -> None:
        system, conversation = split_system(
            [
                {"role": "system", "content": "first"},
                {"role": "user", "content": "hi"},
                {"role": "system", "content": "second"},
            ]
        )
        assert system == "first\n\nsecond"
        assert conversation == [{"role": "user", "content": "hi"}]


class TestAnthropicStreaming:
    """Tests for event accumulation."""

    @pytest.mark.asyncio
    async def test_text_and_tool_use(self, adapter: AnthropicAdapter, client: Mock, run_context: Any) -> None:
        client.messages.create.return_value = stream_of(
            SimpleNamespace(type="message_start"),
            block_start(0, "text"),
            text_delta(0, "Let me "),
            text_delta(0, "search."),
            block_stop(0),
            block_start(1, "tool_use", id="toolu_1", name="web_search"),
            json_delta(1, '{"query":'),
            json_delta(1, ' "cats"}'),
            block_stop(1),
            SimpleNamespace(type="message_stop"),
        )
        chunks: list[str] = []

        async def on_chunk(delta: str, accumulated: str) -> None:
            chunks.append(delta)

        result = await adapter.stream(
            [{"role": "system", "content": "be brief"}, {"role": "user", "content": "find cats"}],
            [SEARCH_SCHEMA],
            on_chunk,
            run_context,
        )

        assert chunks == ["Let me ", "search."]
        assert result.text == "Let me search."
        assert len(result.tool_calls) == 1
        assert result.tool_calls[0].id == "toolu_1"
        assert result.tool_calls[0].parsed_arguments() == {"query": "cats"}
        assert isinstance(result.content, BlockContent)
        assert result.response_message == {
            "role": "assistant",
            "content": [
                {"type": "text", "text": "Let me search."},
                {"type": "tool_use", "id": "toolu_1", "name": "web_search", "input": {"query": "cats"}},
            ],
        }

        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["system"] == "be brief"
        assert kwargs["messages"] == [{"role": "user", "content": "find cats"}]
        assert kwargs["max_tokens"] == 64000
        assert kwargs["tools"][0]["name"] == "web_search"

    @pytest.mark.asyncio
    async def test_unparseable_tool_input_becomes_empty(
        self, adapter: AnthropicAdapter, client: Mock, run_context: Any
    ) -> None:
        client.messages.create.return_value = stream_of(
            block_start(0, "tool_use", id="toolu_2", name="web_search"),
            json_delta(0, '{"query": '),
            block_stop(0),
        )

        result = await adapter.stream([{"role": "user", "content": "x"}], [SEARCH_SCHEMA], None, run_context)

        assert result.tool_calls[0].arguments == "{}"

    @pytest.mark.asyncio
    async def test_text_only_reply_without_system(
        self, adapter: AnthropicAdapter, client: Mock, run_context: Any
    ) -> None:
        client.messages.create.return_value = stream_of(block_start(0, "text"), text_delta(0, "Hi!"), block_stop(0))

        result = await adapter.stream([{"role": "user", "content": "hello"}], None, None, run_context)

        assert result.text == "Hi!"
        kwargs = client.messages.create.call_args.kwargs
        assert "system" not in kwargs
        assert "tools" not in kwargs


class TestAnthropicMessageShapes:
    """Tests for vendor-specific message construction."""

    def test_format_tool_results_single_user_message(self, adapter: AnthropicAdapter) -> None:
        messages = adapter.format_tool_results(
            [{"tool_call_id": "toolu_1", "content": "{}"}, {"tool_call_id": "toolu_2", "content": "[]"}]
        )
        assert messages == [
            {
                "role": "user",
                "content": [
                    {"type": "tool_result", "tool_use_id": "toolu_1", "content": "{}"},
                    {"type": "tool_result", "tool_use_id": "toolu_2", "content": "[]"},
                ],
            }
        ]

    def test_guidance_is_user_message(self, adapter: AnthropicAdapter) -> None:
        assert adapter.guidance_message("retry") == {"role": "user", "content": [{"type": "text", "text": "retry"}]}

    def test_text_message(self, adapter: AnthropicAdapter) -> None:
        message, content = adapter.text_message("sorry")
        assert message == {"role": "assistant", "content": [{"type": "text", "text": "sorry"}]}
        assert content.extract_text() == "sorry"

    def test_extract_text_from_blocks(self, adapter: AnthropicAdapter) -> None:
        message = {"content": [{"type": "text", "text": "a"}, {"type": "tool_use", "id": "t"}, {"type": "text", "text": "b"}]}
        assert adapter.extract_text(message) == "ab"
