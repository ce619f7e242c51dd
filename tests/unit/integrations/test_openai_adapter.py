"""Tests for the OpenAI-compatible streaming adapter."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, Mock

import pytest

from integrations.adapters.openai_adapter import OpenAIAdapter
from models.message_models import TextContent

SEARCH_SCHEMA = {
    "type": "function",
    "function": {"name": "web_search", "description": "Search", "parameters": {"type": "object", "properties": {}}},
}


def chunk(content: str | None = None, tool_calls: list[Any] | None = None) -> Any:
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content, tool_calls=tool_calls))])


def fragment(index: int | None, call_id: str | None = None, name: str | None = None, arguments: str | None = None) -> Any:
    return SimpleNamespace(index=index, id=call_id, function=SimpleNamespace(name=name, arguments=arguments))


async def stream_of(*chunks: Any) -> Any:
    for item in chunks:
        yield item


@pytest.fixture
def client() -> Mock:
    mock = Mock()
    mock.chat.completions.create = AsyncMock()
    return mock


@pytest.fixture
def adapter(client: Mock) -> OpenAIAdapter:
    return OpenAIAdapter(client, "gpt-4o", "openai", max_retries=0, base_delay=0.0, max_delay=0.0)


class TestOpenAIStreaming:
    """Tests for chunk accumulation."""

    @pytest.mark.asyncio
    async def test_text_deltas_reach_callback(self, adapter: OpenAIAdapter, client: Mock, run_context: Any) -> None:
        client.chat.completions.create.return_value = stream_of(chunk("Hel"), chunk("lo"), SimpleNamespace(choices=[]))
        seen: list[tuple[str, str]] = []

        async def on_chunk(delta: str, accumulated: str) -> None:
            seen.append((delta, accumulated))

        result = await adapter.stream([{"role": "user", "content": "hi"}], None, on_chunk, run_context)

        assert seen == [("Hel", "Hel"), ("lo", "Hello")]
        assert result.text == "Hello"
        assert result.response_message == {"role": "assistant", "content": "Hello"}
        assert isinstance(result.content, TextContent)
        assert result.tool_calls == []

    @pytest.mark.asyncio
    async def test_request_shape(self, adapter: OpenAIAdapter, client: Mock, run_context: Any) -> None:
        client.chat.completions.create.return_value = stream_of(chunk("ok"))
        messages = [{"role": "user", "content": "hi"}]

        await adapter.stream(messages, [SEARCH_SCHEMA], None, run_context)

        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["stream"] is True
        assert kwargs["tools"] == [SEARCH_SCHEMA]
        assert kwargs["tool_choice"] == "auto"
        assert kwargs["messages"] == messages

    @pytest.mark.asyncio
    async def test_tool_call_fragments_are_joined(self, adapter: OpenAIAdapter, client: Mock, run_context: Any) -> None:
        client.chat.completions.create.return_value = stream_of(
            chunk(tool_calls=[fragment(0, "call_a", "web_search", '{"que')]),
            chunk(tool_calls=[fragment(1, "call_b", "web_search", '{"query": "b"}')]),
            chunk(tool_calls=[fragment(0, arguments='ry": "a"}')]),
        )

        result = await adapter.stream([{"role": "user", "content": "hi"}], [SEARCH_SCHEMA], None, run_context)

        assert [call.id for call in result.tool_calls] == ["call_a", "call_b"]
        assert result.tool_calls[0].parsed_arguments() == {"query": "a"}
        assert result.response_message["content"] is None
        assert result.response_message["tool_calls"][1] == {
            "id": "call_b",
            "type": "function",
            "function": {"name": "web_search", "arguments": '{"query": "b"}'},
        }

    @pytest.mark.asyncio
    async def test_missing_call_id_is_generated(self, adapter: OpenAIAdapter, client: Mock, run_context: Any) -> None:
        client.chat.completions.create.return_value = stream_of(chunk(tool_calls=[fragment(0, None, "web_search", None)]))

        result = await adapter.stream([{"role": "user", "content": "hi"}], [SEARCH_SCHEMA], None, run_context)

        assert result.tool_calls[0].id.startswith("tool-")
        assert result.tool_calls[0].arguments == "{}"


class TestOpenAIMessageShapes:
    """Tests for vendor-specific message construction."""

    def test_format_tool_results(self, adapter: OpenAIAdapter) -> None:
        messages = adapter.format_tool_results(
            [{"tool_call_id": "call_1", "content": '{"success":true}'}, {"tool_call_id": "call_2", "content": "{}"}]
        )
        assert messages == [
            {"role": "tool", "tool_call_id": "call_1", "content": '{"success":true}'},
            {"role": "tool", "tool_call_id": "call_2", "content": "{}"},
        ]

    def test_guidance_is_system_message(self, adapter: OpenAIAdapter) -> None:
        assert adapter.guidance_message("fix it") == {"role": "system", "content": "fix it"}

    def test_extract_text(self, adapter: OpenAIAdapter) -> None:
        assert adapter.extract_text({"role": "assistant", "content": "plain"}) == "plain"
        assert adapter.extract_text({"content": [{"type": "text", "text": "a"}, {"type": "image_url"}]}) == "a"
        assert adapter.extract_text({"content": None}) == ""
