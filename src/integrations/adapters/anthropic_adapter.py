"""
Adapter for the Anthropic Messages API.
"""

from __future__ import annotations

import asyncio
import json

from typing import Any

from core.constants import ANTHROPIC_DEFAULT_MAX_TOKENS, ANTHROPIC_MAX_OUTPUT_TOKENS
from core.run_context import RunContext
from integrations.adapters.base import BaseAdapter, ChunkCallback, StreamOutcome
from models.message_models import AssistantContent, BlockContent, ToolCall
from utils.json_utils import json_compact
from utils.logger import logger


def max_tokens_for_model(model: str) -> int:
    """Output token cap for a Claude model family (first matching family wins)."""
    for family, limit in ANTHROPIC_MAX_OUTPUT_TOKENS:
        if family in model:
            return limit
    return ANTHROPIC_DEFAULT_MAX_TOKENS


def to_anthropic_tools(tool_schemas: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """OpenAI function schemas to Anthropic ``{name, description, input_schema}``."""
    tools = []
    for schema in tool_schemas:
        function = schema.get("function") or schema
        tools.append(
            {
                "name": function["name"],
                "description": function.get("description", ""),
                "input_schema": function.get("parameters") or {"type": "object", "properties": {}},
            }
        )
    return tools


def split_system(messages: list[dict[str, Any]]) -> tuple[str, list[dict[str, Any]]]:
    """Separate system prompts (sent as ``system``) from the conversation."""
    system_parts = []
    conversation = []
    for message in messages:
        if message.get("role") == "system":
            content = message.get("content")
            system_parts.append(content if isinstance(content, str) else json_compact(content))
        else:
            conversation.append(message)
    return "\n\n".join(p for p in system_parts if p), conversation


class AnthropicAdapter(BaseAdapter):
    """Streams ``messages.create`` events into text and ``tool_use`` blocks."""

    async def _stream_once(
        self,
        messages: list[dict[str, Any]],
        tool_schemas: list[dict[str, Any]] | None,
        on_chunk: ChunkCallback | None,
        run_context: RunContext,
    ) -> StreamOutcome:
        system, conversation = split_system(messages)
        request: dict[str, Any] = {
            "model": self.model,
            "messages": conversation,
            "max_tokens": max_tokens_for_model(self.model),
            "stream": True,
        }
        if system:
            request["system"] = system
        if tool_schemas:
            request["tools"] = to_anthropic_tools(tool_schemas)

        stream = await self.client.messages.create(**request)

        outcome = StreamOutcome()
        blocks: dict[int, dict[str, Any]] = {}
        partial_json: dict[int, str] = {}
        try:
            async for event in stream:
                run_context.cancellation_token.check()
                event_type = getattr(event, "type", None)

                if event_type == "content_block_start":
                    block = event.content_block
                    if block.type == "text":
                        blocks[event.index] = {"type": "text", "text": ""}
                    elif block.type == "tool_use":
                        blocks[event.index] = {"type": "tool_use", "id": block.id, "name": block.name, "input": {}}

                elif event_type == "content_block_delta":
                    delta = event.delta
                    if delta.type == "text_delta":
                        text = delta.text or ""
                        outcome.text += text
                        if event.index in blocks:
                            blocks[event.index]["text"] += text
                        if on_chunk is not None and text:
                            await on_chunk(text, outcome.text)
                    elif delta.type == "input_json_delta":
                        partial_json[event.index] = partial_json.get(event.index, "") + (delta.partial_json or "")

                elif event_type == "content_block_stop":
                    block = blocks.get(event.index)
                    if block is None or block["type"] != "tool_use":
                        continue
                    raw = partial_json.pop(event.index, "")
                    if raw:
                        try:
                            block["input"] = json.loads(raw)
                        except ValueError:
                            logger.error(f"Failed to parse tool input JSON for {block['name']}: {raw[:200]}")
                            block["input"] = {}
                    outcome.tool_calls.append(
                        ToolCall(id=block["id"], name=block["name"], arguments=json_compact(block["input"]))
                    )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                f"Anthropic stream iterator error: {e} "
                f"({len(outcome.text)} chars, {len(outcome.tool_calls)} tool call(s) so far)"
            )
            outcome.stream_error = e

        outcome.blocks = [blocks[i] for i in sorted(blocks)]
        return outcome

    def _response_blocks(self, outcome: StreamOutcome, valid_calls: list[ToolCall]) -> list[dict[str, Any]]:
        valid_ids = {call.id for call in valid_calls}
        blocks = [
            block
            for block in outcome.blocks
            if (block["type"] == "text" and block["text"])
            or (block["type"] == "tool_use" and block["id"] in valid_ids)
        ]
        return blocks or [{"type": "text", "text": outcome.text}]

    def guidance_message(self, text: str) -> dict[str, Any]:
        return {"role": "user", "content": [{"type": "text", "text": text}]}

    def build_response_message(self, outcome: StreamOutcome, valid_calls: list[ToolCall]) -> dict[str, Any]:
        return {"role": "assistant", "content": self._response_blocks(outcome, valid_calls)}

    def build_content(self, outcome: StreamOutcome, valid_calls: list[ToolCall]) -> AssistantContent:
        return BlockContent(blocks=self._response_blocks(outcome, valid_calls))

    def text_message(self, text: str) -> tuple[dict[str, Any], AssistantContent]:
        blocks = [{"type": "text", "text": text}]
        return {"role": "assistant", "content": blocks}, BlockContent(blocks=blocks)

    def format_tool_results(self, results: list[dict[str, Any]]) -> list[dict[str, Any]]:
        return [
            {
                "role": "user",
                "content": [
                    {"type": "tool_result", "tool_use_id": result["tool_call_id"], "content": result["content"]}
                    for result in results
                ],
            }
        ]

    def image_blocks(self, images: list[dict[str, Any]]) -> list[dict[str, Any]]:
        return [
            {
                "type": "image",
                "source": {"type": "base64", "media_type": image["mime_type"], "data": image["data"]},
            }
            for image in images
        ]

    def extract_text(self, response_message: dict[str, Any]) -> str:
        content = response_message.get("content")
        if isinstance(content, str):
            return content
        return BlockContent(blocks=content or []).extract_text()


__all__ = ["AnthropicAdapter", "max_tokens_for_model", "split_system", "to_anthropic_tools"]
