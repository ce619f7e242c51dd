"""
Adapter for OpenAI and OpenAI-compatible chat completion APIs.

Serves openai, deepseek, grokai, groq, local (Ollama / LM Studio),
openrouter and togetherai through ``AsyncOpenAI`` with a vendor base URL.
"""

from __future__ import annotations

import asyncio
import time

from typing import Any

from core.run_context import RunContext
from integrations.adapters.base import BaseAdapter, ChunkCallback, StreamOutcome
from models.message_models import AssistantContent, TextContent, ToolCall
from utils.logger import logger


class OpenAIAdapter(BaseAdapter):
    """Streams ``chat.completions`` and accumulates tool-call fragments by index."""

    async def _stream_once(
        self,
        messages: list[dict[str, Any]],
        tool_schemas: list[dict[str, Any]] | None,
        on_chunk: ChunkCallback | None,
        run_context: RunContext,
    ) -> StreamOutcome:
        request: dict[str, Any] = {"model": self.model, "messages": messages, "stream": True}
        if tool_schemas:
            request["tools"] = tool_schemas
            request["tool_choice"] = "auto"

        stream = await self.client.chat.completions.create(**request)

        outcome = StreamOutcome()
        fragments: dict[int, dict[str, str]] = {}
        try:
            async for chunk in stream:
                run_context.cancellation_token.check()
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                if delta is None:
                    continue

                if delta.content:
                    outcome.text += delta.content
                    if on_chunk is not None:
                        await on_chunk(delta.content, outcome.text)

                for fragment in delta.tool_calls or []:
                    index = fragment.index if fragment.index is not None else len(fragments)
                    entry = fragments.setdefault(index, {"id": "", "name": "", "arguments": ""})
                    if fragment.id:
                        entry["id"] = fragment.id
                    if fragment.function is not None:
                        entry["name"] += fragment.function.name or ""
                        entry["arguments"] += fragment.function.arguments or ""
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"{self.provider} stream iterator error: {e}")
            outcome.stream_error = e

        now_ms = int(time.time() * 1000)
        outcome.tool_calls = [
            ToolCall(
                id=entry["id"] or f"tool-{now_ms}-{index}",
                name=entry["name"],
                arguments=entry["arguments"] or "{}",
            )
            for index, entry in sorted(fragments.items())
        ]
        return outcome

    def guidance_message(self, text: str) -> dict[str, Any]:
        return {"role": "system", "content": text}

    def build_response_message(self, outcome: StreamOutcome, valid_calls: list[ToolCall]) -> dict[str, Any]:
        message: dict[str, Any] = {"role": "assistant", "content": outcome.text or None}
        if valid_calls:
            message["tool_calls"] = [
                {"id": call.id, "type": "function", "function": {"name": call.name, "arguments": call.arguments}}
                for call in valid_calls
            ]
        return message

    def build_content(self, outcome: StreamOutcome, valid_calls: list[ToolCall]) -> AssistantContent:
        return TextContent(text=outcome.text)

    def text_message(self, text: str) -> tuple[dict[str, Any], AssistantContent]:
        return {"role": "assistant", "content": text}, TextContent(text=text)

    def format_tool_results(self, results: list[dict[str, Any]]) -> list[dict[str, Any]]:
        return [
            {"role": "tool", "tool_call_id": result["tool_call_id"], "content": result["content"]}
            for result in results
        ]

    def image_blocks(self, images: list[dict[str, Any]]) -> list[dict[str, Any]]:
        return [
            {"type": "image_url", "image_url": {"url": f"data:{image['mime_type']};base64,{image['data']}"}}
            for image in images
        ]

    def extract_text(self, response_message: dict[str, Any]) -> str:
        content = response_message.get("content")
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            return "".join(part.get("text", "") for part in content if part.get("type") == "text")
        return ""


__all__ = ["OpenAIAdapter"]
