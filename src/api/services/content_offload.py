"""
Content offload: keeps binary images and oversized strings out of model context.

Two scanners replace payloads with reference tokens and register the real
value in the run's ``PreservedContentStore``:

- the image extractor handles ``data:image/...;base64,...`` values in tool
  results (``generatedImages[]``, ``firstImage``) and in plain message text;
- the large-field offloader walks a tool result's JSON tree and replaces any
  string leaf longer than the threshold.

``resolve_data_references`` substitutes the tokens back into tool arguments
when the model wants to act on previously offloaded content. Tokens never
match either scanner, so running a scanner twice is a no-op.
"""

from __future__ import annotations

import json
import re
import time

from dataclasses import dataclass
from typing import Any

from core.run_context import PreservedContentStore, RunContext
from models.event_models import EventSink, EventType, StreamEvent
from utils.json_utils import json_compact
from utils.logger import logger
from utils.metrics import content_offloaded_bytes, content_offloaded_total

IMAGE_DATA_URI_RE = re.compile(r"data:image/[^;]+;base64,[A-Za-z0-9+/=]+")
REFERENCE_TOKEN_RE = re.compile(r"\{\{(DATA_REF|IMAGE_REF):([^{}]+?)\}\}")
WHOLE_REFERENCE_RE = re.compile(r"^\{\{(DATA_REF|IMAGE_REF):([^{}]+?)\}\}$")


def image_ref(image_id: str) -> str:
    return f"{{{{IMAGE_REF:{image_id}}}}}"


def data_ref(data_id: str) -> str:
    return f"{{{{DATA_REF:{data_id}}}}}"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(slots=True)
class ExtractedImage:
    """An inline image lifted out of a tool result or message."""

    id: str
    data: str
    index: int | str


@dataclass(slots=True)
class OffloadedField:
    """A string leaf lifted out of a tool result."""

    id: str
    content: str
    path: str

    @property
    def size(self) -> int:
        return len(self.content)


# =============================================================================
# Scanners (pure)
# =============================================================================


def extract_images(tool_result: str, tool_call_id: str) -> tuple[str, list[ExtractedImage]]:
    """Replace ``generatedImages[]`` and ``firstImage`` data URIs with image references.

    Args:
        tool_result: JSON text returned by the tool executor
        tool_call_id: Call id the references are derived from

    Returns:
        Tuple of (modified JSON text, extracted images). Non-object or
        unparseable results are returned unchanged.
    """
    try:
        result = json.loads(tool_result)
    except (TypeError, ValueError):
        return tool_result, []
    if not isinstance(result, dict):
        return tool_result, []

    images: list[ExtractedImage] = []

    generated = result.get("generatedImages")
    if isinstance(generated, list):
        for index, img in enumerate(generated):
            if isinstance(img, str) and img.startswith("data:image/"):
                image_id = f"img-{tool_call_id}-{index}"
                images.append(ExtractedImage(image_id, img, index))
                generated[index] = image_ref(image_id)

    first = result.get("firstImage")
    if isinstance(first, str) and first.startswith("data:image/"):
        image_id = f"img-{tool_call_id}-first"
        images.append(ExtractedImage(image_id, first, "first"))
        result["firstImage"] = image_ref(image_id)

    if not images:
        return tool_result, []
    return json_compact(result), images


def _replace_inline_images(text: str, msg_index: int, images: list[ExtractedImage]) -> str:
    matches = IMAGE_DATA_URI_RE.findall(text)
    ts = _now_ms()
    for image_index, image_data in enumerate(matches):
        image_id = f"img-history-{msg_index}-{image_index}-{ts}"
        images.append(ExtractedImage(image_id, image_data, image_index))
        text = text.replace(image_data, image_ref(image_id), 1)
    return text


def sanitize_history_images(messages: list[dict[str, Any]]) -> tuple[list[dict[str, Any]], list[ExtractedImage]]:
    """Extract inline base64 images from message text (string content and text blocks)."""
    extracted: list[ExtractedImage] = []
    sanitized: list[dict[str, Any]] = []

    for msg_index, msg in enumerate(messages):
        content = msg.get("content") if isinstance(msg, dict) else None

        if isinstance(content, str) and "data:image/" in content:
            before = len(extracted)
            new_content = _replace_inline_images(content, msg_index, extracted)
            if len(extracted) > before:
                logger.debug(f"Sanitized {len(extracted) - before} image(s) from message {msg.get('id', msg_index)}")
                msg = {**msg, "content": new_content}

        elif isinstance(content, list):
            new_blocks = []
            changed = False
            for block in content:
                if isinstance(block, dict) and block.get("type") == "text" and "data:image/" in block.get("text", ""):
                    new_blocks.append({**block, "text": _replace_inline_images(block["text"], msg_index, extracted)})
                    changed = True
                else:
                    new_blocks.append(block)
            if changed:
                msg = {**msg, "content": new_blocks}

        sanitized.append(msg)

    return sanitized, extracted


def offload_large_fields(
    tool_result: str, tool_call_id: str, threshold: int
) -> tuple[str, list[OffloadedField]]:
    """Replace every string leaf longer than ``threshold`` with a data reference.

    Paths use dotted keys and bracketed indexes (``pages[0].content``).

    Returns:
        Tuple of (modified JSON text, offloaded fields). Unparseable results
        are returned unchanged.
    """
    try:
        result = json.loads(tool_result)
    except (TypeError, ValueError):
        logger.debug(f"Data offload skipped for {tool_call_id}: tool result is not JSON")
        return tool_result, []

    offloaded: list[OffloadedField] = []
    ts = _now_ms()

    def scan(node: Any, path: str) -> Any:
        if isinstance(node, str):
            if len(node) > threshold:
                data_id = f"data-{tool_call_id}-{ts}-{len(offloaded)}"
                offloaded.append(OffloadedField(data_id, node, path))
                logger.info(f"Offloaded {len(node):,} chars to {data_id} (path: {path or '<root>'})")
                return data_ref(data_id)
            return node
        if isinstance(node, list):
            return [scan(item, f"{path}[{i}]") for i, item in enumerate(node)]
        if isinstance(node, dict):
            return {key: scan(value, f"{path}.{key}" if path else key) for key, value in node.items()}
        return node

    modified = scan(result, "")
    if not offloaded:
        return tool_result, []
    return json_compact(modified), offloaded


def resolve_data_references(value: Any, store: PreservedContentStore) -> Any:
    """Substitute ``DATA_REF``/``IMAGE_REF`` tokens with their preserved payloads.

    A string that is exactly one token resolves to the payload itself; tokens
    embedded in longer text are replaced in place. Unknown ids stay literal.
    """
    if isinstance(value, str):
        if "{{" not in value:
            return value

        whole = WHOLE_REFERENCE_RE.match(value)
        if whole:
            entry = store.get(whole.group(2))
            if entry is None:
                logger.warning(f"Reference {whole.group(2)} not found in preserved content")
                return value
            logger.debug(f"Resolved reference {entry.id} ({len(str(entry.payload)):,} chars)")
            return entry.payload

        def substitute(match: re.Match[str]) -> str:
            entry = store.get(match.group(2))
            if entry is None:
                logger.warning(f"Reference {match.group(2)} not found in preserved content")
                return match.group(0)
            return str(entry.payload)

        return REFERENCE_TOKEN_RE.sub(substitute, value)

    if isinstance(value, list):
        return [resolve_data_references(item, store) for item in value]
    if isinstance(value, dict):
        return {key: resolve_data_references(item, store) for key, item in value.items()}
    return value


# =============================================================================
# Run-bound offloader (stores payloads and emits client events)
# =============================================================================


class ContentOffloader:
    """Applies both scanners for one run, storing payloads and emitting side events."""

    def __init__(self, run_context: RunContext, emit: EventSink, threshold: int):
        self.run_context = run_context
        self.emit = emit
        self.threshold = threshold

    async def _store_images(self, images: list[ExtractedImage], tool_call_id: str | None) -> None:
        ctx = self.run_context
        for image in images:
            ctx.preserved_content.add(image.id, "image", image.data, ctx.current_round)
            content_offloaded_total.labels(kind="image").inc()
            content_offloaded_bytes.labels(kind="image").inc(len(image.data))
            await self.emit(
                StreamEvent(
                    event=EventType.IMAGE_GENERATED,
                    data={
                        "assistantMessageId": ctx.assistant_message_id,
                        "toolCallId": tool_call_id,
                        "imageId": image.id,
                        "imageData": image.data,
                        "index": image.index,
                    },
                )
            )

    async def _store_fields(self, fields: list[OffloadedField], tool_call_id: str) -> None:
        ctx = self.run_context
        for item in fields:
            ctx.preserved_content.add(item.id, "data", item.content, ctx.current_round, path=item.path)
            content_offloaded_total.labels(kind="data").inc()
            content_offloaded_bytes.labels(kind="data").inc(item.size)
            await self.emit(
                StreamEvent(
                    event=EventType.DATA_CONTENT,
                    data={
                        "assistantMessageId": ctx.assistant_message_id,
                        "toolCallId": tool_call_id,
                        "dataId": item.id,
                        "fullContent": item.content,
                        "size": item.size,
                        "path": item.path,
                    },
                )
            )

        await self.emit(
            StreamEvent(
                event=EventType.DATA_OFFLOADED,
                data={
                    "assistantMessageId": ctx.assistant_message_id,
                    "toolCallId": tool_call_id,
                    "offloadedCount": len(fields),
                    "totalSize": sum(f.size for f in fields),
                    "message": f"Offloaded {len(fields)} large data field(s) to prevent context bloat",
                },
            )
        )

    async def process_tool_result(self, tool_call_id: str, tool_result: str) -> str:
        """Run the image extractor then the large-field offloader over one tool result."""
        modified, images = extract_images(tool_result, tool_call_id)
        if images:
            logger.info(f"Extracted {len(images)} image(s) from {tool_call_id} result")
            await self._store_images(images, tool_call_id)

        modified, fields = offload_large_fields(modified, tool_call_id, self.threshold)
        if fields:
            await self._store_fields(fields, tool_call_id)

        return modified

    async def sanitize_history(self, messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Scan inbound history: images in every message, large fields in tool results."""
        sanitized, images = sanitize_history_images(messages)
        if images:
            logger.info(f"Sanitized {len(images)} image(s) from message history")
            await self._store_images(images, None)

        result: list[dict[str, Any]] = []
        for index, msg in enumerate(sanitized):
            if msg.get("role") == "tool" and isinstance(msg.get("content"), str):
                call_id = msg.get("tool_call_id") or f"history-{index}"
                content, fields = offload_large_fields(msg["content"], call_id, self.threshold)
                if fields:
                    await self._store_fields(fields, call_id)
                    msg = {**msg, "content": content}
            elif msg.get("role") == "user" and isinstance(msg.get("content"), list):
                msg = await self._offload_tool_result_blocks(msg, index)
            result.append(msg)
        return result

    async def _offload_tool_result_blocks(self, msg: dict[str, Any], index: int) -> dict[str, Any]:
        blocks = []
        changed = False
        for block in msg["content"]:
            if isinstance(block, dict) and block.get("type") == "tool_result" and isinstance(block.get("content"), str):
                call_id = block.get("tool_use_id") or f"history-{index}"
                content, fields = offload_large_fields(block["content"], call_id, self.threshold)
                if fields:
                    await self._store_fields(fields, call_id)
                    block = {**block, "content": content}
                    changed = True
            blocks.append(block)
        return {**msg, "content": blocks} if changed else msg


__all__ = [
    "ContentOffloader",
    "ExtractedImage",
    "OffloadedField",
    "data_ref",
    "extract_images",
    "image_ref",
    "offload_large_fields",
    "resolve_data_references",
    "sanitize_history_images",
]
