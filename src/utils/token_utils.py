"""
Utility functions for token counting.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any

import tiktoken

from core.constants import IMAGE_PART_TOKEN_ESTIMATE, MESSAGE_STRUCTURE_TOKEN_OVERHEAD, TOKEN_CACHE_SIZE
from utils.json_utils import json_compact

# Cache for tiktoken encoders to avoid recreation
_encoder_cache: dict[str, Any] = {}

#: Content part types counted at a flat rate instead of by their payload
IMAGE_PART_TYPES = frozenset({"image_url", "image"})


def _get_encoder(model: str) -> Any:
    """Get cached encoder for model.

    Non-OpenAI models (Claude, Llama, DeepSeek) fall back to cl100k_base,
    which is close enough for budgeting.
    """
    if model not in _encoder_cache:
        try:
            _encoder_cache[model] = tiktoken.encoding_for_model(model)
        except KeyError:
            _encoder_cache[model] = tiktoken.get_encoding("cl100k_base")
    return _encoder_cache[model]


@lru_cache(maxsize=TOKEN_CACHE_SIZE * 2)
def _count_tokens_cached(text: str, model: str) -> int:
    return len(_get_encoder(model).encode(text, disallowed_special=()))


def count_tokens(text: str, model: str = "gpt-4o-mini") -> dict[str, Any]:
    """
    Count exact tokens using tiktoken.

    Args:
        text: The text to count tokens for
        model: The model name

    Returns:
        Dict with exact token counts and metadata
    """
    exact_count = _count_tokens_cached(text, model)

    char_count = len(text)
    chars_per_token = char_count / exact_count if exact_count > 0 else 0

    return {
        "exact_tokens": exact_count,
        "char_count": char_count,
        "word_count": len(text.split()),
        "chars_per_token": round(chars_per_token, 2),
        "model": model,
        "encoding": _get_encoder(model).name,
    }


def _split_images(message: dict[str, Any]) -> tuple[dict[str, Any], int]:
    """Message without its image parts, and how many were removed."""
    content = message.get("content")
    if not isinstance(content, list):
        return message, 0
    kept = [part for part in content if not (isinstance(part, dict) and part.get("type") in IMAGE_PART_TYPES)]
    images = len(content) - len(kept)
    return ({**message, "content": kept}, images) if images else (message, 0)


def count_message_tokens(messages: list[dict[str, Any]], model: str) -> int:
    """Count tokens of a message list including per-message structure overhead.

    Image parts cost ``IMAGE_PART_TOKEN_ESTIMATE`` each regardless of size.
    """
    total = 0
    for message in messages:
        text_only, images = _split_images(message)
        total += count_tokens(json_compact(text_only), model)["exact_tokens"]
        total += images * IMAGE_PART_TOKEN_ESTIMATE + MESSAGE_STRUCTURE_TOKEN_OVERHEAD
    return total


def count_schema_tokens(tool_schemas: list[dict[str, Any]], model: str) -> int:
    """Count tokens consumed by tool definitions."""
    if not tool_schemas:
        return 0
    return int(count_tokens(json_compact(tool_schemas), model)["exact_tokens"])
