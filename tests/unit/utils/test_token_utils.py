"""Tests for token counting (against the fake 4-chars-per-token encoding)."""

from __future__ import annotations

from core.constants import IMAGE_PART_TOKEN_ESTIMATE, MESSAGE_STRUCTURE_TOKEN_OVERHEAD, TOKEN_CACHE_SIZE
from utils.token_utils import _count_tokens_cached, count_message_tokens, count_schema_tokens, count_tokens


def test_count_tokens() -> None:
    result = count_tokens("abcdefgh", "gpt-4o")

    assert result["exact_tokens"] == 2
    assert result["char_count"] == 8
    assert result["chars_per_token"] == 4.0
    assert result["encoding"] == "fake_cl100k"


def test_count_tokens_empty() -> None:
    assert count_tokens("", "gpt-4o")["chars_per_token"] == 0


def test_count_message_tokens_adds_overhead() -> None:
    # '{"role":"user","content":"hi"}' is 30 chars -> 8 tokens
    messages = [{"role": "user", "content": "hi"}]
    assert count_message_tokens(messages, "gpt-4o") == 8 + MESSAGE_STRUCTURE_TOKEN_OVERHEAD
    assert count_message_tokens(messages * 2, "gpt-4o") == 2 * (8 + MESSAGE_STRUCTURE_TOKEN_OVERHEAD)


def test_count_schema_tokens() -> None:
    assert count_schema_tokens([], "gpt-4o") == 0
    assert count_schema_tokens([{"name": "x"}], "claude-sonnet-4") == 4


def test_image_parts_cost_a_flat_estimate() -> None:
    text_part = {"type": "text", "text": "what is this?"}
    small = {"type": "image_url", "image_url": {"url": "data:image/png;base64," + "A" * 40}}
    large = {"type": "image_url", "image_url": {"url": "data:image/png;base64," + "A" * 800_000}}
    block = {"type": "image", "source": {"type": "base64", "media_type": "image/png", "data": "A" * 800_000}}
    text_only = count_message_tokens([{"role": "user", "content": [text_part]}], "gpt-4o")

    with_small = count_message_tokens([{"role": "user", "content": [text_part, small]}], "gpt-4o")
    with_large = count_message_tokens([{"role": "user", "content": [text_part, large]}], "gpt-4o")
    with_block = count_message_tokens([{"role": "user", "content": [text_part, block]}], "claude-sonnet-4")

    assert with_small == with_large == text_only + IMAGE_PART_TOKEN_ESTIMATE
    assert with_block == text_only + IMAGE_PART_TOKEN_ESTIMATE


def test_token_cache_is_bounded() -> None:
    for i in range(TOKEN_CACHE_SIZE * 5):
        count_tokens(f"distinct text {i}", "gpt-4o")

    info = _count_tokens_cached.cache_info()
    assert info.maxsize == TOKEN_CACHE_SIZE * 2
    assert info.currsize <= info.maxsize
