"""Tests for image extraction, large-field offload and reference resolution."""

from __future__ import annotations

import json

from typing import Any

import pytest

from api.services.content_offload import (
    ContentOffloader,
    data_ref,
    extract_images,
    image_ref,
    offload_large_fields,
    resolve_data_references,
    sanitize_history_images,
)
from core.run_context import PreservedContentStore

PNG = "data:image/png;base64,iVBORw0KGgoAAAANSUhEUg=="


class TestExtractImages:
    """Tests for extract_images."""

    def test_generated_and_first_image(self) -> None:
        raw = json.dumps({"success": True, "generatedImages": [PNG, "not-an-image"], "firstImage": PNG})

        modified, images = extract_images(raw, "call_1")

        result = json.loads(modified)
        assert result["generatedImages"] == ["{{IMAGE_REF:img-call_1-0}}", "not-an-image"]
        assert result["firstImage"] == "{{IMAGE_REF:img-call_1-first}}"
        assert [(image.id, image.index) for image in images] == [("img-call_1-0", 0), ("img-call_1-first", "first")]
        assert images[0].data == PNG

    def test_result_without_images_unchanged(self) -> None:
        raw = '{"success": true}'
        assert extract_images(raw, "call_1") == (raw, [])

    def test_non_json_unchanged(self) -> None:
        assert extract_images("plain text", "call_1") == ("plain text", [])

    def test_second_pass_is_noop(self) -> None:
        modified, _ = extract_images(json.dumps({"firstImage": PNG}), "call_1")
        assert extract_images(modified, "call_1") == (modified, [])


class TestOffloadLargeFields:
    """Tests for offload_large_fields."""

    def test_nested_paths(self) -> None:
        raw = json.dumps({"pages": [{"title": "short", "content": "x" * 50}], "summary": "y" * 60})

        modified, fields = offload_large_fields(raw, "call_7", threshold=40)

        assert [field.path for field in fields] == ["pages[0].content", "summary"]
        assert fields[0].content == "x" * 50
        assert fields[0].id.startswith("data-call_7-")
        assert fields[0].id.endswith("-0")
        result = json.loads(modified)
        assert result["pages"][0]["title"] == "short"
        assert result["pages"][0]["content"] == data_ref(fields[0].id)

    def test_root_string(self) -> None:
        modified, fields = offload_large_fields(json.dumps("z" * 20), "call_1", threshold=10)
        assert fields[0].path == ""
        assert json.loads(modified) == data_ref(fields[0].id)

    def test_below_threshold_unchanged(self) -> None:
        raw = json.dumps({"text": "small"})
        assert offload_large_fields(raw, "call_1", threshold=100) == (raw, [])

    def test_unparseable_unchanged(self) -> None:
        assert offload_large_fields("{broken", "call_1", threshold=1) == ("{broken", [])

    def test_threshold_is_exclusive(self) -> None:
        raw = json.dumps({"exact": "e" * 40, "over": "o" * 41})

        modified, fields = offload_large_fields(raw, "call_1", threshold=40)

        assert [field.path for field in fields] == ["over"]
        assert json.loads(modified)["exact"] == "e" * 40

    def test_offloaded_result_resolves_back(self) -> None:
        original = {"pages": [{"content": "x" * 120, "n": 1}], "note": "short", "blob": "y" * 300}
        modified, fields = offload_large_fields(json.dumps(original), "call_1", threshold=100)
        store = PreservedContentStore()
        for field in fields:
            store.add(field.id, "data", field.content, 1, path=field.path)

        assert resolve_data_references(json.loads(modified), store) == original


class TestResolveDataReferences:
    """Tests for resolve_data_references."""

    @pytest.fixture
    def store(self) -> PreservedContentStore:
        store = PreservedContentStore()
        store.add("data-1", "data", "FULL TEXT", 1)
        store.add("img-1", "image", PNG, 1)
        return store

    def test_whole_token_resolves_to_payload(self, store: PreservedContentStore) -> None:
        assert resolve_data_references(data_ref("data-1"), store) == "FULL TEXT"
        assert resolve_data_references({"image": image_ref("img-1")}, store) == {"image": PNG}

    def test_embedded_tokens_substituted(self, store: PreservedContentStore) -> None:
        value = {"items": [f"before {data_ref('data-1')} after", 3]}
        assert resolve_data_references(value, store) == {"items": ["before FULL TEXT after", 3]}

    def test_unknown_reference_left_literal(self, store: PreservedContentStore) -> None:
        assert resolve_data_references(data_ref("missing"), store) == "{{DATA_REF:missing}}"

    def test_store_is_write_once(self, store: PreservedContentStore) -> None:
        store.add("data-1", "data", "REPLACEMENT", 2)
        assert store.get("data-1").payload == "FULL TEXT"
        assert len(store.entries("image")) == 1


def test_sanitize_history_images() -> None:
    messages = [
        {"role": "user", "content": f"look {PNG} here"},
        {"role": "user", "content": [{"type": "text", "text": PNG}, {"type": "image_url", "image_url": {"url": PNG}}]},
        {"role": "assistant", "content": "no images"},
    ]

    sanitized, images = sanitize_history_images(messages)

    assert len(images) == 2
    assert "data:image/" not in sanitized[0]["content"]
    assert sanitized[0]["content"].startswith("look {{IMAGE_REF:img-history-0-0-")
    assert sanitized[1]["content"][1] == messages[1]["content"][1]
    assert sanitized[2] is messages[2]


class TestContentOffloader:
    """Tests for the run-bound offloader."""

    @pytest.mark.asyncio
    async def test_process_tool_result(self, run_context: Any, events: Any) -> None:
        run_context.current_round = 2
        run_context.assistant_message_id = "msg-asst-1"
        offloader = ContentOffloader(run_context, events, threshold=1000)
        raw = json.dumps({"firstImage": PNG, "body": "b" * 1500})

        modified = await offloader.process_tool_result("call_1", raw)

        result = json.loads(modified)
        assert result["firstImage"] == "{{IMAGE_REF:img-call_1-first}}"
        assert result["body"].startswith("{{DATA_REF:data-call_1-")
        assert events.names() == ["image_generated", "data_content", "data_offloaded"]
        assert events.first("image_generated")["imageData"] == PNG
        assert events.first("data_content")["size"] == 1500
        assert events.first("data_offloaded")["offloadedCount"] == 1

        stored = run_context.preserved_content.entries("data")[0]
        assert stored.payload == "b" * 1500
        assert stored.created_from_round == 2
        assert stored.path == "body"

    @pytest.mark.asyncio
    async def test_sanitize_history_offloads_tool_results(self, run_context: Any, events: Any) -> None:
        offloader = ContentOffloader(run_context, events, threshold=1000)
        messages = [
            {"role": "tool", "tool_call_id": "call_old", "content": json.dumps({"html": "h" * 2000})},
            {
                "role": "user",
                "content": [{"type": "tool_result", "tool_use_id": "toolu_old", "content": json.dumps("t" * 2000)}],
            },
        ]

        sanitized = await offloader.sanitize_history(messages)

        assert "{{DATA_REF:data-call_old-" in sanitized[0]["content"]
        assert "{{DATA_REF:data-toolu_old-" in sanitized[1]["content"][0]["content"]
        assert len(run_context.preserved_content) == 2
        assert events.names().count("data_offloaded") == 2
