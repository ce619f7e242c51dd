"""Tests for malformed tool output recovery."""

from __future__ import annotations

import json

from core.constants import RAW_OUTPUT_PREVIEW_LENGTH
from tools.response_recovery import TRUNCATION_SUFFIX, recover_tool_output, serialize_tool_output


def test_valid_json_unchanged() -> None:
    text = '{"success": true,  "items": [1, 2]}'
    assert recover_tool_output("t", text) is text


def test_control_characters_removed() -> None:
    recovered = recover_tool_output("t", '{"text": "line\x01 one"}')
    assert json.loads(recovered) == {"text": "line one"}


def test_embedded_object_extracted() -> None:
    recovered = recover_tool_output("t", 'Result follows: {"success": true, "count": 2} -- done')
    assert json.loads(recovered) == {"success": True, "count": 2}


def test_unrecoverable_output_enveloped() -> None:
    raw = "not json at all " * 100

    result = json.loads(recover_tool_output("scraper", raw))

    assert result["success"] is False
    assert result["error"] == "Tool response contained malformed JSON that could not be recovered"
    assert result["recovery_attempted"] is True
    assert result["raw_output_preview"] == raw[:RAW_OUTPUT_PREVIEW_LENGTH] + TRUNCATION_SUFFIX
    assert "scraper tool returned malformed JSON" in result["suggestion"]


def test_short_output_not_marked_truncated() -> None:
    result = json.loads(recover_tool_output("t", "oops"))
    assert result["raw_output_preview"] == "oops"


def test_serialize_values() -> None:
    assert serialize_tool_output("t", {"a": 1}) == '{"a":1}'
    assert json.loads(serialize_tool_output("t", b'{"b": 2}')) == {"b": 2}
    assert serialize_tool_output("t", [1, "x"]) == '[1,"x"]'
