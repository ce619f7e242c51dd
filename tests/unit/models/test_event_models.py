"""Tests for stream event framing."""

from __future__ import annotations

from models.event_models import EventType, StreamEvent


def test_to_sse() -> None:
    event = StreamEvent(event=EventType.CONTENT_DELTA, data={"delta": "Hi é"})
    assert event.to_sse() == 'event: content_delta\ndata: {"delta":"Hi é"}\n\n'


def test_to_sse_empty_payload() -> None:
    assert StreamEvent(event=EventType.DONE).to_sse() == "event: done\ndata: {}\n\n"


def test_to_ws_message() -> None:
    event = StreamEvent(event=EventType.TOOL_END, data={"toolName": "web_search", "success": True})
    assert event.to_ws_message() == {"type": "tool_end", "toolName": "web_search", "success": True}
