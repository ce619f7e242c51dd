"""Tests for error envelopes."""

from __future__ import annotations

from models.error_models import ErrorCode, ErrorResponse, WebSocketError, get_status_code


def test_error_response_envelope() -> None:
    response = ErrorResponse(
        code=ErrorCode.CONVERSATION_NOT_FOUND,
        message="Conversation 'c' not found",
        request_id="req-1",
        debug={"trace": "..."},
    )

    body = response.to_dict()

    assert body["error"]["code"] == "RES_3002"
    assert body["error"]["request_id"] == "req-1"
    assert "debug" not in body["error"]
    assert "details" not in body["error"]
    assert response.to_dict(include_debug=True)["error"]["debug"] == {"trace": "..."}


def test_websocket_error_frame() -> None:
    frame = WebSocketError(code=ErrorCode.WS_MESSAGE_INVALID, message="Unknown message type: x").to_dict()
    assert frame["type"] == "error"
    assert frame["code"] == "WS_6001"
    assert frame["recoverable"] is True
    assert "conversation_id" not in frame


def test_status_codes() -> None:
    assert get_status_code(ErrorCode.VALIDATION_INVALID_FORMAT) == 422
    assert get_status_code(ErrorCode.DATABASE_UNAVAILABLE) == 503
    assert get_status_code(ErrorCode.RUN_CANCELLED) == 500
