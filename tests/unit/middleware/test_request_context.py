"""Tests for per-request log context."""

from __future__ import annotations

import pytest

from fastapi import FastAPI
from fastapi.testclient import TestClient

from api.middleware.request_context import (
    REQUEST_ID_HEADER,
    RequestContext,
    RequestContextMiddleware,
    create_websocket_context,
    get_request_context,
    get_request_id,
    update_request_context,
)


def test_log_context_skips_unknown_ids() -> None:
    ctx = RequestContext(request_id="req_1", transport="http", path="/api/chat", user_id="user-1")

    log_context = ctx.to_log_context()

    assert log_context["request_id"] == "req_1"
    assert log_context["user_id"] == "user-1"
    assert "conversation_id" not in log_context
    assert "execution_id" not in log_context
    assert log_context["elapsed_ms"] >= 0


def test_update_outside_request_is_noop() -> None:
    update_request_context(conversation_id="conv-1")
    assert get_request_context() is None


@pytest.mark.asyncio
async def test_websocket_context_updates() -> None:
    ctx = create_websocket_context("conv-1", user_id="user-1")

    update_request_context(execution_id="exec-1")
    update_request_context(user_id=None)

    assert get_request_context() is ctx
    assert get_request_id().startswith("ws_")
    assert ctx.path == "/ws/chat/conv-1"
    assert ctx.user_id == "user-1"
    assert ctx.execution_id == "exec-1"


@pytest.fixture
def client() -> TestClient:
    app = FastAPI()
    app.add_middleware(RequestContextMiddleware)

    @app.get("/context")
    async def read_context() -> dict[str, str | None]:
        update_request_context(conversation_id="conv-7")
        ctx = get_request_context()
        return {"request_id": ctx.request_id, "user_id": ctx.user_id, "conversation_id": ctx.conversation_id}

    return TestClient(app)


class TestRequestContextMiddleware:
    """Tests for RequestContextMiddleware."""

    def test_generates_request_id(self, client: TestClient) -> None:
        response = client.get("/context", headers={"X-User-Id": "user-9"})

        body = response.json()
        assert body["request_id"].startswith("req_")
        assert body["user_id"] == "user-9"
        assert body["conversation_id"] == "conv-7"
        assert response.headers[REQUEST_ID_HEADER] == body["request_id"]
        assert response.headers["X-Response-Time"].endswith("ms")

    def test_reuses_incoming_request_id(self, client: TestClient) -> None:
        response = client.get("/context", headers={REQUEST_ID_HEADER: "req_from_gateway"})

        assert response.json()["request_id"] == "req_from_gateway"
        assert response.headers[REQUEST_ID_HEADER] == "req_from_gateway"
