"""Tests for the chat streaming and model listing endpoints."""

from __future__ import annotations

import json

import httpx
import pytest
from fastapi import FastAPI
from httpx import AsyncClient

from chatspace.agent.runtime import TurnRuntime
from chatspace.api.router import api_v1_router


def _parse_sse(body: str) -> list[tuple[str, dict]]:
    events = []
    for frame in body.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in frame.splitlines())
        events.append((lines["event"], json.loads(lines["data"])))
    return events


def _build_app(manager, gateway, settings) -> FastAPI:
    app = FastAPI()
    app.include_router(api_v1_router)
    app.state.plugin_manager = manager
    app.state.turn_runtime = TurnRuntime(manager, gateway, settings)
    return app


async def _post_stream(app: FastAPI, payload: dict) -> httpx.Response:
    async with AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
        return await ac.post("/api/v1/chat/stream", json=payload)


@pytest.mark.asyncio
async def test_stream_tokens_then_done(manager, settings, make_gateway):
    app = _build_app(manager, make_gateway(("Hel", "lo")), settings)

    response = await _post_stream(
        app, {"message": "hi", "conversation_id": "00000000-0000-0000-0000-000000000001"}
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    events = _parse_sse(response.text)
    assert [name for name, _ in events] == ["token", "token", "done"]
    assert [payload["data"] for _, payload in events[:2]] == ["Hel", "lo"]
    done = events[-1][1]
    assert done["data"]["content"] == "Hello"
    assert done["metadata"]["conversation_id"] == "00000000-0000-0000-0000-000000000001"


@pytest.mark.asyncio
async def test_blocked_message_is_cancelled(manager, settings, make_gateway, make_interceptor):
    await manager.register_plugin(make_interceptor("guard", cancel_reason="blocked by policy"))
    gateway = make_gateway()
    app = _build_app(manager, gateway, settings)

    response = await _post_stream(app, {"message": "my ssn"})

    events = _parse_sse(response.text)
    assert [name for name, _ in events] == ["cancelled"]
    data = events[0][1]["data"]
    assert data["reason"] == "blocked by policy"
    assert data["cancelled_by"] == "guard"
    assert data["stage"] == "before"
    assert gateway.call_count == 0


@pytest.mark.asyncio
async def test_history_and_overrides_reach_gateway(manager, settings, make_gateway):
    gateway = make_gateway(("ok",))
    app = _build_app(manager, gateway, settings)

    await _post_stream(
        app,
        {
            "message": "and now?",
            "history": [
                {"role": "user", "content": "first"},
                {"role": "assistant", "content": "answer"},
            ],
            "model": "openai/gpt-4o",
            "max_tokens": 64,
        },
    )

    request = gateway.requests[0]
    assert request.model == "openai/gpt-4o"
    assert request.max_tokens == 64
    assert [m["content"] for m in request.messages] == ["first", "answer", "and now?"]


@pytest.mark.asyncio
async def test_upstream_failure_is_error_event(manager, settings, make_gateway):
    app = _build_app(manager, make_gateway(("part",), error=ConnectionError("proxy gone")), settings)

    response = await _post_stream(app, {"message": "hi"})

    events = _parse_sse(response.text)
    assert [name for name, _ in events] == ["token", "error"]
    assert events[-1][1]["data"]["error"] == "proxy gone"


@pytest.mark.asyncio
async def test_empty_message_rejected(manager, settings, make_gateway):
    app = _build_app(manager, make_gateway(), settings)

    response = await _post_stream(app, {"message": ""})

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_models_listing(manager, settings, make_gateway):
    class StubClient:
        async def list_models(self):
            return ["gpt-4o", "claude-3-haiku"]

    app = _build_app(manager, make_gateway(), settings)
    app.state.llm_client = StubClient()

    async with AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.get("/api/v1/chat/models")

    assert response.json() == {"models": ["gpt-4o", "claude-3-haiku"]}


@pytest.mark.asyncio
async def test_models_without_client(manager, settings, make_gateway):
    app = _build_app(manager, make_gateway(), settings)

    async with AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.get("/api/v1/chat/models")

    assert response.status_code == 503
