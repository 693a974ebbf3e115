"""Tests for the plugin management API."""

from __future__ import annotations

import httpx
import pytest
from fastapi import FastAPI
from httpx import AsyncClient

from chatspace.api.router import api_v1_router, public_router
from chatspace.plugins.builtin.calculator import CalculatorPlugin
from chatspace.plugins.builtin.message_actions import MessageActionsPlugin
from chatspace.plugins.builtin.message_rating import MessageRatingPlugin


@pytest.fixture
async def app(manager, make_interceptor) -> FastAPI:
    await manager.register_plugin(make_interceptor("pii"))
    await manager.register_plugin(CalculatorPlugin())
    await manager.register_plugin(MessageActionsPlugin())
    await manager.register_plugin(MessageRatingPlugin())

    test_app = FastAPI()
    test_app.include_router(public_router)
    test_app.include_router(api_v1_router)
    test_app.state.plugin_manager = manager
    return test_app


@pytest.fixture
async def client(app: FastAPI):
    async with AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


class TestListing:
    @pytest.mark.asyncio
    async def test_list_plugins(self, client):
        response = await client.get("/api/v1/plugins")

        assert response.status_code == 200
        body = response.json()
        assert [p["id"] for p in body] == ["pii", "calculator", "message-actions", "message-rating"]
        calculator = body[1]
        assert calculator["state"] == "active"
        assert calculator["capabilities"] == ["tools"]
        assert calculator["tools"] == ["add", "subtract", "multiply", "divide"]

    @pytest.mark.asyncio
    async def test_get_plugin(self, client):
        response = await client.get("/api/v1/plugins/calculator")

        assert response.status_code == 200
        assert response.json()["name"] == "Calculator"

    @pytest.mark.asyncio
    async def test_get_unknown_plugin(self, client):
        response = await client.get("/api/v1/plugins/ghost")

        assert response.status_code == 404
        assert "ghost" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_tools(self, client):
        response = await client.get("/api/v1/plugins/tools")

        assert response.status_code == 200
        names = [t["function"]["name"] for t in response.json()]
        assert names == ["add", "subtract", "multiply", "divide"]

    @pytest.mark.asyncio
    async def test_settings(self, client):
        response = await client.get("/api/v1/plugins/settings")

        assert response.status_code == 200
        assert set(response.json()) == {"message-actions", "message-rating"}

    @pytest.mark.asyncio
    async def test_input_extensions(self, client):
        response = await client.get("/api/v1/plugins/input-extensions")

        assert response.status_code == 200
        assert response.json() == []

    @pytest.mark.asyncio
    async def test_message_actions(self, client):
        response = await client.post(
            "/api/v1/plugins/message-actions",
            json={"role": "assistant", "content": "Hello", "metadata": {"rating": -1}},
        )

        assert response.status_code == 200
        actions = response.json()
        assert [a["id"] for a in actions] == [
            "copy",
            "regenerate",
            "share",
            "delete",
            "thumbs-up",
            "thumbs-down",
        ]
        assert actions[-1]["color"] == "Error"


class TestToggle:
    @pytest.mark.asyncio
    async def test_disable_then_enable(self, client):
        response = await client.post("/api/v1/plugins/calculator/disable")
        assert response.status_code == 200
        assert response.json()["enabled"] is False
        assert response.json()["state"] == "disabled"

        tools = await client.get("/api/v1/plugins/tools")
        assert tools.json() == []

        listing = await client.get("/api/v1/plugins")
        assert "calculator" in [p["id"] for p in listing.json()]

        response = await client.post("/api/v1/plugins/calculator/enable")
        assert response.json()["state"] == "active"

    @pytest.mark.asyncio
    async def test_toggle_unknown(self, client):
        response = await client.post("/api/v1/plugins/ghost/enable")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_unload(self, client, manager):
        response = await client.delete("/api/v1/plugins/pii")

        assert response.status_code == 204
        assert manager.get_plugin("pii") is None

        again = await client.delete("/api/v1/plugins/pii")
        assert again.status_code == 404


class TestToolExecution:
    @pytest.mark.asyncio
    async def test_execute(self, client):
        response = await client.post(
            "/api/v1/plugins/calculator/tools/multiply", json={"a": 6, "b": 7}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"] == {"result": 42.0}

    @pytest.mark.asyncio
    async def test_unknown_tool_is_still_200(self, client):
        response = await client.post("/api/v1/plugins/calculator/tools/sqrt", json={"a": 4})

        assert response.status_code == 200
        assert response.json()["error_code"] == "tool_not_found"

    @pytest.mark.asyncio
    async def test_unknown_plugin_is_still_200(self, client):
        response = await client.post("/api/v1/plugins/ghost/tools/add", json={})

        assert response.status_code == 200
        assert response.json()["error_code"] == "plugin_not_found"

    @pytest.mark.asyncio
    async def test_validation_error(self, client):
        response = await client.post(
            "/api/v1/plugins/calculator/tools/add", json={"a": "one", "b": 2}
        )

        body = response.json()
        assert body["success"] is False
        assert body["error_code"] == "validation_error"
        assert body["metadata"]["errors"]


@pytest.mark.asyncio
async def test_health(client):
    live = await client.get("/health/live")
    ready = await client.get("/health/ready")

    assert live.json()["status"] == "ok"
    assert ready.json()["status"] == "ready"
    assert ready.json()["plugins"] == 4


@pytest.mark.asyncio
async def test_runtime_not_initialized():
    app = FastAPI()
    app.include_router(api_v1_router)

    async with AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.get("/api/v1/plugins")

    assert response.status_code == 503
