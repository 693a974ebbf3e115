"""
Shared test fixtures for pytest.

Provides common fakes and test data for all test modules:
- settings: Test configuration with discovery turned off
- manager: A PluginManager over a fresh registry
- conversation, user_message: Per-turn data
- make_interceptor / make_tool_plugin / make_ui_plugin: Fake plugin builders
- fake_gateway: Scripted LLM gateway that records calls and closes
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest

from chatspace.agent.llm import ChatCompletionRequest, CompletionResult
from chatspace.config import Environment, Settings, get_settings
from chatspace.plugins.base import MessageInterceptor, PluginCategory, PluginMetadata
from chatspace.plugins.context import ConversationContext, InterceptResult, Message, MessageRole
from chatspace.plugins.manager import PluginManager
from chatspace.plugins.tool_plugin import (
    ToolDefinition,
    ToolParameter,
    ToolParameterType,
    ToolProvider,
    ToolResult,
)
from chatspace.plugins.ui import MessageActionButton, UIExtension
from chatspace.telemetry import clear_context


# ------------------------------------------------------------------ #
# Session-scoped: clear settings cache between test sessions
# ------------------------------------------------------------------ #


@pytest.fixture(autouse=True, scope="session")
def _clear_settings_cache():
    """Clear the lru_cache on get_settings so test overrides take effect."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def _clear_log_context():
    yield
    clear_context()


@pytest.fixture
def settings() -> Settings:
    """Test settings: no module or entry-point discovery, no idle timeout."""
    return Settings(
        _env_file=None,
        environment=Environment.TEST,
        plugin_modules=[],
        plugin_entry_points=False,
        plugin_init_timeout_seconds=1.0,
        plugin_dispose_timeout_seconds=1.0,
        tool_timeout_seconds=1.0,
        stream_idle_timeout_seconds=None,
    )


@pytest.fixture
def manager(settings: Settings) -> PluginManager:
    return PluginManager(settings)


@pytest.fixture
def conversation() -> ConversationContext:
    return ConversationContext(conversation_id=uuid.uuid4(), user_id="user-1", workspace_id="ws-1")


@pytest.fixture
def user_message(conversation: ConversationContext) -> Message:
    return Message(
        role=MessageRole.USER,
        content="hi",
        conversation_id=conversation.conversation_id,
    )


# ------------------------------------------------------------------ #
# Fake plugins
# ------------------------------------------------------------------ #


def _meta(plugin_id: str, category: PluginCategory = PluginCategory.OTHER) -> PluginMetadata:
    return PluginMetadata(id=plugin_id, name=plugin_id.title(), version="1.0.0", category=category)


class RecordingInterceptor(MessageInterceptor):
    """Interceptor that records every call into a shared list.

    ``transform`` rewrites the content, ``cancel_reason`` stops the chain,
    ``error`` is raised, ``delay`` sleeps before answering.
    """

    def __init__(
        self,
        plugin_id: str,
        calls: list[tuple[str, str, str]] | None = None,
        *,
        transform: Callable[[str], str] | None = None,
        cancel_reason: str | None = None,
        error: Exception | None = None,
        delay: float = 0.0,
        scratch: dict[str, Any] | None = None,
    ) -> None:
        self._metadata = _meta(plugin_id, PluginCategory.INTERCEPTORS)
        self.calls = calls if calls is not None else []
        self.transform = transform
        self.cancel_reason = cancel_reason
        self.error = error
        self.delay = delay
        self.scratch = scratch or {}
        self.seen_data: list[dict[str, Any]] = []
        self.disposed = False

    @property
    def metadata(self) -> PluginMetadata:
        return self._metadata

    async def dispose(self) -> None:
        self.disposed = True

    async def on_before_send(self, message: Message, context: ConversationContext) -> InterceptResult:
        return await self._handle("before", message, context)

    async def on_after_receive(self, message: Message, context: ConversationContext) -> InterceptResult:
        return await self._handle("after", message, context)

    async def _handle(
        self, direction: str, message: Message, context: ConversationContext
    ) -> InterceptResult:
        self.calls.append((self.plugin_id, direction, message.content))
        self.seen_data.append(dict(context.plugin_data))
        context.plugin_data.update(self.scratch)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.cancel_reason is not None:
            return InterceptResult.cancel(self.cancel_reason)
        if self.transform is not None:
            return InterceptResult.replace_with(message.with_content(self.transform(message.content)))
        return InterceptResult()


class FakeToolPlugin(ToolProvider):
    """Provides a ``search`` tool (or any tools passed in)."""

    def __init__(
        self,
        plugin_id: str = "search-plugin",
        tools: list[ToolDefinition] | None = None,
        *,
        error: Exception | None = None,
        delay: float = 0.0,
        init_error: Exception | None = None,
    ) -> None:
        self._metadata = _meta(plugin_id, PluginCategory.TOOLS)
        self._tools = tools or [
            ToolDefinition(
                name="search",
                description="Search the knowledge base",
                parameters=(
                    ToolParameter("query", ToolParameterType.STRING, "Search query"),
                    ToolParameter(
                        "limit", ToolParameterType.INTEGER, "Max hits", required=False, default=5
                    ),
                ),
            )
        ]
        self.error = error
        self.delay = delay
        self.init_error = init_error
        self.executions: list[tuple[str, dict[str, Any]]] = []

    @property
    def metadata(self) -> PluginMetadata:
        return self._metadata

    async def initialize(self, context) -> None:
        if self.init_error is not None:
            raise self.init_error

    def list_tools(self) -> list[ToolDefinition]:
        return self._tools

    async def execute_tool(self, tool_name: str, params: dict[str, Any], context) -> ToolResult:
        self.executions.append((tool_name, params))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return ToolResult.ok({"query": params.get("query"), "hits": [], "limit": params.get("limit")})


class FakeUIPlugin(UIExtension):
    def __init__(self, plugin_id: str, labels: tuple[str, ...] = ("A",), *, error: Exception | None = None):
        self._metadata = _meta(plugin_id, PluginCategory.UI)
        self.labels = labels
        self.error = error

    @property
    def metadata(self) -> PluginMetadata:
        return self._metadata

    def get_message_actions(self, message: Message) -> list[MessageActionButton]:
        if self.error is not None:
            raise self.error
        return [
            MessageActionButton(id=f"{self.plugin_id}-{label}", label=label, order=i)
            for i, label in enumerate(self.labels)
        ]


@pytest.fixture
def make_interceptor() -> type[RecordingInterceptor]:
    return RecordingInterceptor


@pytest.fixture
def make_tool_plugin() -> type[FakeToolPlugin]:
    return FakeToolPlugin


@pytest.fixture
def make_ui_plugin() -> type[FakeUIPlugin]:
    return FakeUIPlugin


# ------------------------------------------------------------------ #
# Fake LLM gateway
# ------------------------------------------------------------------ #


class FakeGateway:
    """Scripted ``ChatGateway``.

    Yields ``deltas`` with ``delay`` seconds between them, then raises
    ``error`` if set. Records every request and whether the stream was closed.
    """

    def __init__(
        self,
        deltas: tuple[str, ...] = ("Hel", "lo"),
        *,
        delay: float = 0.0,
        error: Exception | None = None,
    ) -> None:
        self.deltas = deltas
        self.delay = delay
        self.error = error
        self.requests: list[ChatCompletionRequest] = []
        self.closed = False
        self.yielded = 0

    @property
    def call_count(self) -> int:
        return len(self.requests)

    async def stream(self, request: ChatCompletionRequest) -> AsyncIterator[str]:
        self.requests.append(request)
        try:
            for delta in self.deltas:
                if self.delay:
                    await asyncio.sleep(self.delay)
                self.yielded += 1
                yield delta
            if self.error is not None:
                raise self.error
        finally:
            self.closed = True

    async def complete(self, request: ChatCompletionRequest) -> CompletionResult:
        self.requests.append(request)
        return CompletionResult(content="".join(self.deltas), model=request.model or "fake")


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def make_gateway() -> type[FakeGateway]:
    return FakeGateway
