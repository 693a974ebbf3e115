"""Turn runtime - drives one chat turn through the plugin runtime.

A turn is one user message -> model response cycle:

1. Run the before-send interception chain
2. Stop with a ``cancelled`` event if an interceptor said so; the gateway
   is never called in that case
3. Build the chat request from history + the (possibly replaced) message
4. Stream the gateway's output through a ``StreamRelay``, yielding each
   delta as a ``chunk`` event
5. On upstream failure, yield an ``error`` event and stop
6. Run the after-receive chain over the assembled assistant message
7. Yield a ``completed`` event with the final message

Closing the event iterator, or cancelling the task that consumes it,
cancels the relay and with it the upstream gateway call.
"""

from __future__ import annotations

import contextlib
from collections.abc import AsyncIterator
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

import structlog

from chatspace.agent.llm import ChatCompletionRequest, ChatGateway
from chatspace.config import Settings, get_settings
from chatspace.infra.streaming import ChunkType, EventType, StreamChunk, StreamEvent, StreamRelay
from chatspace.plugins.context import ConversationContext, InterceptResult, Message, MessageRole
from chatspace.plugins.manager import PluginManager
from chatspace.plugins.tool_plugin import ToolContext, ToolResult

log = structlog.get_logger(__name__)


class TurnEventType(StrEnum):
    CANCELLED = "cancelled"
    CHUNK = "chunk"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(frozen=True)
class TurnEvent:
    """One observable step of a turn.

    - cancelled: ``result`` holds the before-chain result (reason, plugin)
    - chunk: ``chunk`` holds one DELTA
    - completed: ``message`` is the final assistant message, ``result`` the
      after-chain result (which may itself be a cancellation)
    - error: ``error`` describes the upstream failure
    """

    type: TurnEventType
    chunk: StreamChunk | None = None
    message: Message | None = None
    result: InterceptResult | None = None
    error: str | None = None

    def to_stream_event(self, **metadata: Any) -> StreamEvent:
        if self.type is TurnEventType.CHUNK and self.chunk is not None:
            return self.chunk.to_event(**metadata)
        if self.type is TurnEventType.ERROR:
            return StreamEvent(EventType.ERROR, {"error": self.error}, metadata=metadata)

        result = self.result
        payload: dict[str, Any] = {
            "reason": result.cancel_reason if result else None,
            "cancelled_by": result.cancelled_by if result else None,
            "metadata": dict(result.metadata or {}) if result else {},
        }
        if self.type is TurnEventType.CANCELLED or (result is not None and result.cancelled):
            payload["stage"] = "before" if self.type is TurnEventType.CANCELLED else "after"
            return StreamEvent(EventType.CANCELLED, payload, metadata=metadata)

        payload["content"] = self.message.content if self.message else ""
        payload["message_id"] = str(self.message.id) if self.message else None
        return StreamEvent(EventType.DONE, payload, metadata=metadata)


class TurnRuntime:
    """Orchestrates interception, streaming and post-processing for chat turns.

    One runtime is shared by all turns; it keeps no per-turn state.
    """

    def __init__(
        self,
        manager: PluginManager,
        gateway: ChatGateway,
        settings: Settings | None = None,
    ) -> None:
        self._manager = manager
        self._gateway = gateway
        self._settings = settings or get_settings()

    async def run_turn(
        self,
        message: Message,
        context: ConversationContext,
        request: ChatCompletionRequest | None = None,
    ) -> AsyncIterator[TurnEvent]:
        """Run one turn and yield its events in order.

        *request* supplies model and sampling parameters; its ``messages``
        are replaced by the context history plus the outgoing message.
        """
        conversation_id = str(context.conversation_id)

        before = await self._manager.on_before_send(message, context)
        if before.cancelled:
            log.info(
                "runtime.turn_cancelled",
                conversation_id=conversation_id,
                stage="before",
                cancelled_by=before.cancelled_by,
            )
            yield TurnEvent(TurnEventType.CANCELLED, result=before)
            return

        outgoing = before.message or message
        base = request or ChatCompletionRequest(messages=[])
        llm_request = base.model_copy(update={"messages": context.messages_for_llm(outgoing)})

        relay = StreamRelay(
            self._gateway.stream(llm_request),
            idle_timeout=self._settings.stream_idle_timeout_seconds,
            conversation_id=conversation_id,
        )
        async with contextlib.aclosing(relay.stream()) as chunks:
            async for chunk in chunks:
                if chunk.type is ChunkType.DELTA:
                    yield TurnEvent(TurnEventType.CHUNK, chunk=chunk)
                elif chunk.type is ChunkType.ERROR:
                    log.warning(
                        "runtime.turn_failed",
                        conversation_id=conversation_id,
                        error=chunk.error,
                        delivered_chunks=relay.chunk_count,
                    )
                    yield TurnEvent(TurnEventType.ERROR, error=chunk.error)
                    return

        if relay.cancelled:
            return

        assistant = Message(
            role=MessageRole.ASSISTANT,
            content=relay.full_text,
            conversation_id=context.conversation_id,
            metadata={"model": llm_request.model or self._settings.litellm_default_model},
        )
        after = await self._manager.on_after_receive(assistant, context)
        final = after.message or assistant

        log.info(
            "runtime.turn_completed",
            conversation_id=conversation_id,
            chunks=relay.chunk_count,
            after_cancelled=after.cancelled,
        )
        yield TurnEvent(TurnEventType.COMPLETED, message=final, result=after)

    async def execute_tool(
        self,
        plugin_id: str,
        tool_name: str,
        parameters: dict[str, Any],
        context: ConversationContext,
    ) -> ToolResult:
        """Run a tool call the model requested mid-turn."""
        tool_context = ToolContext(
            conversation_id=context.conversation_id,
            user_id=context.user_id or None,
            workspace_id=context.workspace_id or None,
        )
        return await self._manager.execute_tool(plugin_id, tool_name, parameters, tool_context)
