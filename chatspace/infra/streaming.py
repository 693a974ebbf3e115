"""
Streaming relay and Server-Sent Events (SSE) helpers.

The relay forwards the text deltas an LLM gateway produces for one turn to
a caller, chunk by chunk, and stays cancellable at every point.

Key features:
- One chunk in flight: the next upstream read starts only after the
  caller has taken the previous chunk (natural backpressure)
- Cancellation within one chunk: ``cancel()``, task cancellation, or
  closing the consumer iterator cancels the pending upstream read and
  closes the upstream iterator
- Terminal ERROR chunk on upstream failure or idle timeout, distinct from END
- Aggregation of the full response text for the after-receive chain

Event types (SSE):
- token: One text delta
- done: Stream completion signal
- cancelled: Turn stopped by an interceptor or the caller
- error: Upstream failure

Example:
    relay = StreamRelay(gateway.stream(request), idle_timeout=120)

    async def generate():
        async for chunk in relay:
            yield chunk.to_sse()

    return sse_response(generate())
"""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import AsyncGenerator, AsyncIterable, AsyncIterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

import structlog
from fastapi.responses import StreamingResponse

log = structlog.get_logger(__name__)


class EventType(StrEnum):
    """SSE event types for chat streaming."""
    TOKEN = "token"
    DONE = "done"
    CANCELLED = "cancelled"
    ERROR = "error"


@dataclass
class StreamEvent:
    """
    A single SSE event.

    Attributes:
        type: Event type (token, done, cancelled, error)
        data: Event payload (string or dict)
        timestamp: ISO 8601 timestamp
        metadata: Additional context (conversation_id, etc.)
    """
    type: EventType
    data: str | dict[str, Any]
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "type": self.type,
            "data": self.data,
            "timestamp": self.timestamp,
            "metadata": self.metadata,
        }

    def to_sse(self) -> str:
        """
        Format as SSE message.

        SSE format:
            event: {type}
            data: {json}

        """
        json_data = json.dumps(self.to_dict(), default=str)
        return f"event: {self.type}\ndata: {json_data}\n\n"


class ChunkType(StrEnum):
    DELTA = "delta"
    END = "end"
    ERROR = "error"


@dataclass(frozen=True)
class StreamChunk:
    """One relay output: a text delta or a terminal marker.

    ``index`` is the 0-based position of the chunk within its turn.
    """
    type: ChunkType
    index: int
    delta: str = ""
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.type is not ChunkType.DELTA

    def to_event(self, **metadata: Any) -> StreamEvent:
        if self.type is ChunkType.DELTA:
            return StreamEvent(EventType.TOKEN, self.delta, metadata=metadata)
        if self.type is ChunkType.END:
            return StreamEvent(EventType.DONE, {"chunks": self.index}, metadata=metadata)
        return StreamEvent(EventType.ERROR, {"error": self.error or "stream failed"}, metadata=metadata)

    def to_sse(self, **metadata: Any) -> str:
        return self.to_event(**metadata).to_sse()


async def _next(iterator: AsyncIterator[str]) -> str:
    return await iterator.__anext__()


class StreamRelay:
    """
    Relays one turn's upstream deltas as ordered ``StreamChunk`` objects.

    The upstream is consumed at most once. Each upstream read races a
    cancellation signal and, when configured, an idle timeout.

    Example:
        relay = StreamRelay(upstream, conversation_id="conv-456")

        async for chunk in relay:
            if chunk.type is ChunkType.DELTA:
                await send(chunk.delta)

        full_response = relay.full_text
    """

    def __init__(
        self,
        upstream: AsyncIterable[str],
        *,
        idle_timeout: float | None = None,
        conversation_id: str | None = None,
    ) -> None:
        """
        Args:
            upstream: Lazy, finite, non-restartable async iterable of deltas
            idle_timeout: Max seconds to wait for the next delta (None = no limit)
            conversation_id: Conversation identifier for logging
        """
        self._upstream = upstream
        self.idle_timeout = idle_timeout
        self._conversation_id = conversation_id
        self._cancel_event = asyncio.Event()
        self._parts: list[str] = []
        self._consumed = False
        self._start_time = time.monotonic()
        self.outcome: ChunkType | None = None  # END or ERROR once terminated

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    @property
    def full_text(self) -> str:
        """Text of every delta delivered so far."""
        return "".join(self._parts)

    @property
    def chunk_count(self) -> int:
        return len(self._parts)

    def cancel(self) -> None:
        """Stop the relay. No chunk is emitted after this call returns."""
        if not self._cancel_event.is_set():
            self._cancel_event.set()
            log.info(
                "relay.cancel_requested",
                conversation_id=self._conversation_id,
                delivered_chunks=len(self._parts),
            )

    def __aiter__(self) -> AsyncGenerator[StreamChunk, None]:
        return self.stream()

    async def stream(self) -> AsyncGenerator[StreamChunk, None]:
        """Yield chunks until END, ERROR or cancellation."""
        if self._consumed:
            raise RuntimeError("StreamRelay can only be consumed once")
        self._consumed = True

        upstream = aiter(self._upstream)
        cancel_wait = asyncio.ensure_future(self._cancel_event.wait())
        pending: asyncio.Task[str] | None = None
        index = 0

        try:
            while not self._cancel_event.is_set():
                pending = asyncio.ensure_future(_next(upstream))
                done, _ = await asyncio.wait(
                    {pending, cancel_wait},
                    timeout=self.idle_timeout,
                    return_when=asyncio.FIRST_COMPLETED,
                )

                if self._cancel_event.is_set():
                    # A read that settled alongside cancel() is discarded
                    break

                if pending not in done:
                    log.warning(
                        "relay.idle_timeout",
                        conversation_id=self._conversation_id,
                        idle_timeout=self.idle_timeout,
                        delivered_chunks=index,
                    )
                    pending.cancel()
                    await asyncio.gather(pending, return_exceptions=True)
                    pending = None
                    self.outcome = ChunkType.ERROR
                    yield StreamChunk(
                        ChunkType.ERROR,
                        index,
                        error=f"No data from upstream for {self.idle_timeout}s",
                    )
                    return

                task, pending = pending, None
                try:
                    delta = task.result()
                except StopAsyncIteration:
                    self.outcome = ChunkType.END
                    log.info(
                        "relay.completed",
                        conversation_id=self._conversation_id,
                        chunks=index,
                        duration_seconds=round(time.monotonic() - self._start_time, 2),
                    )
                    yield StreamChunk(ChunkType.END, index)
                    return
                except Exception as exc:
                    self.outcome = ChunkType.ERROR
                    log.warning(
                        "relay.upstream_failed",
                        conversation_id=self._conversation_id,
                        error=str(exc),
                        error_type=type(exc).__name__,
                        delivered_chunks=index,
                    )
                    yield StreamChunk(ChunkType.ERROR, index, error=str(exc) or type(exc).__name__)
                    return

                if self._cancel_event.is_set():
                    # Cancelled while this delta was arriving; drop it
                    break

                self._parts.append(delta)
                yield StreamChunk(ChunkType.DELTA, index, delta=delta)
                index += 1

            log.info(
                "relay.cancelled",
                conversation_id=self._conversation_id,
                delivered_chunks=index,
            )
        finally:
            cancel_wait.cancel()
            if pending is not None:
                if not pending.done():
                    pending.cancel()
                await asyncio.gather(pending, return_exceptions=True)
            await self._close_upstream(upstream)

    async def _close_upstream(self, upstream: AsyncIterator[str]) -> None:
        aclose = getattr(upstream, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except Exception as exc:
            log.debug("relay.upstream_close_failed", error=str(exc))


def sse_response(
    generator: AsyncGenerator[str, None],
    **kwargs: Any,
) -> StreamingResponse:
    """
    Create FastAPI StreamingResponse for SSE.

    Args:
        generator: Async generator yielding SSE strings
        **kwargs: Additional StreamingResponse arguments

    Returns:
        FastAPI StreamingResponse configured for SSE
    """
    return StreamingResponse(
        generator,
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
        **kwargs,
    )
