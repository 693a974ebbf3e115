"""Tests for the streaming relay and SSE helpers.

Tests cover:
- In-order delivery and END
- Upstream failure and idle timeout as ERROR
- Cancellation within one chunk, via cancel(), aclose() and task cancel
- The upstream observes cancellation (its iterator is closed)
- SSE formatting
"""

from __future__ import annotations

import asyncio
import contextlib
import json

import pytest

from chatspace.infra.streaming import (
    ChunkType,
    EventType,
    StreamChunk,
    StreamEvent,
    StreamRelay,
    sse_response,
)


class Upstream:
    """Async generator wrapper that records how far it got and whether it closed."""

    def __init__(self, deltas, *, delay: float = 0.0, error: Exception | None = None, hang: bool = False):
        self.deltas = deltas
        self.delay = delay
        self.error = error
        self.hang = hang
        self.produced = 0
        self.closed = False

    async def __call__(self):
        try:
            for delta in self.deltas:
                if self.delay:
                    await asyncio.sleep(self.delay)
                self.produced += 1
                yield delta
            if self.error is not None:
                raise self.error
            if self.hang:
                await asyncio.Event().wait()
        finally:
            self.closed = True


async def _collect(relay: StreamRelay) -> list[StreamChunk]:
    return [chunk async for chunk in relay]


@pytest.mark.asyncio
async def test_delivers_in_order_then_end():
    upstream = Upstream(["a", "b", "c"])
    relay = StreamRelay(upstream())

    chunks = await _collect(relay)

    assert [(c.type, c.index, c.delta) for c in chunks] == [
        (ChunkType.DELTA, 0, "a"),
        (ChunkType.DELTA, 1, "b"),
        (ChunkType.DELTA, 2, "c"),
        (ChunkType.END, 3, ""),
    ]
    assert relay.full_text == "abc"
    assert relay.outcome is ChunkType.END
    assert upstream.closed


@pytest.mark.asyncio
async def test_upstream_failure_is_terminal_error():
    upstream = Upstream(["a"], error=ConnectionError("gateway reset"))
    relay = StreamRelay(upstream())

    chunks = await _collect(relay)

    assert [c.type for c in chunks] == [ChunkType.DELTA, ChunkType.ERROR]
    assert chunks[-1].error == "gateway reset"
    assert chunks[-1].is_terminal
    assert relay.full_text == "a"
    assert relay.outcome is ChunkType.ERROR


@pytest.mark.asyncio
async def test_idle_timeout_is_error():
    upstream = Upstream(["a"], hang=True)
    relay = StreamRelay(upstream(), idle_timeout=0.05)

    chunks = await _collect(relay)

    assert chunks[-1].type is ChunkType.ERROR
    assert "No data" in chunks[-1].error
    assert upstream.closed


@pytest.mark.asyncio
async def test_cancel_stops_within_one_chunk():
    upstream = Upstream(["x"] * 100, delay=0.01)
    relay = StreamRelay(upstream())
    received: list[StreamChunk] = []

    async for chunk in relay:
        received.append(chunk)
        if len(received) == 3:
            relay.cancel()

    assert len(received) == 3
    assert relay.cancelled
    assert upstream.closed
    # At most one read beyond the last delivered chunk was started
    assert upstream.produced <= 4


@pytest.mark.asyncio
async def test_cancel_during_pending_read():
    upstream = Upstream(["a", "b"], delay=10.0)
    relay = StreamRelay(upstream())

    async def consume():
        return await _collect(relay)

    task = asyncio.create_task(consume())
    await asyncio.sleep(0.01)
    relay.cancel()
    chunks = await asyncio.wait_for(task, timeout=1.0)

    assert chunks == []
    assert upstream.closed
    assert upstream.produced == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("fails", [True, False], ids=["failing-read", "ending-read"])
async def test_cancel_racing_final_read_emits_nothing(fails):
    gate = asyncio.Event()
    first = asyncio.Event()

    async def upstream():
        yield "a"
        await gate.wait()
        if fails:
            raise RuntimeError("upstream boom")

    relay = StreamRelay(upstream())
    received: list[StreamChunk] = []

    async def consume():
        async for chunk in relay:
            received.append(chunk)
            first.set()

    task = asyncio.create_task(consume())
    await asyncio.wait_for(first.wait(), timeout=1.0)
    await asyncio.sleep(0.01)

    relay.cancel()
    gate.set()
    await asyncio.wait_for(task, timeout=1.0)

    assert [(c.type, c.delta) for c in received] == [(ChunkType.DELTA, "a")]
    assert relay.outcome is None
    assert relay.cancelled


@pytest.mark.asyncio
async def test_closing_consumer_closes_upstream():
    upstream = Upstream(["a", "b", "c"])
    relay = StreamRelay(upstream())

    async with contextlib.aclosing(relay.stream()) as chunks:
        async for chunk in chunks:
            break

    assert chunk.delta == "a"
    assert upstream.closed


@pytest.mark.asyncio
async def test_task_cancellation_closes_upstream():
    upstream = Upstream(["a"], hang=True)
    relay = StreamRelay(upstream())
    started = asyncio.Event()

    async def consume():
        async with contextlib.aclosing(relay.stream()) as chunks:
            async for _ in chunks:
                started.set()

    task = asyncio.create_task(consume())
    await asyncio.wait_for(started.wait(), timeout=1.0)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert upstream.closed


@pytest.mark.asyncio
async def test_relay_consumed_once():
    relay = StreamRelay(Upstream(["a"])())
    await _collect(relay)

    with pytest.raises(RuntimeError):
        await _collect(relay)


@pytest.mark.asyncio
async def test_empty_upstream_ends_immediately():
    chunks = await _collect(StreamRelay(Upstream([])()))
    assert [(c.type, c.index) for c in chunks] == [(ChunkType.END, 0)]


# ------------------------------------------------------------------ #
# SSE formatting
# ------------------------------------------------------------------ #


def test_stream_event_to_sse():
    event = StreamEvent(EventType.TOKEN, "Hel", metadata={"conversation_id": "c1"})

    frame = event.to_sse()

    assert frame.startswith("event: token\ndata: ")
    assert frame.endswith("\n\n")
    payload = json.loads(frame.split("data: ", 1)[1])
    assert payload["data"] == "Hel"
    assert payload["metadata"] == {"conversation_id": "c1"}


def test_chunk_to_event():
    assert StreamChunk(ChunkType.DELTA, 0, delta="x").to_event().type is EventType.TOKEN
    assert StreamChunk(ChunkType.END, 2).to_event().data == {"chunks": 2}
    error = StreamChunk(ChunkType.ERROR, 1, error="boom").to_event()
    assert error.type is EventType.ERROR
    assert error.data == {"error": "boom"}


def test_sse_response_headers():
    async def gen():
        yield "event: done\ndata: {}\n\n"

    response = sse_response(gen())

    assert response.media_type == "text/event-stream"
    assert response.headers["cache-control"] == "no-cache"
    assert response.headers["x-accel-buffering"] == "no"
