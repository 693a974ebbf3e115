"""
Infrastructure components for the chat runtime.

This package contains:
- The cancellable streaming relay between the LLM gateway and a caller
- SSE formatting for real-time turn output
"""

from __future__ import annotations

from chatspace.infra.streaming import (
    ChunkType,
    EventType,
    StreamChunk,
    StreamEvent,
    StreamRelay,
    sse_response,
)

__all__ = [
    "ChunkType",
    "EventType",
    "StreamChunk",
    "StreamEvent",
    "StreamRelay",
    "sse_response",
]
