"""Plugin lifecycle events.

The manager publishes three notifications:

    PluginLoaded    -> plugin reached ``active`` (or ``disabled`` at load)
    PluginUnloaded  -> plugin was disposed and removed from the registry
    PluginError     -> a plugin faulted in some phase (init, interception,
                       tool, ui, dispose)

Events are observer notifications only; nothing in the request/response
path depends on them. Publishing never blocks the emitting operation:
plain callables run inline and their failures are logged, coroutine
functions are scheduled as tasks and never awaited by the publisher.

Usage:
    bus = EventBus()
    unsubscribe = bus.subscribe(lambda event: print(event))
    bus.publish(PluginLoaded(plugin_id="code-copy", version="1.0.0"))
    unsubscribe()
"""

from __future__ import annotations

import asyncio
import inspect
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Union

import structlog

log = structlog.get_logger(__name__)


class PluginPhase(StrEnum):
    """Where a plugin fault happened."""

    INITIALIZE = "initialize"
    BEFORE_SEND = "before_send"
    AFTER_RECEIVE = "after_receive"
    TOOL = "tool"
    UI = "ui"
    DISPOSE = "dispose"


@dataclass(frozen=True)
class PluginLoaded:
    plugin_id: str
    version: str = ""
    enabled: bool = True
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True)
class PluginUnloaded:
    plugin_id: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True)
class PluginError:
    """A fault raised inside a plugin, isolated by the manager."""

    plugin_id: str
    phase: PluginPhase
    error: BaseException
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def message(self) -> str:
        return str(self.error) or type(self.error).__name__


PluginEvent = Union[PluginLoaded, PluginUnloaded, PluginError]
EventHandler = Callable[[PluginEvent], Union[None, Awaitable[None]]]


class EventBus:
    """Subscriber list for plugin lifecycle events."""

    def __init__(self) -> None:
        self._handlers: tuple[EventHandler, ...] = ()
        self._lock = threading.Lock()
        # Strong references so scheduled handler tasks are not collected mid-flight
        self._tasks: set[asyncio.Task[None]] = set()

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """Add *handler*; returns a callable that removes it again."""
        with self._lock:
            self._handlers = (*self._handlers, handler)

        def unsubscribe() -> None:
            with self._lock:
                self._handlers = tuple(h for h in self._handlers if h is not handler)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)

    def publish(self, event: PluginEvent) -> None:
        """Deliver *event* to every subscriber without blocking the caller."""
        for handler in self._handlers:
            try:
                result = handler(event)
            except Exception:
                log.exception(
                    "events.handler_failed",
                    event_type=type(event).__name__,
                    plugin_id=event.plugin_id,
                )
                continue
            if inspect.isawaitable(result):
                self._schedule_awaitable(result, event)

    async def drain(self) -> None:
        """Wait for scheduled async handlers. Mainly useful in tests and at shutdown."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _schedule_awaitable(self, awaitable: Awaitable[None], event: PluginEvent) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log.warning(
                "events.no_running_loop",
                event_type=type(event).__name__,
                plugin_id=event.plugin_id,
            )
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return

        task = loop.create_task(self._run(awaitable, event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    @staticmethod
    async def _run(awaitable: Awaitable[None], event: PluginEvent) -> None:
        try:
            await awaitable
        except Exception:
            log.exception(
                "events.handler_failed",
                event_type=type(event).__name__,
                plugin_id=event.plugin_id,
            )
