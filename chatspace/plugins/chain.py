"""Interception chain - runs message interceptors in registry order.

One pass covers exactly one direction. For each interceptor, in order:

1. The handler receives the *current* message (the original, or the last
   replacement) and the shared ``ConversationContext``.
2. ``proceed=False`` stops the pass; no later interceptor runs and the
   result is returned as the chain's final result.
3. A replacement message becomes the input of the next interceptor.
4. A handler that raises, times out, or returns something other than an
   ``InterceptResult`` counts as ``proceed=False`` with a synthesized reason.
   The fault is reported through ``on_fault`` and never propagates.

Task cancellation is not a plugin fault: ``asyncio.CancelledError`` passes
straight through.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from enum import StrEnum
from typing import Any

import structlog

from chatspace.plugins.base import MessageInterceptor
from chatspace.plugins.context import ConversationContext, InterceptResult, Message
from chatspace.plugins.events import PluginPhase
from chatspace.telemetry import bind_plugin_context, unbind_plugin_context

log = structlog.get_logger(__name__)

FaultCallback = Callable[[str, PluginPhase, BaseException], None]
SuccessCallback = Callable[[str], None]


class Direction(StrEnum):
    BEFORE = "before"
    AFTER = "after"

    @property
    def phase(self) -> PluginPhase:
        return PluginPhase.BEFORE_SEND if self is Direction.BEFORE else PluginPhase.AFTER_RECEIVE


class _InterceptorTimeout(TimeoutError):
    """The chain's per-interceptor deadline expired."""


class InterceptionChain:
    """Sequential, short-circuiting interceptor executor.

    The chain holds no plugin list of its own; the caller passes the
    interceptors of a registry snapshot captured at the start of the pass.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float | None = None,
        on_fault: FaultCallback | None = None,
        on_success: SuccessCallback | None = None,
    ) -> None:
        """
        Args:
            timeout_seconds: Per-interceptor time limit (None = unbounded).
            on_fault: Called with (plugin_id, phase, exception) on a plugin fault.
            on_success: Called with the plugin id after a clean invocation.
        """
        self.timeout_seconds = timeout_seconds
        self._on_fault = on_fault
        self._on_success = on_success

    async def run(
        self,
        interceptors: Sequence[MessageInterceptor],
        direction: Direction,
        message: Message,
        context: ConversationContext,
    ) -> InterceptResult:
        """Run one pass and return the chain's final result.

        The final result always carries the message as it stood when the
        pass ended (``message``), the merged metadata of every interceptor
        that ran, and, on cancellation, the reason and ``cancelled_by``.
        """
        context.begin_pass()
        current = message
        metadata: dict[str, Any] = {}

        for plugin in interceptors:
            plugin_id = plugin.plugin_id
            try:
                result = await self._invoke(plugin, direction, current, context)
            except Exception as exc:
                if isinstance(exc, _InterceptorTimeout):
                    reason = f"Plugin '{plugin_id}' timed out after {self.timeout_seconds}s"
                else:
                    reason = f"Plugin '{plugin_id}' failed: {exc}"
                self._fault(plugin_id, direction, exc, reason)
                return InterceptResult(
                    proceed=False,
                    message=current,
                    cancel_reason=reason,
                    metadata=metadata,
                    cancelled_by=plugin_id,
                )

            if self._on_success is not None:
                self._on_success(plugin_id)

            if result.metadata:
                metadata.update(result.metadata)
            if result.message is not None:
                current = result.message

            if result.cancelled:
                log.info(
                    "chain.cancelled",
                    plugin_id=plugin_id,
                    direction=str(direction),
                    reason=result.cancel_reason,
                )
                return InterceptResult(
                    proceed=False,
                    message=current,
                    cancel_reason=result.cancel_reason,
                    metadata=metadata,
                    cancelled_by=plugin_id,
                )

        return InterceptResult(message=current, metadata=metadata)

    async def _invoke(
        self,
        plugin: MessageInterceptor,
        direction: Direction,
        message: Message,
        context: ConversationContext,
    ) -> InterceptResult:
        if direction is Direction.BEFORE:
            coro = plugin.on_before_send(message, context)
        else:
            coro = plugin.on_after_receive(message, context)

        bind_plugin_context(plugin.plugin_id)
        deadline = asyncio.timeout(self.timeout_seconds)
        try:
            async with deadline:
                result = await coro
        except TimeoutError as exc:
            # Only the chain's own deadline counts as a timeout
            if deadline.expired():
                raise _InterceptorTimeout(plugin.plugin_id) from exc
            raise
        finally:
            unbind_plugin_context()

        if not isinstance(result, InterceptResult):
            raise TypeError(
                f"Interceptor returned {type(result).__name__}, expected InterceptResult"
            )
        return result

    def _fault(
        self,
        plugin_id: str,
        direction: Direction,
        exc: BaseException,
        reason: str,
    ) -> None:
        log.warning(
            "chain.interceptor_failed",
            plugin_id=plugin_id,
            direction=str(direction),
            reason=reason,
            error_type=type(exc).__name__,
        )
        if self._on_fault is not None:
            self._on_fault(plugin_id, direction.phase, exc)
