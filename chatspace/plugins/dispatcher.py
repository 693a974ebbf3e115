"""Tool dispatcher - routes tool invocations to the plugin that owns them.

Dispatch never raises for routing or validation problems; every outcome is
a ``ToolResult``:

    plugin missing / disabled / not a tool provider -> plugin_not_found
    tool name not declared by that plugin            -> tool_not_found
    parameters fail schema validation                -> validation_error
    tool raised                                      -> execution_error
    tool exceeded the time limit                     -> timeout

Task cancellation propagates.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import Any

import structlog

from chatspace.plugins.events import PluginPhase
from chatspace.plugins.exceptions import ToolValidationError
from chatspace.plugins.registry import RegistrySnapshot
from chatspace.plugins.tool_plugin import ToolContext, ToolErrorCode, ToolProvider, ToolResult

log = structlog.get_logger(__name__)


class ToolDispatcher:
    """Validates and executes tool calls against a registry snapshot."""

    def __init__(
        self,
        *,
        timeout_seconds: float | None = None,
        on_fault: Callable[[str, PluginPhase, BaseException], None] | None = None,
        on_success: Callable[[str], None] | None = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self._on_fault = on_fault
        self._on_success = on_success

    async def dispatch(
        self,
        snapshot: RegistrySnapshot,
        plugin_id: str,
        tool_name: str,
        params: dict[str, Any] | None = None,
        context: ToolContext | None = None,
    ) -> ToolResult:
        """Execute *tool_name* on *plugin_id* and normalize the outcome."""
        context = context or ToolContext()
        entry = snapshot.get(plugin_id)

        if entry is None or not entry.available or not isinstance(entry.plugin, ToolProvider):
            log.warning("dispatcher.plugin_not_found", plugin_id=plugin_id, tool=tool_name)
            return ToolResult.fail(
                f"Plugin '{plugin_id}' not found",
                ToolErrorCode.PLUGIN_NOT_FOUND,
            )

        definition = entry.get_tool(tool_name)
        if definition is None:
            log.warning("dispatcher.tool_not_found", plugin_id=plugin_id, tool=tool_name)
            return ToolResult.fail(
                f"Tool '{tool_name}' not found in plugin '{plugin_id}'",
                ToolErrorCode.TOOL_NOT_FOUND,
            )

        try:
            clean = definition.validate_params(params or {})
        except ToolValidationError as exc:
            log.info(
                "dispatcher.validation_failed",
                plugin_id=plugin_id,
                tool=tool_name,
                errors=exc.errors,
            )
            return ToolResult.fail(
                str(exc),
                ToolErrorCode.VALIDATION_ERROR,
                metadata={"errors": exc.errors},
            )

        plugin = entry.plugin
        start = time.monotonic()
        deadline = asyncio.timeout(self.timeout_seconds)
        try:
            async with deadline:
                result = await plugin.execute_tool(tool_name, clean, context)
        except Exception as exc:
            self._fault(plugin_id, tool_name, exc)
            # A TimeoutError raised by the tool itself is an ordinary failure
            if isinstance(exc, TimeoutError) and deadline.expired():
                return ToolResult.fail(
                    f"Tool '{tool_name}' timed out after {self.timeout_seconds}s",
                    ToolErrorCode.TIMEOUT,
                )
            return ToolResult.fail(str(exc) or type(exc).__name__, ToolErrorCode.EXECUTION_ERROR)

        if not isinstance(result, ToolResult):
            exc = TypeError(f"Tool returned {type(result).__name__}, expected ToolResult")
            self._fault(plugin_id, tool_name, exc)
            return ToolResult.fail(str(exc), ToolErrorCode.EXECUTION_ERROR)

        if result.success and self._on_success is not None:
            self._on_success(plugin_id)
        if not result.success and result.error_code is None:
            result.error_code = ToolErrorCode.EXECUTION_ERROR

        log.info(
            "dispatcher.tool_executed",
            plugin_id=plugin_id,
            tool=tool_name,
            success=result.success,
            duration_ms=int((time.monotonic() - start) * 1000),
            trace_id=str(context.trace_id),
        )
        return result

    def _fault(self, plugin_id: str, tool_name: str, exc: BaseException) -> None:
        log.warning(
            "dispatcher.tool_failed",
            plugin_id=plugin_id,
            tool=tool_name,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        if self._on_fault is not None:
            self._on_fault(plugin_id, PluginPhase.TOOL, exc)
