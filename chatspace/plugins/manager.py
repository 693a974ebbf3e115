"""Plugin manager - lifecycle owner and façade of the plugin runtime.

The manager is the only component that creates or removes registry entries,
calls plugin lifecycle hooks, and publishes lifecycle events. Everything
else (API routes, the turn runtime) goes through it.

Lifecycle per plugin::

    unregistered -> initializing -> active <-> disabled -> unloading -> unregistered
                         |             |
                         +--> error <--+

Fault policy: anything raised *inside* a plugin is isolated, logged, and
reported as a ``PluginError`` event. Mistakes by the caller (duplicate id,
unknown id) are raised as typed exceptions.

Usage:
    manager = PluginManager(settings)
    report = await manager.load_plugins()
    result = await manager.on_before_send(message, context)
    if result.proceed:
        ...
    await manager.shutdown()
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

import structlog

from chatspace.config import Settings, get_settings
from chatspace.plugins.base import BasePlugin, PluginContext, PluginState
from chatspace.plugins.chain import Direction, InterceptionChain
from chatspace.plugins.context import ConversationContext, InterceptResult, Message
from chatspace.plugins.dispatcher import ToolDispatcher
from chatspace.plugins.events import (
    EventBus,
    PluginError,
    PluginLoaded,
    PluginPhase,
    PluginUnloaded,
)
from chatspace.plugins.exceptions import (
    DuplicateIdentifierError,
    InvalidStateTransition,
    PluginInitializationError,
    PluginNotFoundError,
)
from chatspace.plugins.loader import PluginFactory, discover
from chatspace.plugins.registry import PluginInfo, PluginRegistry
from chatspace.plugins.tool_plugin import ToolContext, ToolDefinition, ToolProvider, ToolResult
from chatspace.plugins.ui import ChatInputExtension, MessageActionButton, PluginSettingsSchema

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class LoadReport:
    """Outcome of ``PluginManager.load_plugins``.

    ``failed`` holds plugin ids, or the source name when the plugin could not
    even be instantiated. ``errors`` maps those keys to a short message.
    """

    loaded: tuple[str, ...] = ()
    failed: tuple[str, ...] = ()
    errors: Mapping[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


class PluginManager:
    """Owns the plugin registry and drives every plugin lifecycle transition."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        factories: Iterable[PluginFactory] = (),
        registry: PluginRegistry | None = None,
        events: EventBus | None = None,
    ) -> None:
        """
        Args:
            settings: Runtime settings (defaults to ``get_settings()``).
            factories: Zero-argument plugin factories loaded before configured modules.
            registry: Registry to manage (a fresh one by default).
            events: Event bus for lifecycle notifications (a fresh one by default).
        """
        self._settings = settings or get_settings()
        self._factories = list(factories)
        self._registry = registry or PluginRegistry()
        self.events = events or EventBus()

        # Plugins that failed to initialize never enter the registry
        self._failures: dict[str, BaseException] = {}
        self._fault_counts: dict[str, int] = {}

        self._chain = InterceptionChain(
            timeout_seconds=self._settings.interceptor_timeout_seconds,
            on_fault=self._report_fault,
            on_success=self._reset_faults,
        )
        self._dispatcher = ToolDispatcher(
            timeout_seconds=self._settings.tool_timeout_seconds,
            on_fault=self._report_fault,
            on_success=self._reset_faults,
        )

    @property
    def registry(self) -> PluginRegistry:
        return self._registry

    @property
    def failed_plugins(self) -> Mapping[str, str]:
        """Plugin id -> error message for plugins that failed to initialize."""
        return MappingProxyType({k: str(v) or type(v).__name__ for k, v in self._failures.items()})

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def load_plugins(self, factories: Iterable[PluginFactory] | None = None) -> LoadReport:
        """Discover, instantiate and register every configured plugin.

        Sources are processed sequentially so registry order is stable
        across restarts. One failing plugin never stops the others.
        """
        sources = discover(
            factories=[*self._factories, *(factories or ())],
            module_paths=self._settings.plugin_modules,
            use_entry_points=self._settings.plugin_entry_points,
        )
        disabled = set(self._settings.disabled_plugins)

        loaded: list[str] = []
        failed: list[str] = []
        errors: dict[str, str] = {}

        for source in sources:
            try:
                plugin = source.create()
                plugin_id = plugin.plugin_id
            except Exception as exc:
                log.error(
                    "manager.plugin_create_failed",
                    source=source.name,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                failed.append(source.name)
                errors[source.name] = str(exc)
                continue

            try:
                await self.register_plugin(plugin, enabled=plugin_id not in disabled)
            except (PluginInitializationError, DuplicateIdentifierError) as exc:
                failed.append(plugin_id)
                errors[plugin_id] = str(exc)
                continue
            loaded.append(plugin_id)

        log.info(
            "manager.plugins_loaded",
            loaded=loaded,
            failed=failed,
            total=len(sources),
        )
        return LoadReport(
            loaded=tuple(loaded), failed=tuple(failed), errors=MappingProxyType(errors)
        )

    async def register_plugin(self, plugin: BasePlugin, *, enabled: bool = True) -> PluginInfo:
        """Register and initialize *plugin*.

        Raises:
            DuplicateIdentifierError: If the id is registered or mid-initialization
            ToolConflictError: If one of its tools is already provided
            PluginInitializationError: If the initializer raised or timed out
        """
        plugin_id = plugin.plugin_id
        tools = self._collect_tools(plugin)

        self._registry.reserve(plugin, tools)
        self._failures.pop(plugin_id, None)

        context = PluginContext(
            plugin_id=plugin_id,
            settings=self._settings.plugin_config.get(plugin_id, {}),
        )
        timeout = self._settings.plugin_init_timeout_seconds
        try:
            await asyncio.wait_for(plugin.initialize(context), timeout=timeout)
        except asyncio.CancelledError:
            self._registry.remove(plugin_id)
            raise
        except Exception as exc:
            reason = f"timed out after {timeout}s" if isinstance(exc, TimeoutError) else str(exc)
            self._registry.transition(plugin_id, PluginState.ERROR)
            self._registry.remove(plugin_id)
            self._failures[plugin_id] = exc
            log.error(
                "manager.plugin_init_failed",
                plugin_id=plugin_id,
                reason=reason,
                error_type=type(exc).__name__,
            )
            self.events.publish(PluginError(plugin_id, PluginPhase.INITIALIZE, exc))
            raise PluginInitializationError(plugin_id, reason) from exc

        if enabled:
            entry = self._registry.transition(plugin_id, PluginState.ACTIVE)
        else:
            self._registry.transition(plugin_id, PluginState.DISABLED)
            entry = self._registry.set_enabled(plugin_id, False)

        log.info(
            "manager.plugin_registered",
            plugin_id=plugin_id,
            version=plugin.metadata.version,
            state=str(entry.state),
            tools=list(entry.tool_names),
        )
        self.events.publish(
            PluginLoaded(plugin_id=plugin_id, version=plugin.metadata.version, enabled=enabled)
        )
        return entry.info()

    async def unload_plugin(self, plugin_id: str) -> None:
        """Dispose *plugin_id* and remove it from the registry.

        The entry leaves every new snapshot as soon as it enters
        ``unloading``; passes that captured an older snapshot finish with it.
        A disposer failure is reported but the unload still completes.

        Raises:
            PluginNotFoundError: If no such plugin is registered
        """
        entry = self._registry.get(plugin_id)
        if entry is None or not entry.listed:
            raise PluginNotFoundError(plugin_id)

        self._registry.transition(plugin_id, PluginState.UNLOADING)
        try:
            await asyncio.wait_for(
                entry.plugin.dispose(),
                timeout=self._settings.plugin_dispose_timeout_seconds,
            )
        except Exception as exc:
            log.warning(
                "manager.plugin_dispose_failed",
                plugin_id=plugin_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            self.events.publish(PluginError(plugin_id, PluginPhase.DISPOSE, exc))
        finally:
            self._registry.transition(plugin_id, PluginState.UNREGISTERED)
            self._registry.remove(plugin_id)
            self._fault_counts.pop(plugin_id, None)

        log.info("manager.plugin_unloaded", plugin_id=plugin_id)
        self.events.publish(PluginUnloaded(plugin_id=plugin_id))

    def set_plugin_enabled(self, plugin_id: str, enabled: bool) -> PluginInfo:
        """Enable or disable without unloading. The registry position is kept.

        Raises:
            PluginNotFoundError: If no such plugin is registered or it is still
                initializing
        """
        entry = self._registry.get(plugin_id)
        if entry is None or not entry.listed:
            raise PluginNotFoundError(plugin_id)

        entry = self._registry.set_enabled(plugin_id, enabled)
        if enabled:
            self._fault_counts.pop(plugin_id, None)
        log.info("manager.plugin_toggled", plugin_id=plugin_id, enabled=enabled)
        return entry.info()

    async def shutdown(self) -> None:
        """Unload every plugin, most recently registered first."""
        for entry in reversed(self._registry.snapshot().entries):
            try:
                await self.unload_plugin(entry.plugin_id)
            except (PluginNotFoundError, InvalidStateTransition) as exc:
                log.debug("manager.shutdown_skip", plugin_id=entry.plugin_id, reason=str(exc))
        await self.events.drain()
        log.info("manager.shutdown_complete")

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #

    def get_loaded_plugins(self) -> list[PluginInfo]:
        return [entry.info() for entry in self._registry.snapshot().listed()]

    def get_plugin(self, plugin_id: str) -> PluginInfo | None:
        entry = self._registry.get(plugin_id)
        if entry is None or not entry.listed:
            return None
        return entry.info()

    def get_plugin_state(self, plugin_id: str) -> PluginState:
        entry = self._registry.get(plugin_id)
        if entry is not None:
            return entry.state
        if plugin_id in self._failures:
            return PluginState.ERROR
        return PluginState.UNREGISTERED

    # ------------------------------------------------------------------ #
    # Interception
    # ------------------------------------------------------------------ #

    async def on_before_send(
        self, message: Message, context: ConversationContext
    ) -> InterceptResult:
        """Run the before-send chain over a snapshot captured now."""
        interceptors = self._registry.snapshot().interceptors()
        return await self._chain.run(interceptors, Direction.BEFORE, message, context)

    async def on_after_receive(
        self, message: Message, context: ConversationContext
    ) -> InterceptResult:
        """Run the after-receive chain over a snapshot captured now."""
        interceptors = self._registry.snapshot().interceptors()
        return await self._chain.run(interceptors, Direction.AFTER, message, context)

    # ------------------------------------------------------------------ #
    # Tools
    # ------------------------------------------------------------------ #

    def get_all_tools(self) -> list[ToolDefinition]:
        tools: list[ToolDefinition] = []
        for entry in self._registry.snapshot().available():
            tools.extend(entry.tools)
        return tools

    async def execute_tool(
        self,
        plugin_id: str,
        tool_name: str,
        parameters: dict[str, Any] | None = None,
        context: ToolContext | None = None,
    ) -> ToolResult:
        """Execute a tool. Never raises for routing or validation problems."""
        return await self._dispatcher.dispatch(
            self._registry.snapshot(), plugin_id, tool_name, parameters, context
        )

    # ------------------------------------------------------------------ #
    # UI aggregation
    # ------------------------------------------------------------------ #

    def get_message_actions(self, message: Message) -> list[MessageActionButton]:
        actions: list[MessageActionButton] = []
        for plugin in self._registry.snapshot().ui_extensions():
            try:
                actions.extend(plugin.get_message_actions(message))
            except Exception as exc:
                self._ui_fault(plugin.plugin_id, "get_message_actions", exc)
                continue
            self._reset_faults(plugin.plugin_id)
        return actions

    def get_input_extensions(self) -> list[ChatInputExtension]:
        extensions: list[ChatInputExtension] = []
        for plugin in self._registry.snapshot().ui_extensions():
            try:
                extensions.extend(plugin.get_input_extensions())
            except Exception as exc:
                self._ui_fault(plugin.plugin_id, "get_input_extensions", exc)
                continue
            self._reset_faults(plugin.plugin_id)
        return extensions

    def get_all_plugin_settings(self) -> dict[str, PluginSettingsSchema]:
        """Settings schema per plugin id, for plugins that expose one."""
        schemas: dict[str, PluginSettingsSchema] = {}
        for plugin in self._registry.snapshot().ui_extensions():
            try:
                schema = plugin.get_settings_schema()
            except Exception as exc:
                self._ui_fault(plugin.plugin_id, "get_settings_schema", exc)
                continue
            self._reset_faults(plugin.plugin_id)
            if schema is not None:
                schemas[plugin.plugin_id] = schema
        return schemas

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _collect_tools(self, plugin: BasePlugin) -> tuple[ToolDefinition, ...]:
        if not isinstance(plugin, ToolProvider):
            return ()
        try:
            tools = tuple(plugin.list_tools())
        except Exception as exc:
            self._failures[plugin.plugin_id] = exc
            self.events.publish(PluginError(plugin.plugin_id, PluginPhase.INITIALIZE, exc))
            raise PluginInitializationError(plugin.plugin_id, f"list_tools failed: {exc}") from exc

        for tool in tools:
            if not isinstance(tool, ToolDefinition):
                exc = TypeError(f"list_tools returned {type(tool).__name__}, expected ToolDefinition")
                self._failures[plugin.plugin_id] = exc
                self.events.publish(PluginError(plugin.plugin_id, PluginPhase.INITIALIZE, exc))
                raise PluginInitializationError(plugin.plugin_id, str(exc))
        return tools

    def _ui_fault(self, plugin_id: str, method: str, exc: Exception) -> None:
        log.warning(
            "manager.ui_contribution_failed",
            plugin_id=plugin_id,
            method=method,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        self._report_fault(plugin_id, PluginPhase.UI, exc)

    def _report_fault(self, plugin_id: str, phase: PluginPhase, exc: BaseException) -> None:
        self.events.publish(PluginError(plugin_id, phase, exc))

        threshold = self._settings.plugin_fault_threshold
        if threshold is None:
            return
        count = self._fault_counts.get(plugin_id, 0) + 1
        self._fault_counts[plugin_id] = count
        if count < threshold:
            return

        entry = self._registry.get(plugin_id)
        if entry is not None and entry.state == PluginState.ACTIVE:
            self._registry.transition(plugin_id, PluginState.ERROR)
            log.error(
                "manager.plugin_faulted",
                plugin_id=plugin_id,
                consecutive_faults=count,
                phase=str(phase),
            )

    def _reset_faults(self, plugin_id: str) -> None:
        if self._fault_counts:
            self._fault_counts.pop(plugin_id, None)
