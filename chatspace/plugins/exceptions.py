"""Exception hierarchy for the plugin runtime.

Faults in the manager's own logic (duplicate registration, unknown plugin)
are raised to the caller as these types. Faults raised *inside* a plugin are
isolated by the manager and reported through the ``PluginError`` event; they
only surface as exceptions where the caller explicitly asks for it (e.g.
``ToolResult.raise_for_error()``).

Hierarchy::

    PluginRuntimeError
    +-- DuplicateIdentifierError
    |   +-- ToolConflictError
    +-- PluginNotFoundError
    +-- ToolNotFoundError
    +-- ToolValidationError
    +-- PluginInitializationError
    +-- InterceptionCancelled
    +-- UpstreamStreamFailure
    +-- InvalidStateTransition
"""

from __future__ import annotations


class PluginRuntimeError(Exception):
    """Base exception for all plugin runtime failures."""


class DuplicateIdentifierError(PluginRuntimeError):
    """A plugin with this identifier is already registered (or initializing)."""

    def __init__(self, plugin_id: str, message: str | None = None) -> None:
        super().__init__(
            message
            or f"Plugin '{plugin_id}' is already registered. Unload it first or use a different id."
        )
        self.plugin_id = plugin_id


class ToolConflictError(DuplicateIdentifierError):
    """A tool name is already provided by another registered plugin."""

    def __init__(self, plugin_id: str, tool_name: str, owner_id: str) -> None:
        super().__init__(
            plugin_id,
            f"Tool '{tool_name}' of plugin '{plugin_id}' is already provided by '{owner_id}'",
        )
        self.tool_name = tool_name
        self.owner_id = owner_id


class PluginNotFoundError(PluginRuntimeError):
    """No plugin with this identifier is registered."""

    def __init__(self, plugin_id: str) -> None:
        super().__init__(f"Plugin '{plugin_id}' not found")
        self.plugin_id = plugin_id


class ToolNotFoundError(PluginRuntimeError):
    """The plugin does not provide a tool with this name."""

    def __init__(self, plugin_id: str, tool_name: str) -> None:
        super().__init__(f"Tool '{tool_name}' not found in plugin '{plugin_id}'")
        self.plugin_id = plugin_id
        self.tool_name = tool_name


class ToolValidationError(PluginRuntimeError):
    """Tool parameters failed schema validation."""

    def __init__(self, tool_name: str, errors: list[str]) -> None:
        super().__init__(f"Invalid parameters for tool '{tool_name}': {'; '.join(errors)}")
        self.tool_name = tool_name
        self.errors = errors


class PluginInitializationError(PluginRuntimeError):
    """Plugin initializer raised or exceeded its time limit."""

    def __init__(self, plugin_id: str, reason: str) -> None:
        super().__init__(f"Plugin '{plugin_id}' failed to initialize: {reason}")
        self.plugin_id = plugin_id
        self.reason = reason


class InterceptionCancelled(PluginRuntimeError):
    """An interceptor deliberately stopped the message (``proceed=False``)."""

    def __init__(self, reason: str | None, plugin_id: str | None = None) -> None:
        super().__init__(reason or "Message cancelled by interceptor")
        self.reason = reason
        self.plugin_id = plugin_id


class UpstreamStreamFailure(PluginRuntimeError):
    """The LLM gateway failed while streaming a response."""


class InvalidStateTransition(PluginRuntimeError):
    """A lifecycle transition not allowed by the plugin state machine."""
