"""Base plugin classes and interfaces.

Defines the core plugin architecture:
- PluginCategory: Grouping shown in the plugin settings UI
- PluginState: Lifecycle state machine owned by the PluginManager
- PluginMetadata: Plugin identification
- PluginContext: Runtime context passed to ``initialize``
- BasePlugin: Abstract base class all plugins must implement
- MessageInterceptor: Capability for observing/mutating/cancelling messages

Tool and UI capabilities live in ``tool_plugin`` and ``ui``. A plugin opts
into a capability by subclassing its mix-in; one plugin may combine several::

    class SearchPlugin(MessageInterceptor, ToolProvider):
        ...
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import Any

import structlog

from chatspace.plugins.context import ConversationContext, InterceptResult, Message
from chatspace.plugins.exceptions import InvalidStateTransition

_SEMVER = re.compile(r"^\d+\.\d+\.\d+")
_PLUGIN_ID = re.compile(r"^[a-z0-9][a-z0-9._-]*$")


class PluginCategory(StrEnum):
    """Plugin categories for organization."""

    MESSAGE_ACTIONS = "message_actions"  # Buttons on messages (copy, share, etc.)
    INPUT_EXTENSIONS = "input_extensions"  # UI added to the chat input
    INTERCEPTORS = "interceptors"  # Modify messages before/after the LLM
    TOOLS = "tools"  # Callable tools
    ANALYTICS = "analytics"
    INTEGRATION = "integration"
    UI = "ui"
    SAFETY = "safety"  # Content filtering, redaction
    OTHER = "other"


class PluginState(StrEnum):
    """Lifecycle state of a plugin inside the manager.

    ``unregistered -> initializing -> active <-> disabled -> unloading -> unregistered``

    ``error`` is reachable from ``initializing`` (init failure or timeout) and
    from ``active`` (fault threshold exceeded). A plugin never leaves ``error``
    except by being unloaded.
    """

    UNREGISTERED = "unregistered"
    INITIALIZING = "initializing"
    ACTIVE = "active"
    DISABLED = "disabled"
    UNLOADING = "unloading"
    ERROR = "error"


_TRANSITIONS: dict[PluginState, frozenset[PluginState]] = {
    PluginState.UNREGISTERED: frozenset({PluginState.INITIALIZING}),
    PluginState.INITIALIZING: frozenset({PluginState.ACTIVE, PluginState.DISABLED, PluginState.ERROR}),
    PluginState.ACTIVE: frozenset({PluginState.DISABLED, PluginState.UNLOADING, PluginState.ERROR}),
    PluginState.DISABLED: frozenset({PluginState.ACTIVE, PluginState.UNLOADING}),
    PluginState.UNLOADING: frozenset({PluginState.UNREGISTERED}),
    PluginState.ERROR: frozenset({PluginState.UNLOADING}),
}


def check_transition(current: PluginState, target: PluginState) -> PluginState:
    """Return *target* if the state machine allows ``current -> target``.

    Raises:
        InvalidStateTransition: If the transition is not allowed
    """
    if target not in _TRANSITIONS[current]:
        raise InvalidStateTransition(f"Cannot move plugin from '{current}' to '{target}'")
    return target


@dataclass(frozen=True)
class PluginMetadata:
    """Metadata describing a plugin.

    ``id`` is the unique, immutable registry key (e.g. ``"message-rating"``).
    """

    id: str
    name: str
    version: str
    category: PluginCategory = PluginCategory.OTHER
    description: str = ""
    author: str = ""
    icon: str = ""

    def __post_init__(self) -> None:
        """Validate metadata after initialization."""
        if not self.id or not _PLUGIN_ID.match(self.id):
            raise ValueError(
                f"Plugin id {self.id!r} must be lowercase letters, digits, '.', '_' or '-'"
            )
        if not self.name or not self.name.strip():
            raise ValueError("Plugin name cannot be empty")
        if not self.version or not _SEMVER.match(self.version):
            raise ValueError(f"Plugin version '{self.version}' is not valid semver format (X.Y.Z)")


@dataclass
class PluginContext:
    """Runtime context passed to ``BasePlugin.initialize``.

    Provides read-only access to the plugin's settings and a logger bound to
    the plugin id.
    """

    plugin_id: str
    settings: Mapping[str, Any] = field(default_factory=dict)
    logger: structlog.stdlib.BoundLogger | None = None

    def __post_init__(self) -> None:
        self.settings = MappingProxyType(dict(self.settings))
        if self.logger is None:
            self.logger = structlog.get_logger("plugin").bind(plugin_id=self.plugin_id)


class BasePlugin(ABC):
    """Abstract base class for all plugins.

    Subclasses must implement ``metadata``. ``initialize`` and ``dispose``
    default to no-ops. Plugins are created once and live until the manager
    unloads them; the manager is the only caller of these methods and the
    only owner of the plugin's state and enabled flag.
    """

    @property
    @abstractmethod
    def metadata(self) -> PluginMetadata:
        """Return plugin metadata."""

    @property
    def plugin_id(self) -> str:
        return self.metadata.id

    async def initialize(self, context: PluginContext) -> None:
        """Called once when the plugin is registered.

        Runs under the manager's init timeout. Raising here leaves the plugin
        in the ``error`` state and keeps it out of the registry.
        """

    async def dispose(self) -> None:
        """Called once when the plugin is unloaded. Release resources here."""

    def __repr__(self) -> str:
        meta = self.metadata
        return f"<{type(self).__name__} id={meta.id!r} v{meta.version}>"


class MessageInterceptor(BasePlugin):
    """Capability: intercept messages before/after the LLM call.

    Use cases: content filtering, context injection, redaction, logging.
    Returning ``InterceptResult(proceed=False, ...)`` stops the chain; for
    the ``before`` direction the LLM is never called. Returning a result with
    ``message`` set hands that message to the next interceptor.
    """

    async def on_before_send(
        self, message: Message, context: ConversationContext
    ) -> InterceptResult:
        """Called BEFORE the message is sent to the LLM."""
        return InterceptResult()

    async def on_after_receive(
        self, message: Message, context: ConversationContext
    ) -> InterceptResult:
        """Called AFTER the full response is received from the LLM."""
        return InterceptResult()
