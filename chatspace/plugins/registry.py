"""Plugin registry - the catalog of loaded plugins.

The registry holds one entry per plugin identifier in insertion order, which
is the interception and aggregation order. It is owned by the
``PluginManager``; nothing else writes to it.

Concurrency model: the whole catalog is an immutable ``RegistrySnapshot``.
Writers build a new snapshot under a lock and swap the reference; readers
grab the current reference without locking. A reader therefore always sees
either the state before a mutation or the state after it, and an
interception pass that captured a snapshot keeps using it even if a plugin
is unloaded meanwhile.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any

import structlog

from chatspace.plugins.base import (
    BasePlugin,
    MessageInterceptor,
    PluginCategory,
    PluginState,
    check_transition,
)
from chatspace.plugins.exceptions import (
    DuplicateIdentifierError,
    PluginNotFoundError,
    ToolConflictError,
)
from chatspace.plugins.tool_plugin import ToolDefinition, ToolProvider
from chatspace.plugins.ui import UIExtension

log = structlog.get_logger(__name__)

# States that are shown by get_loaded_plugins(); initializing and unloading
# entries are in transit and invisible to readers.
_LISTED_STATES = frozenset({PluginState.ACTIVE, PluginState.DISABLED, PluginState.ERROR})


def capabilities_of(plugin: BasePlugin) -> tuple[str, ...]:
    caps: list[str] = []
    if isinstance(plugin, MessageInterceptor):
        caps.append("interceptor")
    if isinstance(plugin, ToolProvider):
        caps.append("tools")
    if isinstance(plugin, UIExtension):
        caps.append("ui")
    return tuple(caps)


@dataclass(frozen=True)
class RegistryEntry:
    """One registered plugin with its lifecycle state and enabled flag."""

    plugin: BasePlugin
    state: PluginState
    enabled: bool = True
    tools: tuple[ToolDefinition, ...] = ()

    @property
    def plugin_id(self) -> str:
        return self.plugin.plugin_id

    @property
    def tool_names(self) -> tuple[str, ...]:
        return tuple(t.name for t in self.tools)

    def get_tool(self, name: str) -> ToolDefinition | None:
        for tool in self.tools:
            if tool.name == name:
                return tool
        return None

    @property
    def available(self) -> bool:
        """True when the plugin takes part in interception, dispatch and UI."""
        return self.state == PluginState.ACTIVE and self.enabled

    @property
    def listed(self) -> bool:
        """True once initialization has settled and until unloading starts."""
        return self.state in _LISTED_STATES

    def info(self) -> PluginInfo:
        meta = self.plugin.metadata
        return PluginInfo(
            id=meta.id,
            name=meta.name,
            version=meta.version,
            category=meta.category,
            description=meta.description,
            author=meta.author,
            icon=meta.icon,
            enabled=self.enabled,
            state=self.state,
            capabilities=capabilities_of(self.plugin),
            tools=self.tool_names,
        )


@dataclass(frozen=True)
class PluginInfo:
    """Read-only view of a registered plugin returned to callers."""

    id: str
    name: str
    version: str
    category: PluginCategory
    description: str
    author: str
    icon: str
    enabled: bool
    state: PluginState
    capabilities: tuple[str, ...] = ()
    tools: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "version": self.version,
            "category": str(self.category),
            "description": self.description,
            "author": self.author,
            "icon": self.icon,
            "enabled": self.enabled,
            "state": str(self.state),
            "capabilities": list(self.capabilities),
            "tools": list(self.tools),
        }


@dataclass(frozen=True)
class RegistrySnapshot:
    """Immutable view of the registry at one point in time."""

    entries: tuple[RegistryEntry, ...] = ()
    tool_owners: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    def __iter__(self) -> Iterator[RegistryEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def get(self, plugin_id: str) -> RegistryEntry | None:
        for entry in self.entries:
            if entry.plugin_id == plugin_id:
                return entry
        return None

    def listed(self) -> list[RegistryEntry]:
        return [e for e in self.entries if e.listed]

    def available(self) -> list[RegistryEntry]:
        return [e for e in self.entries if e.available]

    def interceptors(self) -> list[MessageInterceptor]:
        return [e.plugin for e in self.available() if isinstance(e.plugin, MessageInterceptor)]

    def tool_providers(self) -> list[ToolProvider]:
        return [e.plugin for e in self.available() if isinstance(e.plugin, ToolProvider)]

    def ui_extensions(self) -> list[UIExtension]:
        return [e.plugin for e in self.available() if isinstance(e.plugin, UIExtension)]


class PluginRegistry:
    """Copy-on-write registry for plugin lookup and enumeration.

    Write operations are short and never await; the lock only guards the
    build-and-swap of the snapshot, so it is a plain ``threading.Lock``.
    """

    def __init__(self) -> None:
        """Initialize empty registry."""
        self._snapshot = RegistrySnapshot()
        self._lock = threading.Lock()

    def snapshot(self) -> RegistrySnapshot:
        """Return the current snapshot. Lock-free."""
        return self._snapshot

    def get(self, plugin_id: str) -> RegistryEntry | None:
        return self._snapshot.get(plugin_id)

    def __contains__(self, plugin_id: object) -> bool:
        return isinstance(plugin_id, str) and self._snapshot.get(plugin_id) is not None

    def __len__(self) -> int:
        return len(self._snapshot)

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #

    def reserve(
        self, plugin: BasePlugin, tools: tuple[ToolDefinition, ...] = ()
    ) -> RegistryEntry:
        """Append *plugin* in the ``initializing`` state and claim its tool names.

        Raises:
            DuplicateIdentifierError: If the identifier is already present
            ToolConflictError: If a tool name is already claimed
        """
        plugin_id = plugin.plugin_id
        tool_names = tuple(t.name for t in tools)
        with self._lock:
            current = self._snapshot
            if current.get(plugin_id) is not None:
                raise DuplicateIdentifierError(plugin_id)

            owners = dict(current.tool_owners)
            for name in tool_names:
                if name in owners:
                    raise ToolConflictError(plugin_id, name, owners[name])
                owners[name] = plugin_id

            entry = RegistryEntry(
                plugin=plugin,
                state=check_transition(PluginState.UNREGISTERED, PluginState.INITIALIZING),
                tools=tools,
            )
            self._snapshot = RegistrySnapshot(
                entries=(*current.entries, entry),
                tool_owners=MappingProxyType(owners),
            )

        log.debug("registry.plugin_reserved", plugin_id=plugin_id, tools=list(tool_names))
        return entry

    def transition(self, plugin_id: str, target: PluginState) -> RegistryEntry:
        """Move the entry to *target*, enforcing the lifecycle state machine.

        Raises:
            PluginNotFoundError: If no entry has this identifier
            InvalidStateTransition: If the state machine forbids the move
        """
        return self._update(plugin_id, lambda e: replace(e, state=check_transition(e.state, target)))

    def set_enabled(self, plugin_id: str, enabled: bool) -> RegistryEntry:
        """Flip the enabled flag and keep state consistent with it.

        An ``active`` entry being disabled becomes ``disabled`` and vice
        versa. Entries in other states only record the flag.
        """

        def _apply(entry: RegistryEntry) -> RegistryEntry:
            state = entry.state
            if enabled and state == PluginState.DISABLED:
                state = check_transition(state, PluginState.ACTIVE)
            elif not enabled and state == PluginState.ACTIVE:
                state = check_transition(state, PluginState.DISABLED)
            return replace(entry, enabled=enabled, state=state)

        return self._update(plugin_id, _apply)

    def remove(self, plugin_id: str) -> RegistryEntry:
        """Drop the entry and release its tool names.

        Raises:
            PluginNotFoundError: If no entry has this identifier
        """
        with self._lock:
            current = self._snapshot
            entry = current.get(plugin_id)
            if entry is None:
                raise PluginNotFoundError(plugin_id)
            owners = {k: v for k, v in current.tool_owners.items() if v != plugin_id}
            self._snapshot = RegistrySnapshot(
                entries=tuple(e for e in current.entries if e.plugin_id != plugin_id),
                tool_owners=MappingProxyType(owners),
            )

        log.debug("registry.plugin_removed", plugin_id=plugin_id)
        return entry

    def clear(self) -> None:
        """Clear all entries. Used for testing."""
        with self._lock:
            self._snapshot = RegistrySnapshot()
        log.debug("registry.cleared")

    def _update(
        self, plugin_id: str, change: Callable[[RegistryEntry], RegistryEntry]
    ) -> RegistryEntry:
        with self._lock:
            current = self._snapshot
            entries = list(current.entries)
            for index, entry in enumerate(entries):
                if entry.plugin_id == plugin_id:
                    break
            else:
                raise PluginNotFoundError(plugin_id)

            updated = change(entry)
            entries[index] = updated
            self._snapshot = RegistrySnapshot(
                entries=tuple(entries),
                tool_owners=current.tool_owners,
            )
        return updated
