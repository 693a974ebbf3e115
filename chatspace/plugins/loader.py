"""Plugin discovery.

Plugins are found in three places, in this order:

1. An explicit list of factories handed to the manager (or to
   ``PluginManager.load_plugins``).
2. Dotted module paths from ``Settings.plugin_modules``. A path may name a
   module (``"pkg.plugins.search"``), in which case the module must define
   exactly one concrete ``BasePlugin`` subclass, or a specific attribute
   (``"pkg.plugins.search:SearchPlugin"``).
3. The ``chatspace.plugins`` entry-point group of installed distributions,
   when ``Settings.plugin_entry_points`` is true.

Discovery is lazy: each source is wrapped in a ``PluginSource`` whose
factory does the import and instantiation, so one broken module only fails
its own source.
"""

from __future__ import annotations

import functools
import importlib
import inspect
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from importlib.metadata import entry_points
from typing import Any

import structlog

from chatspace.plugins.base import BasePlugin

log = structlog.get_logger(__name__)

ENTRY_POINT_GROUP = "chatspace.plugins"

PluginFactory = Callable[[], BasePlugin]


@dataclass(frozen=True)
class PluginSource:
    """Where a plugin comes from and how to build it."""

    name: str  # module path, entry-point name, or factory qualname
    factory: PluginFactory

    def create(self) -> BasePlugin:
        plugin = self.factory()
        if not isinstance(plugin, BasePlugin):
            raise TypeError(
                f"Plugin source '{self.name}' produced {type(plugin).__name__}, not a BasePlugin"
            )
        return plugin


def _instantiate(obj: Any, origin: str) -> BasePlugin:
    """Turn a class, factory function or instance into a plugin instance."""
    if isinstance(obj, BasePlugin):
        return obj
    if not callable(obj):
        raise ValueError(f"{origin} is not a plugin class or factory")

    try:
        plugin = obj()
    except Exception as e:
        raise ValueError(f"Failed to instantiate plugin {origin}: {e}") from e

    if not isinstance(plugin, BasePlugin):
        raise ValueError(f"{origin} did not produce a BasePlugin (got {type(plugin).__name__})")
    return plugin


def load_plugin_from_module(module_path: str) -> BasePlugin:
    """Load a plugin from a Python module path.

    Args:
        module_path: Dotted module path, optionally with ``:attribute``
            (e.g. ``"chatspace.plugins.builtin.calculator"``)

    Returns:
        Loaded plugin instance

    Raises:
        ImportError: If module cannot be imported
        ValueError: If module doesn't contain exactly one valid plugin
    """
    module_name, _, attribute = module_path.partition(":")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        log.error("loader.import_failed", module_path=module_path, error=str(e))
        raise

    if attribute:
        try:
            target = getattr(module, attribute)
        except AttributeError as e:
            raise ValueError(f"Module {module_name} has no attribute {attribute!r}") from e
        plugin = _instantiate(target, module_path)
    else:
        # Only classes defined in the module itself; imported capability
        # bases and other plugins' classes do not count.
        plugin_classes = [
            obj
            for obj in vars(module).values()
            if isinstance(obj, type)
            and issubclass(obj, BasePlugin)
            and obj.__module__ == module.__name__
            and not inspect.isabstract(obj)
        ]

        if not plugin_classes:
            raise ValueError(f"Module {module_path} does not contain any BasePlugin subclasses")

        if len(plugin_classes) > 1:
            raise ValueError(
                f"Module {module_path} contains multiple plugin classes: "
                f"{[cls.__name__ for cls in plugin_classes]}"
            )

        plugin = _instantiate(plugin_classes[0], plugin_classes[0].__name__)

    log.info(
        "loader.plugin_loaded",
        module_path=module_path,
        plugin_id=plugin.plugin_id,
        version=plugin.metadata.version,
    )
    return plugin


def sources_from_factories(factories: Iterable[PluginFactory]) -> list[PluginSource]:
    return [
        PluginSource(name=getattr(f, "__qualname__", None) or repr(f), factory=f)
        for f in factories
    ]


def sources_from_modules(module_paths: Sequence[str]) -> list[PluginSource]:
    return [
        PluginSource(name=path, factory=functools.partial(load_plugin_from_module, path))
        for path in module_paths
    ]


def sources_from_entry_points(group: str = ENTRY_POINT_GROUP) -> list[PluginSource]:
    """One source per entry point registered under *group*.

    Each entry point must reference a plugin class, a zero-argument factory,
    or a plugin instance.
    """
    sources: list[PluginSource] = []
    for ep in entry_points(group=group):

        def _factory(ep: Any = ep) -> BasePlugin:
            return _instantiate(ep.load(), f"entry point '{ep.name}' ({ep.value})")

        sources.append(PluginSource(name=f"{group}:{ep.name}", factory=_factory))

    log.debug("loader.entry_points_scanned", group=group, count=len(sources))
    return sources


def discover(
    *,
    factories: Iterable[PluginFactory] = (),
    module_paths: Sequence[str] = (),
    use_entry_points: bool = False,
    group: str = ENTRY_POINT_GROUP,
) -> list[PluginSource]:
    """Collect plugin sources from every configured place, in load order."""
    sources = sources_from_factories(factories)
    sources.extend(sources_from_modules(module_paths))
    if use_entry_points:
        sources.extend(sources_from_entry_points(group))
    return sources
