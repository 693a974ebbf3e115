"""Plugins shipped with the runtime and loaded by default via ``Settings.plugin_modules``."""
