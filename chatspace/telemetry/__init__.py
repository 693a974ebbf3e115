"""Telemetry package for observability.

This package contains structured logging with conversation and plugin
context binding.
"""

from __future__ import annotations

from chatspace.telemetry.logging import (
    bind_conversation_context,
    bind_plugin_context,
    clear_context,
    configure_logging,
    unbind_plugin_context,
)

__all__ = [
    "bind_conversation_context",
    "bind_plugin_context",
    "clear_context",
    "configure_logging",
    "unbind_plugin_context",
]
