"""Structured logging configuration.

Configures structlog over stdlib logging with JSON output in production and a
human-readable console renderer in development.

Features:
- JSON-formatted logs in production (human-readable in dev)
- Conversation, user and workspace IDs in every entry of a turn
- Plugin ID bound while a plugin handler runs
- ISO8601 timestamps with timezone
- Stack traces for exceptions

Log format (production):
    {
        "timestamp": "2026-02-17T10:30:45.123456Z",
        "level": "info",
        "event": "chain.cancelled",
        "logger": "chatspace.plugins.chain",
        "conversation_id": "conv_uuid",
        "user_id": "user_uuid",
        "workspace_id": "ws_uuid",
        "plugin_id": "pii-redaction"
    }
"""

from __future__ import annotations

import logging
import sys
import uuid

import structlog
from structlog.types import Processor


def configure_logging(
    *,
    json_logs: bool = False,
    log_level: str = "INFO",
) -> None:
    """Configure structured logging for the application.

    Args:
        json_logs: Use JSON format (True for production, False for dev)
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,  # conversation / plugin context
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_logs:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ------------------------------------------------------------------ #
# Context Binding Helpers
# ------------------------------------------------------------------ #


def bind_conversation_context(
    conversation_id: str | uuid.UUID,
    *,
    user_id: str | None = None,
    workspace_id: str | None = None,
) -> None:
    """Bind turn-scoped identifiers to the log context.

    Context variables are task-local, so concurrent turns never see each
    other's identifiers.
    """
    values = {"conversation_id": str(conversation_id)}
    if user_id:
        values["user_id"] = user_id
    if workspace_id:
        values["workspace_id"] = workspace_id
    structlog.contextvars.bind_contextvars(**values)


def bind_plugin_context(plugin_id: str) -> None:
    """Bind the plugin currently being invoked."""
    structlog.contextvars.bind_contextvars(plugin_id=plugin_id)


def unbind_plugin_context() -> None:
    structlog.contextvars.unbind_contextvars("plugin_id")


def clear_context() -> None:
    """Clear all context variables (useful for testing)."""
    structlog.contextvars.clear_contextvars()
