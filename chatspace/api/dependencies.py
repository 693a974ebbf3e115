"""FastAPI dependencies for the plugin runtime.

The manager and turn runtime are created once in the application lifespan
and stored on ``app.state``; routes receive them through ``Depends``.
"""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from chatspace.agent.runtime import TurnRuntime
from chatspace.plugins.manager import PluginManager


def get_plugin_manager(request: Request) -> PluginManager:
    manager: PluginManager | None = getattr(request.app.state, "plugin_manager", None)
    if manager is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Plugin runtime is not initialized",
        )
    return manager


def get_turn_runtime(request: Request) -> TurnRuntime:
    runtime: TurnRuntime | None = getattr(request.app.state, "turn_runtime", None)
    if runtime is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Turn runtime is not initialized",
        )
    return runtime
