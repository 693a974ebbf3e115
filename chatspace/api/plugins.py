"""Plugin management API endpoints.

GET    /api/v1/plugins                          - List loaded plugins
GET    /api/v1/plugins/tools                    - Tools of every enabled plugin
GET    /api/v1/plugins/settings                 - Settings schema per plugin
GET    /api/v1/plugins/input-extensions         - Chat input extensions
POST   /api/v1/plugins/message-actions          - Action buttons for a message
GET    /api/v1/plugins/{plugin_id}              - Get plugin details
POST   /api/v1/plugins/{plugin_id}/enable       - Enable plugin
POST   /api/v1/plugins/{plugin_id}/disable      - Disable plugin
DELETE /api/v1/plugins/{plugin_id}              - Unload plugin
POST   /api/v1/plugins/{plugin_id}/tools/{tool} - Execute a tool

Fixed paths are declared before ``/{plugin_id}`` so they are never
captured as plugin ids.
"""

from __future__ import annotations

import uuid
from typing import Any

import structlog
from fastapi import APIRouter, Body, Depends, HTTPException, status
from pydantic import BaseModel, Field

from chatspace.api.dependencies import get_plugin_manager
from chatspace.plugins.context import Message, MessageRole
from chatspace.plugins.exceptions import PluginNotFoundError
from chatspace.plugins.manager import PluginManager
from chatspace.plugins.registry import PluginInfo
from chatspace.plugins.tool_plugin import ToolContext

log = structlog.get_logger(__name__)

router = APIRouter(prefix="/plugins", tags=["plugins"])


# ------------------------------------------------------------------ #
# Request/Response models
# ------------------------------------------------------------------ #


class PluginInfoResponse(BaseModel):
    """A registered plugin with its lifecycle state."""

    id: str
    name: str
    version: str
    category: str
    description: str
    author: str
    icon: str
    enabled: bool
    state: str
    capabilities: list[str]
    tools: list[str]

    @classmethod
    def from_info(cls, info: PluginInfo) -> PluginInfoResponse:
        return cls.model_validate(info.to_dict())


class ToolResponse(BaseModel):
    """A tool in OpenAI function-calling format."""

    type: str = "function"
    function: dict[str, Any]


class ToolResultResponse(BaseModel):
    success: bool
    data: Any = None
    error: str | None = None
    error_code: str | None = None
    tokens_used: int | None = None
    cost: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class MessageActionsRequest(BaseModel):
    """The message to compute action buttons for."""

    role: MessageRole
    content: str
    id: uuid.UUID | None = None
    conversation_id: uuid.UUID | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_message(self) -> Message:
        extra = {"id": self.id} if self.id is not None else {}
        return Message(
            role=self.role,
            content=self.content,
            conversation_id=self.conversation_id,
            metadata=self.metadata,
            **extra,
        )


def _not_found(plugin_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Plugin '{plugin_id}' not found",
    )


# ------------------------------------------------------------------ #
# Plugin listing and aggregation
# ------------------------------------------------------------------ #


@router.get(
    "",
    response_model=list[PluginInfoResponse],
    summary="List loaded plugins",
)
async def list_plugins(
    manager: PluginManager = Depends(get_plugin_manager),
) -> list[PluginInfoResponse]:
    """Every plugin that is active, disabled or faulted, in registry order."""
    return [PluginInfoResponse.from_info(info) for info in manager.get_loaded_plugins()]


@router.get(
    "/tools",
    response_model=list[ToolResponse],
    summary="List tools of enabled plugins",
)
async def list_tools(
    manager: PluginManager = Depends(get_plugin_manager),
) -> list[ToolResponse]:
    return [ToolResponse.model_validate(t.to_openai_schema()) for t in manager.get_all_tools()]


@router.get("/settings", summary="Settings schema of every UI plugin")
async def get_plugin_settings(
    manager: PluginManager = Depends(get_plugin_manager),
) -> dict[str, dict[str, Any]]:
    return {pid: schema.to_dict() for pid, schema in manager.get_all_plugin_settings().items()}


@router.get("/input-extensions", summary="Chat input extensions")
async def get_input_extensions(
    manager: PluginManager = Depends(get_plugin_manager),
) -> list[dict[str, Any]]:
    return [ext.to_dict() for ext in manager.get_input_extensions()]


@router.post("/message-actions", summary="Action buttons for a message")
async def get_message_actions(
    body: MessageActionsRequest,
    manager: PluginManager = Depends(get_plugin_manager),
) -> list[dict[str, Any]]:
    """Buttons contributed by every enabled UI plugin, in registry order."""
    return [button.to_dict() for button in manager.get_message_actions(body.to_message())]


# ------------------------------------------------------------------ #
# Plugin details
# ------------------------------------------------------------------ #


@router.get(
    "/{plugin_id}",
    response_model=PluginInfoResponse,
    summary="Get plugin details",
)
async def get_plugin_details(
    plugin_id: str,
    manager: PluginManager = Depends(get_plugin_manager),
) -> PluginInfoResponse:
    info = manager.get_plugin(plugin_id)
    if info is None:
        raise _not_found(plugin_id)
    return PluginInfoResponse.from_info(info)


# ------------------------------------------------------------------ #
# Plugin enable/disable/unload
# ------------------------------------------------------------------ #


@router.post(
    "/{plugin_id}/enable",
    response_model=PluginInfoResponse,
    summary="Enable plugin",
)
async def enable_plugin(
    plugin_id: str,
    manager: PluginManager = Depends(get_plugin_manager),
) -> PluginInfoResponse:
    try:
        info = manager.set_plugin_enabled(plugin_id, True)
    except PluginNotFoundError as exc:
        raise _not_found(plugin_id) from exc

    log.info("plugins.enabled", plugin_id=plugin_id)
    return PluginInfoResponse.from_info(info)


@router.post(
    "/{plugin_id}/disable",
    response_model=PluginInfoResponse,
    summary="Disable plugin",
)
async def disable_plugin(
    plugin_id: str,
    manager: PluginManager = Depends(get_plugin_manager),
) -> PluginInfoResponse:
    """Disable without unloading. The plugin keeps its place in the order."""
    try:
        info = manager.set_plugin_enabled(plugin_id, False)
    except PluginNotFoundError as exc:
        raise _not_found(plugin_id) from exc

    log.info("plugins.disabled", plugin_id=plugin_id)
    return PluginInfoResponse.from_info(info)


@router.delete(
    "/{plugin_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Unload plugin",
)
async def unload_plugin(
    plugin_id: str,
    manager: PluginManager = Depends(get_plugin_manager),
) -> None:
    try:
        await manager.unload_plugin(plugin_id)
    except PluginNotFoundError as exc:
        raise _not_found(plugin_id) from exc

    log.info("plugins.unloaded", plugin_id=plugin_id)


# ------------------------------------------------------------------ #
# Tool execution
# ------------------------------------------------------------------ #


@router.post(
    "/{plugin_id}/tools/{tool_name}",
    response_model=ToolResultResponse,
    summary="Execute a plugin tool",
)
async def execute_tool(
    plugin_id: str,
    tool_name: str,
    parameters: dict[str, Any] | None = Body(default=None),
    manager: PluginManager = Depends(get_plugin_manager),
) -> ToolResultResponse:
    """Run a tool. Routing and validation problems come back as a failed
    result with ``error_code`` set, never as an HTTP error.
    """
    result = await manager.execute_tool(plugin_id, tool_name, parameters or {}, ToolContext())
    return ToolResultResponse.model_validate(result.to_dict())
