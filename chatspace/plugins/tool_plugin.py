"""Tool plugin base classes.

Extends the plugin system to support custom tool registration.
Tool plugins add named, schema-described functions that can be invoked
during a conversation.

Parameters are declared as a list of ``ToolParameter`` and compiled into a
pydantic model per tool, which the dispatcher validates against before the
plugin ever sees the call.
"""

from __future__ import annotations

import uuid
from abc import abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from enum import StrEnum
from functools import cached_property
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, create_model

from chatspace.plugins.base import BasePlugin
from chatspace.plugins.exceptions import (
    PluginNotFoundError,
    ToolNotFoundError,
    ToolValidationError,
)


class ToolParameterType(StrEnum):
    STRING = "string"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"


_PYTHON_TYPES: dict[ToolParameterType, Any] = {
    ToolParameterType.STRING: str,
    ToolParameterType.NUMBER: float,
    ToolParameterType.INTEGER: int,
    ToolParameterType.BOOLEAN: bool,
    ToolParameterType.ARRAY: list[Any],
    ToolParameterType.OBJECT: dict[str, Any],
}


@dataclass(frozen=True)
class ToolParameter:
    """Tool parameter definition."""

    name: str
    type: ToolParameterType = ToolParameterType.STRING
    description: str = ""
    required: bool = True
    default: Any = None
    enum: tuple[Any, ...] | None = None  # Allowed values

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Tool parameter name cannot be empty")
        object.__setattr__(self, "type", ToolParameterType(self.type))
        if self.enum is not None:
            if not self.enum:
                raise ValueError(f"Parameter '{self.name}' enum cannot be empty")
            object.__setattr__(self, "enum", tuple(self.enum))

    def annotation(self) -> Any:
        if self.enum is not None:
            return Literal[self.enum]  # type: ignore[valid-type]
        return _PYTHON_TYPES[self.type]

    def json_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {"type": str(self.type)}
        if self.description:
            schema["description"] = self.description
        if self.enum is not None:
            schema["enum"] = list(self.enum)
        if not self.required and self.default is not None:
            schema["default"] = self.default
        return schema


@dataclass(frozen=True)
class ToolDefinition:
    """Defines a tool that a plugin provides.

    Tool names are unique across every registered plugin; the registry
    rejects a plugin whose tool name is already taken.
    """

    name: str
    description: str
    parameters: tuple[ToolParameter, ...] = ()
    requires_confirmation: bool = False
    requires_auth: bool = False

    def __post_init__(self) -> None:
        """Validate tool definition."""
        if not self.name:
            raise ValueError("Tool name cannot be empty")
        if not self.description:
            raise ValueError("Tool description cannot be empty")
        object.__setattr__(self, "parameters", tuple(self.parameters))
        names = [p.name for p in self.parameters]
        if len(names) != len(set(names)):
            raise ValueError(f"Tool '{self.name}' declares duplicate parameter names")

    @cached_property
    def params_model(self) -> type[BaseModel]:
        """Pydantic model validating this tool's parameters.

        Fields are aliased to the declared parameter names so names such as
        ``json`` or ``schema`` never clash with ``BaseModel`` attributes.
        Undeclared keys are dropped. Optional parameters also accept null.
        """
        fields: dict[str, Any] = {}
        for index, param in enumerate(self.parameters):
            if param.required:
                spec = (param.annotation(), Field(..., alias=param.name))
            else:
                spec = (param.annotation() | None, Field(param.default, alias=param.name))
            fields[f"p{index}"] = spec
        return create_model(
            f"{self.name.title().replace('_', '').replace('-', '')}Params",
            __config__=ConfigDict(extra="ignore"),
            **fields,
        )

    def validate_params(self, params: dict[str, Any]) -> dict[str, Any]:
        """Validate *params*, fill defaults and return the clean dict.

        Raises:
            ToolValidationError: If a required parameter is missing, a value has
                the wrong type, or a value is outside its enum
        """
        optional = {p.name for p in self.parameters if not p.required}
        # An explicit null for an optional parameter means "use the default"
        params = {k: v for k, v in params.items() if v is not None or k not in optional}
        try:
            model = self.params_model.model_validate(params)
        except ValidationError as exc:
            errors = [
                f"{'.'.join(str(part) for part in err['loc']) or '<root>'}: {err['msg']}"
                for err in exc.errors()
            ]
            raise ToolValidationError(self.name, errors) from exc
        return model.model_dump(by_alias=True)

    def to_openai_schema(self) -> dict[str, Any]:
        """OpenAI function-calling schema for this tool."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": {p.name: p.json_schema() for p in self.parameters},
                    "required": [p.name for p in self.parameters if p.required],
                },
            },
        }


class ToolErrorCode(StrEnum):
    PLUGIN_NOT_FOUND = "plugin_not_found"
    TOOL_NOT_FOUND = "tool_not_found"
    VALIDATION_ERROR = "validation_error"
    EXECUTION_ERROR = "execution_error"
    TIMEOUT = "timeout"


@dataclass
class ToolResult:
    """Result of a tool execution.

    Contains the execution outcome, data, and any error information.
    ``tokens_used`` and ``cost`` are optional usage figures for billing.
    """

    success: bool
    data: Any = None
    error: str | None = None
    error_code: ToolErrorCode | None = None
    tokens_used: int | None = None
    cost: Decimal | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, data: Any = None, **kwargs: Any) -> ToolResult:
        return cls(success=True, data=data, **kwargs)

    @classmethod
    def fail(
        cls,
        error: str,
        code: ToolErrorCode = ToolErrorCode.EXECUTION_ERROR,
        **kwargs: Any,
    ) -> ToolResult:
        return cls(success=False, error=error, error_code=code, **kwargs)

    def raise_for_error(self, plugin_id: str = "", tool_name: str = "") -> None:
        """Raise the typed exception matching ``error_code``, if any."""
        if self.success:
            return
        if self.error_code == ToolErrorCode.PLUGIN_NOT_FOUND:
            raise PluginNotFoundError(plugin_id)
        if self.error_code == ToolErrorCode.TOOL_NOT_FOUND:
            raise ToolNotFoundError(plugin_id, tool_name)
        if self.error_code == ToolErrorCode.VALIDATION_ERROR:
            raise ToolValidationError(tool_name, [self.error or "invalid parameters"])
        raise RuntimeError(self.error or "Tool execution failed")

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "data": self.data,
            "error": self.error,
            "error_code": self.error_code,
            "tokens_used": self.tokens_used,
            "cost": str(self.cost) if self.cost is not None else None,
            "metadata": self.metadata,
        }


@dataclass
class ToolContext:
    """Context passed to tool execution.

    Provides scope and tracing information for the tool invocation.
    """

    conversation_id: uuid.UUID | None = None
    user_id: str | None = None
    workspace_id: str | None = None
    trace_id: uuid.UUID = field(default_factory=uuid.uuid4)


class ToolProvider(BasePlugin):
    """Capability: provide tools/functions callable during chat.

    Use cases: web search, code execution, file operations.

    Subclasses must implement:
    - list_tools: Return the ToolDefinitions this plugin provides
    - execute_tool: Async method to execute a tool
    """

    @abstractmethod
    def list_tools(self) -> list[ToolDefinition]:
        """Return the list of tools this plugin provides.

        Must be stable for the plugin's lifetime; the registry indexes tool
        names when the plugin is registered.
        """

    @abstractmethod
    async def execute_tool(
        self,
        tool_name: str,
        params: dict[str, Any],
        context: ToolContext,
    ) -> ToolResult:
        """Execute a tool with given parameters.

        Args:
            tool_name: Name of the tool to execute
            params: Tool parameters, already validated against the definition
            context: Execution context with conversation scope and tracing

        Returns:
            ToolResult with execution outcome. Raising is allowed; the
            dispatcher converts exceptions into failed results.
        """
