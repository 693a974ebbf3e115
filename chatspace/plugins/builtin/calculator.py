"""Calculator tool plugin.

Provides basic arithmetic as tools the model can call mid-turn. Parameters
arrive already validated and coerced to numbers by the dispatcher.
"""

from __future__ import annotations

import operator
from collections.abc import Callable
from typing import Any

import structlog

from chatspace.plugins.base import PluginCategory, PluginContext, PluginMetadata
from chatspace.plugins.tool_plugin import (
    ToolContext,
    ToolDefinition,
    ToolParameter,
    ToolParameterType,
    ToolProvider,
    ToolResult,
)

log = structlog.get_logger(__name__)

_OPERATIONS: dict[str, tuple[str, Callable[[float, float], float]]] = {
    "add": ("Add two numbers", operator.add),
    "subtract": ("Subtract second number from first", operator.sub),
    "multiply": ("Multiply two numbers", operator.mul),
    "divide": ("Divide first number by second", operator.truediv),
}


class CalculatorPlugin(ToolProvider):
    """Arithmetic tools: add, subtract, multiply, divide."""

    def __init__(self) -> None:
        self._metadata = PluginMetadata(
            id="calculator",
            name="Calculator",
            version="1.0.0",
            category=PluginCategory.TOOLS,
            description="Provides basic arithmetic calculation tools",
            author="Chatspace",
            icon="calculate",
        )
        self._tools = [
            ToolDefinition(
                name=name,
                description=description,
                parameters=(
                    ToolParameter("a", ToolParameterType.NUMBER, "First number"),
                    ToolParameter(
                        "b",
                        ToolParameterType.NUMBER,
                        "Denominator (cannot be zero)" if name == "divide" else "Second number",
                    ),
                ),
            )
            for name, (description, _) in _OPERATIONS.items()
        ]
        self._precision: int | None = None

    @property
    def metadata(self) -> PluginMetadata:
        return self._metadata

    def list_tools(self) -> list[ToolDefinition]:
        return self._tools

    async def initialize(self, context: PluginContext) -> None:
        precision = context.settings.get("precision")
        self._precision = int(precision) if precision is not None else None
        log.info("calculator.plugin_loaded", precision=self._precision)

    async def execute_tool(
        self,
        tool_name: str,
        params: dict[str, Any],
        context: ToolContext,
    ) -> ToolResult:
        a, b = params["a"], params["b"]
        _, op = _OPERATIONS[tool_name]

        if tool_name == "divide" and b == 0:
            return ToolResult.fail("Division by zero is not allowed")

        result = op(a, b)
        if self._precision is not None:
            result = round(result, self._precision)

        log.debug("calculator.tool_execute", tool_name=tool_name, result=result)
        return ToolResult.ok(
            {"result": result},
            metadata={"operation": tool_name, "operands": {"a": a, "b": b}},
        )
