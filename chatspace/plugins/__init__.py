"""Plugin runtime for the chat workspace.

Plugins extend a conversation in three ways: intercepting messages before
and after the LLM call, providing tools, and contributing UI elements.

Core components:
- BasePlugin: Abstract base class for all plugins
- MessageInterceptor / ToolProvider / UIExtension: Capability mix-ins
- PluginManager: Lifecycle owner and façade (load, register, unload, enable)
- PluginRegistry: Copy-on-write catalog of registered plugins
- InterceptionChain: Ordered, short-circuiting interceptor executor
- ToolDispatcher: Validated tool routing
- EventBus: PluginLoaded / PluginUnloaded / PluginError notifications
"""

from chatspace.plugins.base import (
    BasePlugin,
    MessageInterceptor,
    PluginCategory,
    PluginContext,
    PluginMetadata,
    PluginState,
)
from chatspace.plugins.chain import Direction, InterceptionChain
from chatspace.plugins.context import (
    ConversationContext,
    InterceptResult,
    Message,
    MessageRole,
)
from chatspace.plugins.dispatcher import ToolDispatcher
from chatspace.plugins.events import (
    EventBus,
    PluginError,
    PluginLoaded,
    PluginPhase,
    PluginUnloaded,
)
from chatspace.plugins.manager import LoadReport, PluginManager
from chatspace.plugins.registry import PluginInfo, PluginRegistry, RegistryEntry
from chatspace.plugins.tool_plugin import (
    ToolContext,
    ToolDefinition,
    ToolErrorCode,
    ToolParameter,
    ToolParameterType,
    ToolProvider,
    ToolResult,
)
from chatspace.plugins.ui import (
    ChatInputExtension,
    MessageActionButton,
    PluginSettingsSchema,
    SettingField,
    SettingFieldType,
    UIExtension,
)

__all__ = [
    "BasePlugin",
    "ChatInputExtension",
    "ConversationContext",
    "Direction",
    "EventBus",
    "InterceptResult",
    "InterceptionChain",
    "LoadReport",
    "Message",
    "MessageActionButton",
    "MessageInterceptor",
    "MessageRole",
    "PluginCategory",
    "PluginContext",
    "PluginError",
    "PluginInfo",
    "PluginLoaded",
    "PluginManager",
    "PluginMetadata",
    "PluginPhase",
    "PluginRegistry",
    "PluginSettingsSchema",
    "PluginState",
    "PluginUnloaded",
    "RegistryEntry",
    "SettingField",
    "SettingFieldType",
    "ToolContext",
    "ToolDefinition",
    "ToolDispatcher",
    "ToolErrorCode",
    "ToolParameter",
    "ToolParameterType",
    "ToolProvider",
    "ToolResult",
    "UIExtension",
]
