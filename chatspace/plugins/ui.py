"""UI extension capability.

UI plugins contribute message action buttons, chat-input extensions and a
settings schema. The manager concatenates contributions from every enabled
UI plugin in registry order.
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import Any

from chatspace.plugins.base import BasePlugin
from chatspace.plugins.context import Message


@dataclass(frozen=True)
class MessageActionButton:
    """Button action on messages."""

    id: str
    label: str
    icon: str = ""
    tooltip: str = ""
    color: str = "Default"  # Primary, Secondary, Success, Error, ...
    show_on_user_messages: bool = False
    show_on_assistant_messages: bool = True
    order: int = 0
    on_click_handler: str | None = None  # client-side callback name
    context: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ChatInputExtension:
    """Extension to the chat input area."""

    id: str
    icon: str = ""
    tooltip: str = ""
    order: int = 0
    on_click_handler: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class SettingFieldType(StrEnum):
    TEXT = "text"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DROPDOWN = "dropdown"
    TEXTAREA = "textarea"
    COLOR = "color"
    DATE = "date"
    TIME = "time"
    URL = "url"
    EMAIL = "email"


@dataclass(frozen=True)
class SettingField:
    key: str
    label: str
    type: SettingFieldType = SettingFieldType.TEXT
    description: str | None = None
    default: Any = None
    placeholder: str | None = None
    options: tuple[str, ...] | None = None  # dropdown only
    min: int | None = None  # number only
    max: int | None = None
    required: bool = False


@dataclass(frozen=True)
class PluginSettingsSchema:
    """Settings form a plugin contributes to the plugin settings modal."""

    title: str
    description: str = ""
    fields: tuple[SettingField, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class UIExtension(BasePlugin):
    """Capability: extend the chat UI.

    Use cases: message actions, input buttons, plugin settings.
    """

    @abstractmethod
    def get_message_actions(self, message: Message) -> list[MessageActionButton]:
        """Buttons to show on *message*."""

    def get_input_extensions(self) -> list[ChatInputExtension]:
        return []

    def get_settings_schema(self) -> PluginSettingsSchema | None:
        return None
