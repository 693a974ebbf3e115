"""Copy-all-code button for assistant messages that contain code blocks."""

from __future__ import annotations

import re

from chatspace.plugins.base import PluginCategory, PluginMetadata
from chatspace.plugins.context import Message, MessageRole
from chatspace.plugins.ui import (
    MessageActionButton,
    PluginSettingsSchema,
    SettingField,
    SettingFieldType,
    UIExtension,
)

# Fenced markdown block; group 1 is the body without the language tag line
_CODE_BLOCK = re.compile(r"```[^\n`]*\n?([\s\S]*?)```")


def extract_code_blocks(content: str) -> list[str]:
    return [body.rstrip("\n") for body in _CODE_BLOCK.findall(content)]


class CodeCopyPlugin(UIExtension):
    def __init__(self) -> None:
        self._metadata = PluginMetadata(
            id="code-copy",
            name="Code Copy",
            version="1.0.0",
            category=PluginCategory.MESSAGE_ACTIONS,
            description="Add copy buttons to code blocks",
            author="Chatspace",
            icon="Code",
        )

    @property
    def metadata(self) -> PluginMetadata:
        return self._metadata

    def get_message_actions(self, message: Message) -> list[MessageActionButton]:
        if message.role != MessageRole.ASSISTANT:
            return []

        blocks = extract_code_blocks(message.content)
        if not blocks:
            return []

        return [
            MessageActionButton(
                id="copy-all-code",
                label="Copy All Code",
                icon="ContentCopy",
                tooltip="Copy all code blocks from this message",
                color="Primary",
                order=15,
                on_click_handler="handleCopyAllCode",
                context={
                    "messageId": str(message.id),
                    "content": message.content,
                    "code": "\n\n".join(blocks),
                },
            )
        ]

    def get_settings_schema(self) -> PluginSettingsSchema:
        return PluginSettingsSchema(
            title="Code Copy Settings",
            description="Customize code block copying behavior",
            fields=(
                SettingField(
                    key="show_line_numbers",
                    label="Show Line Numbers",
                    description="Display line numbers in code blocks",
                    type=SettingFieldType.BOOLEAN,
                    default=True,
                ),
                SettingField(
                    key="syntax_highlighting",
                    label="Syntax Highlighting",
                    description="Enable syntax highlighting for code blocks",
                    type=SettingFieldType.BOOLEAN,
                    default=True,
                ),
                SettingField(
                    key="copy_button_position",
                    label="Copy Button Position",
                    type=SettingFieldType.DROPDOWN,
                    default="top-right",
                    options=("top-right", "top-left", "bottom-right", "bottom-left"),
                ),
            ),
        )
