"""Copy, edit, regenerate, share and delete buttons on chat messages."""

from __future__ import annotations

from dataclasses import replace

import structlog

from chatspace.plugins.base import PluginCategory, PluginContext, PluginMetadata
from chatspace.plugins.context import Message, MessageRole
from chatspace.plugins.ui import (
    MessageActionButton,
    PluginSettingsSchema,
    SettingField,
    SettingFieldType,
    UIExtension,
)

log = structlog.get_logger(__name__)

_COPY = MessageActionButton(
    id="copy",
    label="Copy",
    icon="ContentCopy",
    tooltip="Copy message to clipboard",
    show_on_user_messages=True,
    order=10,
    on_click_handler="handleCopyMessage",
)
_EDIT = MessageActionButton(
    id="edit",
    label="Edit",
    icon="Edit",
    tooltip="Edit and resend",
    color="Primary",
    show_on_user_messages=True,
    show_on_assistant_messages=False,
    order=20,
    on_click_handler="handleEditMessage",
)
_REGENERATE = MessageActionButton(
    id="regenerate",
    label="Regenerate",
    icon="Refresh",
    tooltip="Generate a new response",
    color="Secondary",
    order=30,
    on_click_handler="handleRegenerateMessage",
)
_SHARE = MessageActionButton(
    id="share",
    label="Share",
    icon="Share",
    tooltip="Share this message",
    show_on_user_messages=True,
    order=40,
    on_click_handler="handleShareMessage",
)
_DELETE = MessageActionButton(
    id="delete",
    label="Delete",
    icon="Delete",
    tooltip="Delete this message",
    color="Error",
    show_on_user_messages=True,
    order=50,
    on_click_handler="handleDeleteMessage",
)


class MessageActionsPlugin(UIExtension):
    def __init__(self) -> None:
        self._metadata = PluginMetadata(
            id="message-actions",
            name="Message Actions",
            version="1.0.0",
            category=PluginCategory.MESSAGE_ACTIONS,
            description="Copy, edit, regenerate, and share messages",
            author="Chatspace",
            icon="MoreVert",
        )
        self._show = {
            "copy": True,
            "edit": True,
            "regenerate": True,
            "share": True,
            "delete": True,
        }
        self.confirm_delete = True

    @property
    def metadata(self) -> PluginMetadata:
        return self._metadata

    async def initialize(self, context: PluginContext) -> None:
        settings = context.settings
        for action in self._show:
            self._show[action] = bool(settings.get(f"show_{action}_button", True))
        self.confirm_delete = bool(settings.get("confirm_delete", True))
        log.info("message_actions.plugin_loaded", visible=[a for a, on in self._show.items() if on])

    def get_message_actions(self, message: Message) -> list[MessageActionButton]:
        candidates = [_COPY, _SHARE, _DELETE]
        if message.role == MessageRole.USER:
            candidates.append(_EDIT)
        elif message.role == MessageRole.ASSISTANT:
            candidates.append(_REGENERATE)

        buttons = [b for b in candidates if self._show[b.id]]
        if self.confirm_delete:
            buttons = [
                replace(b, context={"confirm": "true"}) if b.id == "delete" else b for b in buttons
            ]
        return sorted(buttons, key=lambda b: b.order)

    def get_settings_schema(self) -> PluginSettingsSchema:
        toggles = [
            SettingField(
                key=f"show_{action}_button",
                label=f"Show {action.title()} Button",
                type=SettingFieldType.BOOLEAN,
                default=True,
            )
            for action in self._show
        ]
        return PluginSettingsSchema(
            title="Message Actions Settings",
            description="Customize which action buttons are shown",
            fields=(
                *toggles,
                SettingField(
                    key="confirm_delete",
                    label="Confirm Before Delete",
                    description="Show confirmation dialog before deleting",
                    type=SettingFieldType.BOOLEAN,
                    default=True,
                ),
            ),
        )
