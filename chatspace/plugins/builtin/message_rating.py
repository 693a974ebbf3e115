"""Thumbs up/down rating buttons on assistant messages.

The current rating is read from ``message.metadata["rating"]`` (1, -1 or
absent) and highlights the matching button.
"""

from __future__ import annotations

from chatspace.plugins.base import PluginCategory, PluginMetadata
from chatspace.plugins.context import Message, MessageRole
from chatspace.plugins.ui import (
    MessageActionButton,
    PluginSettingsSchema,
    SettingField,
    SettingFieldType,
    UIExtension,
)


class MessageRatingPlugin(UIExtension):
    def __init__(self) -> None:
        self._metadata = PluginMetadata(
            id="message-rating",
            name="Message Rating",
            version="1.0.0",
            category=PluginCategory.MESSAGE_ACTIONS,
            description="Rate AI responses with thumbs up/down or 5-star ratings",
            author="Chatspace",
            icon="ThumbUp",
        )

    @property
    def metadata(self) -> PluginMetadata:
        return self._metadata

    def get_message_actions(self, message: Message) -> list[MessageActionButton]:
        if message.role != MessageRole.ASSISTANT:
            return []

        rating = message.metadata.get("rating")
        return [
            MessageActionButton(
                id="thumbs-up",
                label="Good response",
                icon="ThumbUp",
                tooltip="This response was helpful",
                color="Success" if rating == 1 else "Default",
                order=100,
                on_click_handler="handleThumbsUp",
            ),
            MessageActionButton(
                id="thumbs-down",
                label="Bad response",
                icon="ThumbDown",
                tooltip="This response needs improvement",
                color="Error" if rating == -1 else "Default",
                order=101,
                on_click_handler="handleThumbsDown",
            ),
        ]

    def get_settings_schema(self) -> PluginSettingsSchema:
        return PluginSettingsSchema(
            title="Message Rating Settings",
            description="Configure how message ratings are displayed and collected",
            fields=(
                SettingField(
                    key="rating_type",
                    label="Rating Type",
                    description="Choose between simple thumbs or 5-star rating",
                    type=SettingFieldType.DROPDOWN,
                    default="thumbs",
                    options=("thumbs", "stars"),
                ),
                SettingField(
                    key="show_feedback_prompt",
                    label="Show Feedback Prompt",
                    description="Ask for written feedback after rating",
                    type=SettingFieldType.BOOLEAN,
                    default=True,
                ),
                SettingField(
                    key="collect_anonymously",
                    label="Collect Anonymously",
                    description="Don't link ratings to user profiles",
                    type=SettingFieldType.BOOLEAN,
                    default=False,
                ),
            ),
        )
