"""Tests for the built-in plugins.

Tests cover:
- Calculator tools through the dispatcher
- PII redaction, warning and blocking
- Message action, rating and code-copy buttons
"""

from __future__ import annotations

import uuid

import pytest

from chatspace.plugins.base import PluginContext
from chatspace.plugins.builtin.calculator import CalculatorPlugin
from chatspace.plugins.builtin.code_copy import CodeCopyPlugin, extract_code_blocks
from chatspace.plugins.builtin.message_actions import MessageActionsPlugin
from chatspace.plugins.builtin.message_rating import MessageRatingPlugin
from chatspace.plugins.builtin.pii_redaction import PIIRedactionPlugin, PIIScanner
from chatspace.plugins.context import Message, MessageRole
from chatspace.plugins.tool_plugin import ToolErrorCode


def _assistant(content: str, **metadata) -> Message:
    return Message(role=MessageRole.ASSISTANT, content=content, metadata=metadata)


def _user(content: str) -> Message:
    return Message(role=MessageRole.USER, content=content)


# ------------------------------------------------------------------ #
# Calculator
# ------------------------------------------------------------------ #


class TestCalculator:
    @pytest.mark.asyncio
    async def test_tools_registered(self, manager):
        await manager.register_plugin(CalculatorPlugin())

        assert [t.name for t in manager.get_all_tools()] == ["add", "subtract", "multiply", "divide"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("tool", "a", "b", "expected"),
        [("add", 2, 3, 5), ("subtract", 5, 3, 2), ("multiply", 4, 2.5, 10), ("divide", 9, 3, 3)],
    )
    async def test_operations(self, manager, tool, a, b, expected):
        await manager.register_plugin(CalculatorPlugin())

        result = await manager.execute_tool("calculator", tool, {"a": a, "b": b})

        assert result.success
        assert result.data == {"result": expected}
        assert result.metadata["operation"] == tool

    @pytest.mark.asyncio
    async def test_divide_by_zero(self, manager):
        await manager.register_plugin(CalculatorPlugin())

        result = await manager.execute_tool("calculator", "divide", {"a": 1, "b": 0})

        assert not result.success
        assert result.error_code == ToolErrorCode.EXECUTION_ERROR
        assert "zero" in result.error.lower()

    @pytest.mark.asyncio
    async def test_missing_operand(self, manager):
        await manager.register_plugin(CalculatorPlugin())

        result = await manager.execute_tool("calculator", "add", {"a": 1})

        assert result.error_code == ToolErrorCode.VALIDATION_ERROR

    @pytest.mark.asyncio
    async def test_precision_setting(self, settings):
        from chatspace.plugins.manager import PluginManager

        settings.plugin_config = {"calculator": {"precision": 2}}
        manager = PluginManager(settings)
        await manager.register_plugin(CalculatorPlugin())

        result = await manager.execute_tool("calculator", "divide", {"a": 1, "b": 3})

        assert result.data == {"result": 0.33}


# ------------------------------------------------------------------ #
# PII redaction
# ------------------------------------------------------------------ #


class TestPIIScanner:
    def test_finds_common_patterns(self):
        text = "Mail jane@example.com or call 555-123-4567, SSN 123-45-6789, ip 10.0.0.1"
        names = [f.pattern_name for f in PIIScanner().scan(text)]
        assert names == ["email", "phone", "ssn", "ip_address"]

    def test_redact(self):
        scanner = PIIScanner()
        text = "card 4111 1111 1111 1111 please"
        assert scanner.redact(text, scanner.scan(text)) == "card [REDACTED_CREDIT_CARD] please"

    def test_clean_text(self):
        assert PIIScanner().scan("nothing to see here") == []


class TestPIIRedactionPlugin:
    @pytest.mark.asyncio
    async def test_redacts_before_send(self, manager, conversation):
        await manager.register_plugin(PIIRedactionPlugin())
        message = _user("reach me at jane@example.com")

        result = await manager.on_before_send(message, conversation)

        assert result.proceed
        assert result.message.content == "reach me at [REDACTED_EMAIL]"
        assert result.message.id == message.id
        assert result.metadata["pii_findings"] == ["email"]
        assert conversation.plugin_data["pii_findings"] == ["email"]

    @pytest.mark.asyncio
    async def test_block_action_cancels(self, settings, conversation):
        from chatspace.plugins.manager import PluginManager

        settings.plugin_config = {"pii-redaction": {"action": "block"}}
        manager = PluginManager(settings)
        await manager.register_plugin(PIIRedactionPlugin())

        result = await manager.on_before_send(_user("SSN 123-45-6789"), conversation)

        assert not result.proceed
        assert result.cancelled_by == "pii-redaction"
        assert "ssn" in result.cancel_reason

    @pytest.mark.asyncio
    async def test_block_action_only_redacts_responses(self, conversation):
        plugin = PIIRedactionPlugin()
        await plugin.initialize(PluginContext("pii-redaction", {"action": "block"}))

        result = await plugin.on_after_receive(_assistant("SSN 123-45-6789"), conversation)

        assert result.proceed
        assert result.message.content == "SSN [REDACTED_SSN]"

    @pytest.mark.asyncio
    async def test_warn_action_passes_through(self, conversation):
        plugin = PIIRedactionPlugin()
        await plugin.initialize(PluginContext("pii-redaction", {"action": "warn"}))

        result = await plugin.on_before_send(_user("jane@example.com"), conversation)

        assert result.proceed
        assert result.message is None
        assert result.metadata == {"pii_findings": ["email"]}

    @pytest.mark.asyncio
    async def test_disabled_patterns_and_response_scanning(self, conversation):
        plugin = PIIRedactionPlugin()
        await plugin.initialize(
            PluginContext(
                "pii-redaction",
                {"disabled_patterns": ["email"], "scan_responses": False},
            )
        )

        before = await plugin.on_before_send(_user("jane@example.com"), conversation)
        after = await plugin.on_after_receive(_assistant("SSN 123-45-6789"), conversation)

        assert before.message is None
        assert after.message is None


# ------------------------------------------------------------------ #
# UI plugins
# ------------------------------------------------------------------ #


class TestMessageActions:
    def test_user_message_buttons(self):
        buttons = MessageActionsPlugin().get_message_actions(_user("hi"))
        assert [b.id for b in buttons] == ["copy", "edit", "share", "delete"]

    def test_assistant_message_buttons(self):
        buttons = MessageActionsPlugin().get_message_actions(_assistant("hello"))
        assert [b.id for b in buttons] == ["copy", "regenerate", "share", "delete"]
        assert buttons[-1].context == {"confirm": "true"}

    @pytest.mark.asyncio
    async def test_hidden_buttons(self):
        plugin = MessageActionsPlugin()
        await plugin.initialize(
            PluginContext(
                "message-actions",
                {"show_share_button": False, "show_delete_button": False},
            )
        )

        buttons = plugin.get_message_actions(_assistant("hello"))
        assert [b.id for b in buttons] == ["copy", "regenerate"]

    def test_settings_schema(self):
        schema = MessageActionsPlugin().get_settings_schema()
        keys = [f.key for f in schema.fields]
        assert "show_copy_button" in keys
        assert keys[-1] == "confirm_delete"


class TestMessageRating:
    def test_no_buttons_on_user_messages(self):
        assert MessageRatingPlugin().get_message_actions(_user("hi")) == []

    def test_current_rating_highlighted(self):
        up, down = MessageRatingPlugin().get_message_actions(_assistant("ok", rating=1))
        assert up.color == "Success"
        assert down.color == "Default"

    def test_schema_to_dict(self):
        data = MessageRatingPlugin().get_settings_schema().to_dict()
        assert data["fields"][0]["options"] == ("thumbs", "stars")


class TestCodeCopy:
    def test_extract_code_blocks(self):
        content = "Try:\n```python\nprint(1)\n```\nand\n```\nls\n```"
        assert extract_code_blocks(content) == ["print(1)", "ls"]

    def test_button_only_with_code(self):
        plugin = CodeCopyPlugin()
        assert plugin.get_message_actions(_assistant("no code")) == []

        message = _assistant("```js\nx()\n```")
        (button,) = plugin.get_message_actions(message)
        assert button.id == "copy-all-code"
        assert button.context["code"] == "x()"
        assert button.context["messageId"] == str(message.id)

    def test_ignores_user_messages(self):
        assert CodeCopyPlugin().get_message_actions(_user("```\nx\n```")) == []


@pytest.mark.asyncio
async def test_builtin_ui_plugins_aggregate_in_order(manager):
    for plugin in (MessageActionsPlugin(), MessageRatingPlugin(), CodeCopyPlugin()):
        await manager.register_plugin(plugin)

    message = Message(
        role=MessageRole.ASSISTANT,
        content="```\nx\n```",
        conversation_id=uuid.uuid4(),
    )
    ids = [a.id for a in manager.get_message_actions(message)]

    assert ids == [
        "copy",
        "regenerate",
        "share",
        "delete",
        "thumbs-up",
        "thumbs-down",
        "copy-all-code",
    ]
    assert set(manager.get_all_plugin_settings()) == {"message-actions", "message-rating", "code-copy"}
