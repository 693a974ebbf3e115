"""Per-turn data passed through the interception chain.

- Message: One chat message (immutable; replacements are new objects)
- ConversationContext: Read-only turn context plus the per-pass scratch space
- InterceptResult: What an interceptor (and the whole chain) returns
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import StrEnum
from types import MappingProxyType
from typing import Any


class MessageRole(StrEnum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(frozen=True)
class Message:
    """A message in a conversation."""

    role: MessageRole
    content: str
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    conversation_id: uuid.UUID | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self) -> None:
        object.__setattr__(self, "role", MessageRole(self.role))
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    def with_content(self, content: str) -> Message:
        """Return a copy carrying *content*; id and metadata are kept."""
        return replace(self, content=content)

    def with_metadata(self, **extra: Any) -> Message:
        return replace(self, metadata={**self.metadata, **extra})

    def to_llm_dict(self) -> dict[str, str]:
        """OpenAI-format role/content dict."""
        return {"role": str(self.role), "content": self.content}


@dataclass
class ConversationContext:
    """Context provided to interceptors.

    ``history`` and ``user_settings`` are read-only snapshots. ``plugin_data``
    is a scratch space shared by the interceptors of one pass: the chain
    clears it when a pass starts, and when two interceptors write the same
    key the later one in chain order wins. It is never persisted.
    """

    conversation_id: uuid.UUID
    history: Sequence[Message] = ()
    user_id: str = ""
    workspace_id: str = ""
    user_settings: Mapping[str, Any] = field(default_factory=dict)
    plugin_data: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.history = tuple(self.history)
        self.user_settings = MappingProxyType(dict(self.user_settings))

    def begin_pass(self) -> None:
        """Reset the scratch space for a new interception pass."""
        self.plugin_data.clear()

    def messages_for_llm(self, message: Message) -> list[dict[str, str]]:
        """History plus *message*, in OpenAI format."""
        return [m.to_llm_dict() for m in self.history] + [message.to_llm_dict()]


@dataclass(frozen=True)
class InterceptResult:
    """Result from message interception.

    Attributes:
        proceed: Should processing continue? ``False`` stops the chain.
        message: Replacement message handed to the next interceptor (None = no change)
        cancel_reason: Why processing stopped (only when ``proceed`` is False)
        metadata: Extra data to attach to the turn
        cancelled_by: Set by the chain to the id of the plugin that stopped it
    """

    proceed: bool = True
    message: Message | None = None
    cancel_reason: str | None = None
    metadata: Mapping[str, Any] | None = None
    cancelled_by: str | None = None

    def __post_init__(self) -> None:
        if self.proceed and self.cancel_reason is not None:
            raise ValueError("cancel_reason is only allowed when proceed is False")

    @classmethod
    def cancel(cls, reason: str, **metadata: Any) -> InterceptResult:
        return cls(proceed=False, cancel_reason=reason, metadata=metadata or None)

    @classmethod
    def replace_with(cls, message: Message, **metadata: Any) -> InterceptResult:
        return cls(message=message, metadata=metadata or None)

    @property
    def cancelled(self) -> bool:
        return not self.proceed
