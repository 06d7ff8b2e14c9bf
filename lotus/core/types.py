"""Shared data types for the Lotus chat core."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import uuid4

if TYPE_CHECKING:
    from lotus.core.tokens.usage import TokenUsage


class Role(str, Enum):
    """Message role in conversation."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Message:
    """A single message in the conversation.

    Immutable: a streaming reply is replaced by a new snapshot on each
    update (see ``with_content``), never edited in place.
    """

    role: Role
    content: str
    id: str = field(default_factory=lambda: str(uuid4()))
    author: str = ""  # Display name, empty = derived from role
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    is_streaming: bool = False

    @property
    def is_user(self) -> bool:
        return self.role == Role.USER

    @property
    def is_system(self) -> bool:
        return self.role == Role.SYSTEM

    def with_content(self, content: str, *, is_streaming: bool | None = None) -> Message:
        """Return a new snapshot with the given content."""
        streaming = self.is_streaming if is_streaming is None else is_streaming
        return replace(self, content=content, is_streaming=streaming)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "author": self.author,
            "timestamp": self.timestamp.isoformat(),
            "is_streaming": self.is_streaming,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Message:
        """Parse a message produced by ``to_dict``.

        Raises KeyError / ValueError on malformed input.
        """
        return cls(
            role=Role(raw["role"]),
            content=raw["content"],
            id=raw["id"],
            author=raw.get("author", ""),
            timestamp=datetime.fromisoformat(raw["timestamp"]),
            is_streaming=bool(raw.get("is_streaming", False)),
        )

    def to_litellm(self) -> dict[str, Any]:
        """Convert to LiteLLM-compatible message dict."""
        return {"role": self.role.value, "content": self.content}


@dataclass(frozen=True)
class AIMessageResult:
    """Response from a single-shot AI client call."""

    content: str
    token_usage: TokenUsage | None = None
