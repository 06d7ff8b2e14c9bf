"""Shared fixtures: deterministic messages, counters and a scripted AI client."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable

import pytest

from lotus.core.client import AIClient, AIClientError, ChunkCallback
from lotus.core.streaming import StreamingCancellationToken
from lotus.core.tokens.counter import FallbackTokenCounter
from lotus.core.tokens.usage import TokenUsage
from lotus.core.types import AIMessageResult, Message, Role

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_message(role: Role, content: str, t: int, msg_id: str | None = None) -> Message:
    """Message stamped ``t`` seconds after BASE_TIME."""
    return Message(
        role=role,
        content=content,
        id=msg_id or f"{role.value}-{t}",
        timestamp=BASE_TIME + timedelta(seconds=t),
    )


class FakeAIClient(AIClient):
    """Scripted client: fixed reply, fixed chunks, optional failure."""

    def __init__(
        self,
        reply: str = "Summary of the conversation.",
        chunks: list[str] | None = None,
        usage: TokenUsage | None = None,
        configured: bool = True,
        error: Exception | None = None,
        after_chunk: Callable[[int], None] | None = None,
    ) -> None:
        self.reply = reply
        self.chunks = chunks if chunks is not None else ["Hello", " world"]
        self.usage = usage if usage is not None else TokenUsage(10, 5, model_name="fake-model")
        self.configured = configured
        self.error = error
        self.after_chunk = after_chunk
        self.sent: list[str] = []
        self.streamed: list[str] = []

    @property
    def model_name(self) -> str:
        return "fake-model"

    def is_configured(self) -> bool:
        return self.configured

    async def send_message(self, text: str) -> AIMessageResult:
        self.sent.append(text)
        if self.error:
            raise self.error
        return AIMessageResult(content=self.reply, token_usage=self.usage)

    async def stream_message(
        self,
        text: str,
        on_chunk: ChunkCallback,
        cancellation_token: StreamingCancellationToken | None = None,
    ) -> TokenUsage | None:
        self.streamed.append(text)
        for i, chunk in enumerate(self.chunks):
            if cancellation_token is not None and cancellation_token.check_cancellation():
                break
            on_chunk(chunk)
            if self.after_chunk:
                self.after_chunk(i)
        if self.error:
            raise self.error
        return self.usage


@pytest.fixture
def counter():
    """Word-heuristic counter: int(words / 0.75)."""
    return FallbackTokenCounter("test-model")


@pytest.fixture
def conversation_messages():
    """Five-turn conversation alternating user and assistant."""
    return [
        make_message(Role.USER, "Hello, can you help me with X?", 1),
        make_message(Role.ASSISTANT, "Sure, X works by configuring the settings file.", 2),
        make_message(Role.USER, "How do I do Y?", 3),
        make_message(Role.ASSISTANT, "For Y you run the build command first.", 4),
        make_message(Role.USER, "Thanks!", 5),
    ]


@pytest.fixture
def failing_client():
    return FakeAIClient(error=AIClientError("rate limited"))
