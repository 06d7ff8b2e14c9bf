"""Chat memory: the live, bounded message window of an active conversation.

Each added message passes through an eviction policy. Policies never evict
system messages and always return system messages first, followed by the
retained others in their original order.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Callable, Sequence

import structlog

from lotus.config import MemoryConfig
from lotus.core.tokens.counter import TokenCounter
from lotus.core.tokens.usage import TokenUsage
from lotus.core.types import Message

logger = structlog.get_logger()


def _split_system(messages: Sequence[Message]) -> tuple[list[Message], list[Message]]:
    system = [m for m in messages if m.is_system]
    others = [m for m in messages if not m.is_system]
    return system, others


class EvictionPolicy(ABC):
    """Decides which messages stay in the window when a new one arrives."""

    @abstractmethod
    def evict(self, messages: Sequence[Message], new_message: Message) -> list[Message]:
        """Return the window after adding ``new_message`` and evicting."""


class TokenWindowEvictionPolicy(EvictionPolicy):
    """Drop the oldest non-system messages until the window fits ``max_tokens``.

    System messages alone may exceed the budget; they are kept anyway.
    """

    def __init__(self, max_tokens: int, token_counter: Callable[[str], int]) -> None:
        if max_tokens < 0:
            raise ValueError(f"max_tokens must be non-negative, got {max_tokens}")
        self.max_tokens = max_tokens
        self._count = token_counter

    def evict(self, messages: Sequence[Message], new_message: Message) -> list[Message]:
        window = [*messages, new_message]
        total = sum(self._count(m.content) for m in window)
        system, others = _split_system(window)

        dropped = 0
        while total > self.max_tokens and dropped < len(others):
            total -= self._count(others[dropped].content)
            dropped += 1

        if dropped:
            logger.debug("memory_evicted", policy="token", evicted=dropped, tokens=total)
        return system + others[dropped:]


class MessageWindowEvictionPolicy(EvictionPolicy):
    """Keep the most recent ``max_messages`` non-system messages."""

    def __init__(self, max_messages: int) -> None:
        if max_messages < 0:
            raise ValueError(f"max_messages must be non-negative, got {max_messages}")
        self.max_messages = max_messages

    def evict(self, messages: Sequence[Message], new_message: Message) -> list[Message]:
        system, others = _split_system([*messages, new_message])
        excess = len(others) - self.max_messages
        if excess > 0:
            logger.debug("memory_evicted", policy="message", evicted=excess)
            others = others[excess:]
        return system + others


def create_eviction_policy(
    config: MemoryConfig, token_counter: Callable[[str], int]
) -> EvictionPolicy:
    """Build the eviction policy named in the memory config."""
    if config.policy == "token":
        return TokenWindowEvictionPolicy(config.max_tokens, token_counter)
    if config.policy == "message":
        return MessageWindowEvictionPolicy(config.max_messages)
    raise ValueError(f"Unknown eviction policy: {config.policy!r}")


# === Persistence ===


class ChatMemoryStore(ABC):
    """Persistence for memory windows, keyed by memory id (e.g. conversation id)."""

    @abstractmethod
    def get_messages(self, memory_id: str) -> list[Message]: ...

    @abstractmethod
    def update_messages(self, memory_id: str, messages: Sequence[Message]) -> None: ...

    @abstractmethod
    def delete_messages(self, memory_id: str) -> None: ...


class InMemoryChatMemoryStore(ChatMemoryStore):
    """Process-local store, mostly useful for tests and short-lived sessions."""

    def __init__(self) -> None:
        self._windows: dict[str, list[Message]] = {}

    def get_messages(self, memory_id: str) -> list[Message]:
        return list(self._windows.get(memory_id, []))

    def update_messages(self, memory_id: str, messages: Sequence[Message]) -> None:
        self._windows[memory_id] = list(messages)

    def delete_messages(self, memory_id: str) -> None:
        self._windows.pop(memory_id, None)


# === Memory ===


class ChatMemory:
    """Bounded message window guarded by a per-instance lock.

    Concurrent ``add_message`` calls are applied one at a time, so eviction
    always runs against the window left by the previous call.
    """

    def __init__(
        self,
        policy: EvictionPolicy,
        token_counter: TokenCounter,
        store: ChatMemoryStore | None = None,
        memory_id: str | None = None,
    ) -> None:
        if (store is None) != (memory_id is None):
            raise ValueError("store and memory_id must be given together")
        self.policy = policy
        self._counter = token_counter
        self._store = store
        self._memory_id = memory_id
        self._lock = asyncio.Lock()
        self._messages: list[Message] = []
        if store and memory_id:
            self._restore(store.get_messages(memory_id))

    @property
    def memory_id(self) -> str | None:
        return self._memory_id

    async def add_message(self, message: Message) -> None:
        async with self._lock:
            self._messages = self.policy.evict(self._messages, message)
            self._persist()

    def get_messages(self) -> list[Message]:
        """Snapshot of the current window."""
        return list(self._messages)

    async def clear(self) -> None:
        async with self._lock:
            self._messages = []
            if self._store and self._memory_id:
                self._store.delete_messages(self._memory_id)

    def get_current_token_usage(self) -> TokenUsage:
        """Estimated size of the window, reported as input tokens."""
        return TokenUsage(
            input_tokens=self._counter.estimate_total(m.content for m in self._messages),
            output_tokens=0,
            model_name=self._counter.model_name,
            conversation_id=self._memory_id,
        )

    def _restore(self, stored: Sequence[Message]) -> None:
        """Replay a stored window through the policy; its limits may have shrunk."""
        for message in stored:
            self._messages = self.policy.evict(self._messages, message)
        if len(self._messages) != len(stored):
            logger.debug(
                "memory_restored_trimmed",
                memory_id=self._memory_id,
                stored=len(stored),
                kept=len(self._messages),
            )
            self._persist()

    def _persist(self) -> None:
        if self._store and self._memory_id:
            self._store.update_messages(self._memory_id, self._messages)
