"""Content selection: choose which messages fit into a token budget.

Both strategies are greedy and recency-biased. Within a scan, the first
candidate that would overflow the budget ends that scan; older, smaller
candidates behind it are not considered.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Sequence

from lotus.core.tokens.counter import TokenCounter
from lotus.core.types import Message


@dataclass(frozen=True)
class SelectedContent:
    """Messages picked for a context window, in chronological order."""

    messages: list[Message] = field(default_factory=list)
    total_tokens: int = 0
    user_message_count: int = 0
    ai_message_count: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.messages


class _Selection:
    """Accumulator shared by the strategies.

    Candidates are added as ``(index, message)`` pairs, ``index`` being the
    position in the input, so equal timestamps keep their input order.
    """

    def __init__(self, max_tokens: int, token_counter: TokenCounter) -> None:
        self.max_tokens = max_tokens
        self._counter = token_counter
        self._picked: list[tuple[int, Message]] = []
        self.total_tokens = 0
        self.user_count = 0
        self.ai_count = 0

    def try_add(self, index: int, message: Message) -> bool:
        tokens = self._counter.estimate_tokens(message.content)
        if self.total_tokens + tokens > self.max_tokens:
            return False
        self._picked.append((index, message))
        self.total_tokens += tokens
        if message.is_user:
            self.user_count += 1
        else:
            self.ai_count += 1
        return True

    def result(self) -> SelectedContent:
        ordered = sorted(self._picked, key=lambda p: (p[1].timestamp, p[0]))
        return SelectedContent(
            messages=[m for _, m in ordered],
            total_tokens=self.total_tokens,
            user_message_count=self.user_count,
            ai_message_count=self.ai_count,
        )


class ContentSelectionStrategy(ABC):
    """Strategy for picking messages within a token budget."""

    @abstractmethod
    def select_messages(
        self,
        messages: Sequence[Message],
        max_tokens: int,
        token_counter: TokenCounter,
    ) -> SelectedContent:
        """Select messages so that their summed estimate is <= ``max_tokens``."""


def _check_budget(max_tokens: int) -> None:
    if max_tokens < 0:
        raise ValueError(f"max_tokens must be non-negative, got {max_tokens}")


class ContextPreservingStrategy(ContentSelectionStrategy):
    """Default strategy: keep the opening request, then favour the user's turns.

    1. The first user message, if it fits on its own.
    2. Other user messages, newest first.
    3. Assistant (and system) messages, newest first, in the remaining budget.
    4. Result re-sorted chronologically.
    """

    def select_messages(
        self,
        messages: Sequence[Message],
        max_tokens: int,
        token_counter: TokenCounter,
    ) -> SelectedContent:
        _check_budget(max_tokens)
        selection = _Selection(max_tokens, token_counter)
        indexed = list(enumerate(messages))
        if not indexed:
            return selection.result()

        first_user = next((i for i, m in indexed if m.is_user), None)
        if first_user is not None:
            selection.try_add(first_user, messages[first_user])

        user_messages = [(i, m) for i, m in indexed if m.is_user and i != first_user]
        ai_messages = [(i, m) for i, m in indexed if not m.is_user]

        for group in (user_messages, ai_messages):
            for index, msg in reversed(group):
                if not selection.try_add(index, msg):
                    break

        return selection.result()


class RecencyFocusedStrategy(ContentSelectionStrategy):
    """Newest messages first regardless of author."""

    def select_messages(
        self,
        messages: Sequence[Message],
        max_tokens: int,
        token_counter: TokenCounter,
    ) -> SelectedContent:
        _check_budget(max_tokens)
        selection = _Selection(max_tokens, token_counter)

        for index, msg in reversed(list(enumerate(messages))):
            if not selection.try_add(index, msg):
                break

        return selection.result()


def strategy_for(prioritize_user_messages: bool) -> ContentSelectionStrategy:
    """Pick the selection strategy matching a summarization setting."""
    if prioritize_user_messages:
        return ContextPreservingStrategy()
    return RecencyFocusedStrategy()
