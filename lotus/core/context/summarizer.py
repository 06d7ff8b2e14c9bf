"""Conversation summarizer: compress chat history into a bounded summary.

Per call:
1. No messages -> explanatory empty result, no AI call.
2. Select content within ``max_context_tokens``; nothing fits -> empty
   result, no AI call.
3. Render a role-labelled transcript behind the configured system prompt.
4. One single-shot AI call; the reply and its token usage become the result.

Client failures propagate to the caller unchanged; retries belong to the client.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Sequence

import structlog

from lotus.config import SummarizationConfig
from lotus.core.context.selection import ContentSelectionStrategy, strategy_for
from lotus.core.tokens.counter import TokenCounter
from lotus.core.tokens.tracker import TokenUsageTracker
from lotus.core.tokens.usage import TokenUsage
from lotus.core.types import Message

if TYPE_CHECKING:
    from lotus.core.client import AIClient

logger = structlog.get_logger()

NO_MESSAGES_SUMMARY = "No messages to summarize"
NOTHING_SELECTED_SUMMARY = "Unable to select messages within token limit"
NOT_AVAILABLE_SUMMARY = "Summarization not available - AI not configured"


@dataclass(frozen=True)
class SummarizationResult:
    """Summary text plus bookkeeping about what went into it."""

    summary: str
    token_usage: TokenUsage | None = None
    messages_included: int = 0
    original_token_count: int = 0
    summary_token_count: int | None = 0


class ConversationSummarizer(ABC):
    """Capability for summarizing a conversation."""

    @abstractmethod
    async def summarize(
        self,
        messages: Sequence[Message],
        config: SummarizationConfig | None = None,
        conversation_id: str | None = None,
    ) -> SummarizationResult:
        """Summarize ``messages`` according to ``config``."""

    @abstractmethod
    def is_ready(self) -> bool:
        """Whether summaries are produced by a live model."""


class AIConversationSummarizer(ConversationSummarizer):
    """Summarizer backed by an AI client."""

    def __init__(
        self,
        client: AIClient,
        token_counter: TokenCounter,
        tracker: TokenUsageTracker | None = None,
        strategy: ContentSelectionStrategy | None = None,
    ) -> None:
        self._client = client
        self._counter = token_counter
        self._tracker = tracker
        self._strategy = strategy  # None = derived from config per call

    def is_ready(self) -> bool:
        return self._client.is_configured()

    async def summarize(
        self,
        messages: Sequence[Message],
        config: SummarizationConfig | None = None,
        conversation_id: str | None = None,
    ) -> SummarizationResult:
        config = config or SummarizationConfig()

        if not messages:
            return SummarizationResult(summary=NO_MESSAGES_SUMMARY)

        strategy = self._strategy or strategy_for(config.prioritize_user_messages)
        selected = strategy.select_messages(messages, config.max_context_tokens, self._counter)

        if selected.is_empty:
            logger.info(
                "summarization_nothing_selected",
                messages=len(messages),
                budget=config.max_context_tokens,
            )
            return SummarizationResult(
                summary=NOTHING_SELECTED_SUMMARY,
                original_token_count=selected.total_tokens,
                summary_token_count=None,
            )

        prompt = build_summarization_prompt(selected.messages, config)
        result = await self._client.send_message(prompt)

        usage = result.token_usage
        if usage is not None:
            if usage.conversation_id is None and conversation_id is not None:
                usage = replace(usage, conversation_id=conversation_id)
            if self._tracker is not None:
                self._tracker.record_usage(usage)

        summary_tokens = self._counter.estimate_tokens(result.content)
        logger.info(
            "conversation_summarized",
            conversation_id=conversation_id,
            messages_included=len(selected.messages),
            original_tokens=selected.total_tokens,
            summary_tokens=summary_tokens,
        )

        return SummarizationResult(
            summary=result.content,
            token_usage=usage,
            messages_included=len(selected.messages),
            original_token_count=selected.total_tokens,
            summary_token_count=summary_tokens,
        )


class NoOpConversationSummarizer(ConversationSummarizer):
    """Placeholder used when no AI client is configured. Performs no I/O."""

    def is_ready(self) -> bool:
        return False

    async def summarize(
        self,
        messages: Sequence[Message],
        config: SummarizationConfig | None = None,
        conversation_id: str | None = None,
    ) -> SummarizationResult:
        return SummarizationResult(
            summary=NOT_AVAILABLE_SUMMARY,
            messages_included=len(messages),
        )


def build_summarization_prompt(
    messages: Sequence[Message], config: SummarizationConfig
) -> str:
    """Render the summarization prompt for the selected messages."""
    transcript = "\n\n".join(
        f"{'User' if m.is_user else 'Assistant'}: {m.content}" for m in messages
    )
    return (
        f"{config.system_prompt}\n\n"
        "Please summarize the following conversation:\n\n"
        f"{transcript}\n\n"
        "Provide a concise summary that captures the main points and key information "
        f"in no more than about {config.max_summary_tokens} tokens."
    )


def create_summarizer(
    client: AIClient | None,
    token_counter: TokenCounter,
    tracker: TokenUsageTracker | None = None,
    strategy: ContentSelectionStrategy | None = None,
) -> ConversationSummarizer:
    """AI-backed summarizer when a configured client exists, else the no-op one."""
    if client is None or not client.is_configured():
        logger.debug("summarizer_noop_selected")
        return NoOpConversationSummarizer()
    return AIConversationSummarizer(client, token_counter, tracker=tracker, strategy=strategy)
