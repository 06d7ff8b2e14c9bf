"""Conversation manager: runs chat turns and keeps history, memory and usage in sync.

A turn:
1. The user message joins the transcript and the memory window.
2. An empty assistant snapshot (``is_streaming=True``) is appended.
3. The reply is streamed; every chunk replaces the snapshot wholesale.
4. After the stream returns, cancellation is checked. A cancelled turn keeps
   the partial reply as the final content.
5. The finalized reply joins memory, usage is recorded, the transcript is saved.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from typing import Callable, Sequence

import structlog

from lotus.config import SummarizationConfig
from lotus.core.client import AIClient, AIClientError, AIClientNotConfiguredError
from lotus.core.context.summarizer import ConversationSummarizer
from lotus.core.memory.chat_memory import ChatMemory
from lotus.core.memory.history import ConversationStore
from lotus.core.streaming import StreamingCancellationToken, StreamingCancelledError
from lotus.core.tokens.tracker import TokenUsageTracker
from lotus.core.tokens.usage import TokenUsage
from lotus.core.types import Message, Role

logger = structlog.get_logger()

SUMMARY_FAILED_FALLBACK = "Summary unavailable: the conversation could not be summarized."

MessagesListener = Callable[[list[Message]], None]


@dataclass(frozen=True)
class TurnResult:
    """Outcome of one chat turn."""

    message: Message
    token_usage: TokenUsage | None = None
    cancelled: bool = False
    cancel_reason: str | None = None
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


def render_context(messages: Sequence[Message]) -> str:
    """Render a memory window as a role-labelled prompt ending on the assistant's turn."""
    labels = {Role.SYSTEM: "System", Role.USER: "User", Role.ASSISTANT: "Assistant"}
    lines = [f"{labels[m.role]}: {m.content}" for m in messages]
    lines.append("Assistant:")
    return "\n\n".join(lines)


class ConversationManager:
    """Owns the active conversation: transcript, memory window and persistence."""

    def __init__(
        self,
        store: ConversationStore,
        memory: ChatMemory,
        summarizer: ConversationSummarizer,
        tracker: TokenUsageTracker,
        client: AIClient | None = None,
        summarization_config: SummarizationConfig | None = None,
        user_name: str = "You",
        assistant_name: str = "AI",
    ) -> None:
        self.store = store
        self.memory = memory
        self.summarizer = summarizer
        self.tracker = tracker
        self.client = client
        self.summarization_config = summarization_config or SummarizationConfig()
        self.user_name = user_name
        self.assistant_name = assistant_name

        self.conversation_id: str | None = None
        self.title = "Current Conversation"
        self._messages: list[Message] = []
        self._listeners: list[MessagesListener] = []
        self._turn_lock = asyncio.Lock()

    # --- Transcript ---

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    def on_messages_changed(self, listener: MessagesListener) -> None:
        self._listeners.append(listener)

    def _set_messages(self, messages: list[Message]) -> None:
        self._messages = messages
        snapshot = list(messages)
        for listener in self._listeners:
            listener(snapshot)

    def _replace(self, message: Message) -> None:
        self._set_messages([message if m.id == message.id else m for m in self._messages])

    # --- Conversations ---

    async def create_conversation(self, title: str = "New Conversation") -> str:
        conversation = await self.store.save_conversation(title=title)
        await self.switch_to(conversation.id)
        return conversation.id

    async def switch_to(self, conversation_id: str) -> bool:
        """Load a stored conversation and rebuild the memory window from it."""
        conversation = await self.store.get_conversation(conversation_id)
        if conversation is None:
            return False

        async with self._turn_lock:
            self.conversation_id = conversation.id
            self.title = conversation.title
            await self.memory.clear()
            for msg in conversation.messages:
                await self.memory.add_message(msg)
            self._set_messages(list(conversation.messages))

        logger.debug("conversation_switched", conversation_id=conversation_id)
        return True

    async def _save(self) -> None:
        if self.conversation_id is None:
            return
        try:
            await self.store.update_conversation(self.conversation_id, self._messages)
        except Exception as e:
            logger.warning("conversation_save_failed", conversation_id=self.conversation_id, error=str(e))

    # --- Turns ---

    async def send_message(
        self,
        text: str,
        cancellation_token: StreamingCancellationToken | None = None,
    ) -> TurnResult:
        """Run one streamed turn. Turns on the same manager never interleave."""
        if self.client is None or not self.client.is_configured():
            raise AIClientNotConfiguredError(
                "AI is not configured. Please configure an AI provider first."
            )

        async with self._turn_lock:
            return await self._run_turn(text, cancellation_token)

    async def _run_turn(
        self, text: str, token: StreamingCancellationToken | None
    ) -> TurnResult:
        assert self.client is not None

        user_msg = Message(role=Role.USER, content=text, author=self.user_name)
        self._set_messages([*self._messages, user_msg])
        await self.memory.add_message(user_msg)

        prompt = render_context(self.memory.get_messages())
        reply = Message(role=Role.ASSISTANT, content="", author=self.assistant_name, is_streaming=True)
        self._set_messages([*self._messages, reply])

        parts: list[str] = []

        def on_chunk(chunk: str) -> None:
            parts.append(chunk)
            self._replace(reply.with_content("".join(parts)))

        usage: TokenUsage | None = None
        cancelled = False
        cancel_reason: str | None = None
        error: str | None = None

        try:
            usage = await self.client.stream_message(prompt, on_chunk, token)
            if token is not None:
                token.throw_if_cancellation_requested()
        except StreamingCancelledError as e:
            cancelled = True
            cancel_reason = e.reason
            logger.info("turn_cancelled", conversation_id=self.conversation_id, reason=e.reason)
        except AIClientError as e:
            error = str(e)
            logger.warning("turn_failed", conversation_id=self.conversation_id, error=error)
        except asyncio.CancelledError:
            self._replace(reply.with_content("".join(parts), is_streaming=False))
            raise

        if error is not None:
            content = f"Error: {error}. Please check your AI configuration and try again."
        else:
            content = "".join(parts)
        final = reply.with_content(content, is_streaming=False)
        self._replace(final)

        if error is None and content:
            await self.memory.add_message(final)

        if usage is not None:
            if usage.conversation_id is None and self.conversation_id is not None:
                usage = replace(usage, conversation_id=self.conversation_id)
            self.tracker.record_usage(usage)

        await self._save()

        return TurnResult(
            message=final,
            token_usage=usage,
            cancelled=cancelled,
            cancel_reason=cancel_reason,
            error=error,
        )

    # --- Summaries ---

    async def summarize_conversation(self, conversation_id: str | None = None) -> str | None:
        """Summarize a stored conversation and save the summary on it.

        Returns None when summarization is unavailable or there is nothing to
        summarize. Summarizer failures are logged and answered with a fallback
        summary.
        """
        conversation_id = conversation_id or self.conversation_id
        if conversation_id is None or not self.summarizer.is_ready():
            return None

        conversation = await self.store.get_conversation(conversation_id)
        if conversation is None or not conversation.messages:
            return None

        try:
            result = await self.summarizer.summarize(
                conversation.messages,
                self.summarization_config,
                conversation_id=conversation_id,
            )
        except Exception as e:
            logger.warning("summarization_failed", conversation_id=conversation_id, error=str(e))
            return SUMMARY_FAILED_FALLBACK

        await self.store.update_summary(conversation_id, result.summary)
        return result.summary

    def current_token_usage(self) -> TokenUsage:
        return self.memory.get_current_token_usage()
