"""Token usage tracker: the process-wide ledger of LLM token consumption.

The usage history is an append-only log; the aggregate snapshot is
recomputed from it after every mutation and published to subscribers.
Readers only ever see complete, immutable snapshots.
"""

from __future__ import annotations

import threading
from typing import Callable

import structlog

from lotus.core.tokens.usage import AggregatedTokenUsage, TokenUsage, aggregate_usage

logger = structlog.get_logger()

UsageListener = Callable[[AggregatedTokenUsage], None]


class TokenUsageTracker:
    """Thread-safe record of token usage, aggregated by model and conversation."""

    _instance: TokenUsageTracker | None = None
    _instance_lock = threading.Lock()

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._history: list[TokenUsage] = []
        self._aggregated = AggregatedTokenUsage()
        self._listeners: list[UsageListener] = []

    @classmethod
    def get_instance(cls) -> TokenUsageTracker:
        """Get the process-wide tracker, created on first access.

        Intended for the composition root; components receive the tracker
        through their constructors.
        """
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    # --- Observation ---

    @property
    def aggregated_usage(self) -> AggregatedTokenUsage:
        """Latest published aggregate snapshot."""
        return self._aggregated

    def subscribe(self, listener: UsageListener) -> Callable[[], None]:
        """Call ``listener`` with every new snapshot. Returns an unsubscribe function."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def get_conversation_usage(self, conversation_id: str) -> TokenUsage:
        """Aggregate for one conversation, or an all-zero usage if none recorded."""
        return self._aggregated.by_conversation.get(conversation_id) or TokenUsage.empty()

    def get_usage_history(self) -> list[TokenUsage]:
        """Copy of all recorded usages, oldest first."""
        with self._lock:
            return list(self._history)

    # --- Mutation ---

    def record_usage(self, usage: TokenUsage) -> None:
        """Append a usage record and publish the new aggregate."""
        with self._lock:
            self._history.append(usage)
            snapshot = self._publish()

        logger.debug(
            "token_usage_recorded",
            model=usage.model_name,
            conversation_id=usage.conversation_id,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            total_tokens=snapshot.total_tokens,
        )

    def clear(self) -> None:
        """Drop all usage data."""
        with self._lock:
            self._history.clear()
            self._publish()

    def clear_conversation(self, conversation_id: str) -> None:
        """Drop the usage records of one conversation."""
        with self._lock:
            self._history = [u for u in self._history if u.conversation_id != conversation_id]
            self._publish()

    def _publish(self) -> AggregatedTokenUsage:
        """Recompute the snapshot from history. Caller holds the lock."""
        snapshot = aggregate_usage(self._history)
        self._aggregated = snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.warning("token_usage_listener_failed", error=str(e))
        return snapshot
