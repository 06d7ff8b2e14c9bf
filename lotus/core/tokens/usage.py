"""Token usage value types and the pure reducer that aggregates them."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import reduce
from types import MappingProxyType
from typing import Any, Iterable, Mapping


@dataclass(frozen=True)
class TokenUsage:
    """Token consumption of a single LLM interaction.

    ``total_tokens`` is always ``input_tokens + output_tokens``.
    """

    input_tokens: int = 0
    output_tokens: int = 0
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    model_name: str | None = None
    conversation_id: str | None = None

    def __post_init__(self) -> None:
        if self.input_tokens < 0 or self.output_tokens < 0:
            raise ValueError(
                f"Token counts must be non-negative, got "
                f"input={self.input_tokens} output={self.output_tokens}"
            )

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @classmethod
    def empty(cls) -> TokenUsage:
        return cls(0, 0)

    def __add__(self, other: TokenUsage) -> TokenUsage:
        """Sum the counts.

        Keeps the earlier timestamp. For model_name and conversation_id the
        left operand wins when set, so in a left fold the caller-supplied
        (first) record takes precedence over later ones.
        """
        if not isinstance(other, TokenUsage):
            return NotImplemented
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            timestamp=min(self.timestamp, other.timestamp),
            model_name=self.model_name if self.model_name is not None else other.model_name,
            conversation_id=(
                self.conversation_id if self.conversation_id is not None
                else other.conversation_id
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
            "timestamp": self.timestamp.isoformat(),
            "model_name": self.model_name,
            "conversation_id": self.conversation_id,
        }


@dataclass(frozen=True)
class AggregatedTokenUsage:
    """Cumulative usage across interactions, derived from the usage history.

    The breakdown mappings are read-only views; snapshots are shared with
    every reader of the tracker.
    """

    total_input_tokens: int = 0
    total_output_tokens: int = 0
    interaction_count: int = 0
    by_model: Mapping[str, TokenUsage] = field(default_factory=lambda: MappingProxyType({}))
    by_conversation: Mapping[str, TokenUsage] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def total_tokens(self) -> int:
        return self.total_input_tokens + self.total_output_tokens


def _group_sum(history: list[TokenUsage], key: str) -> Mapping[str, TokenUsage]:
    groups: dict[str, list[TokenUsage]] = {}
    for usage in history:
        group = getattr(usage, key)
        if group is not None:
            groups.setdefault(group, []).append(usage)
    return MappingProxyType(
        {name: reduce(lambda acc, u: acc + u, usages) for name, usages in groups.items()}
    )


def aggregate_usage(history: Iterable[TokenUsage]) -> AggregatedTokenUsage:
    """Fold a usage history into an aggregate snapshot.

    Records without a model name / conversation id are counted in the
    totals but left out of the corresponding breakdown.
    """
    records = list(history)
    if not records:
        return AggregatedTokenUsage()

    return AggregatedTokenUsage(
        total_input_tokens=sum(u.input_tokens for u in records),
        total_output_tokens=sum(u.output_tokens for u in records),
        interaction_count=len(records),
        by_model=_group_sum(records, "model_name"),
        by_conversation=_group_sum(records, "conversation_id"),
    )
