"""Token counting and usage accounting.

Counters estimate the size of text, usage records capture what an LLM call
consumed, and the tracker aggregates usage across calls.
"""

from lotus.core.tokens.counter import (
    FallbackTokenCounter,
    TiktokenTokenCounter,
    TokenCounter,
    create_token_counter,
)
from lotus.core.tokens.tracker import TokenUsageTracker
from lotus.core.tokens.usage import AggregatedTokenUsage, TokenUsage, aggregate_usage

__all__ = [
    "AggregatedTokenUsage",
    "FallbackTokenCounter",
    "TiktokenTokenCounter",
    "TokenCounter",
    "TokenUsage",
    "TokenUsageTracker",
    "aggregate_usage",
    "create_token_counter",
]
