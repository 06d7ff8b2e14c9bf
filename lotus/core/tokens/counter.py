"""Token counting: pluggable estimators used for context budgeting.

Two implementations:
- FallbackTokenCounter: word-count heuristic (words / 0.75), always available.
- TiktokenTokenCounter: BPE-exact counts via tiktoken, falling back to the
  heuristic when the encoding cannot be loaded or fails on some input.

Counts are estimates for planning; they are not billing-accurate for
providers whose tokenizer differs from the chosen encoding.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Iterable

import structlog
import tiktoken

from lotus.config import LLMProvider, TokenizerConfig

logger = structlog.get_logger()

# Heuristic: ~0.75 words per token for English text
_WORDS_PER_TOKEN = 0.75

DEFAULT_ENCODING = "cl100k_base"


class TokenCounter(ABC):
    """Interface for estimating the token count of text."""

    @abstractmethod
    def estimate_tokens(self, text: str) -> int:
        """Return the estimated token count for ``text`` (0 for blank input)."""

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Model this counter is configured for."""

    def estimate_total(self, texts: Iterable[str]) -> int:
        """Sum of per-item estimates."""
        return sum(self.estimate_tokens(t) for t in texts)

    def __call__(self, text: str) -> int:
        return self.estimate_tokens(text)


class FallbackTokenCounter(TokenCounter):
    """Word-count heuristic, the universal fallback."""

    def __init__(self, model_name: str = "unknown") -> None:
        self._model_name = model_name

    @property
    def model_name(self) -> str:
        return self._model_name

    def estimate_tokens(self, text: str) -> int:
        if not text or text.isspace():
            return 0
        return int(len(text.split()) / _WORDS_PER_TOKEN)


class TiktokenTokenCounter(TokenCounter):
    """Token counter backed by a tiktoken encoding.

    The encoding for ``model_name`` is tried first, then ``encoding``.
    Initialization never raises: if the encoding cannot be loaded (e.g. the
    BPE file cannot be fetched), every call is answered by the word heuristic.
    """

    def __init__(self, model_name: str, encoding: str = DEFAULT_ENCODING) -> None:
        self._model_name = model_name
        self._fallback = FallbackTokenCounter(model_name)
        self._encoding: Any = self._load_encoding(model_name, encoding)

    @staticmethod
    def _load_encoding(model_name: str, encoding: str) -> Any:
        try:
            return tiktoken.encoding_for_model(model_name.split("/")[-1])
        except KeyError:
            pass  # Unknown model name, use the configured encoding
        except Exception as e:
            logger.debug("tokenizer_model_lookup_failed", model=model_name, error=str(e))

        try:
            return tiktoken.get_encoding(encoding)
        except Exception as e:
            logger.warning(
                "tokenizer_fallback", model=model_name, encoding=encoding, error=str(e),
            )
            return None

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def is_precise(self) -> bool:
        """True when a tiktoken encoding is in use."""
        return self._encoding is not None

    def estimate_tokens(self, text: str) -> int:
        if not text or text.isspace():
            return 0
        if self._encoding is None:
            return self._fallback.estimate_tokens(text)
        try:
            return len(self._encoding.encode(text, disallowed_special=()))
        except Exception as e:
            logger.debug("tokenizer_encode_failed", model=self._model_name, error=str(e))
            return self._fallback.estimate_tokens(text)


def create_token_counter(
    model_name: str,
    provider: LLMProvider | None = None,
    config: TokenizerConfig | None = None,
) -> TokenCounter:
    """Create the preferred token counter for a model.

    All providers share the tiktoken path (cl100k_base is a reasonable
    approximation for Claude, DeepSeek and Gemini); ``use_tiktoken=False``
    selects the heuristic.
    """
    config = config or TokenizerConfig()
    if not config.use_tiktoken:
        return FallbackTokenCounter(model_name)

    counter = TiktokenTokenCounter(model_name, encoding=config.encoding)
    logger.debug(
        "token_counter_created",
        model=model_name,
        provider=provider.value if provider else None,
        precise=counter.is_precise,
    )
    return counter
