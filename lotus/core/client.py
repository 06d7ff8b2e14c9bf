"""AI client: the "send prompt, get completion" capability used by the core.

LiteLLMClient routes every provider (DeepSeek, OpenAI, Claude, Gemini,
Ollama) through LiteLLM. Clients report token usage but do not record it;
whoever owns the usage tracker does that.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Callable

import litellm
import structlog

from lotus.config import LLMConfig, TokenizerConfig
from lotus.core.streaming import StreamingCancellationToken
from lotus.core.tokens.counter import TokenCounter, create_token_counter
from lotus.core.tokens.usage import TokenUsage
from lotus.core.types import AIMessageResult, Message, Role

logger = structlog.get_logger()

# Suppress LiteLLM's verbose logging
litellm.suppress_debug_info = True

ChunkCallback = Callable[[str], None]


class AIClientError(RuntimeError):
    """An AI client call failed (network, auth, rate limit, ...)."""


class AIClientNotConfiguredError(AIClientError):
    """The client was called without the credentials it needs."""


class AIClient(ABC):
    """Capability for talking to a chat model."""

    @property
    @abstractmethod
    def model_name(self) -> str: ...

    @abstractmethod
    async def send_message(self, text: str) -> AIMessageResult:
        """Single-shot completion."""

    @abstractmethod
    async def stream_message(
        self,
        text: str,
        on_chunk: ChunkCallback,
        cancellation_token: StreamingCancellationToken | None = None,
    ) -> TokenUsage | None:
        """Stream a completion, passing each text chunk to ``on_chunk``.

        Stops early (without raising) once ``cancellation_token`` is cancelled.
        """

    @abstractmethod
    def is_configured(self) -> bool: ...


class LiteLLMClient(AIClient):
    """AI client backed by ``litellm.acompletion``."""

    def __init__(
        self,
        config: LLMConfig,
        token_counter: TokenCounter | None = None,
        conversation_id: str | None = None,
    ) -> None:
        self.config = config
        self.conversation_id = conversation_id
        self._counter = token_counter or create_token_counter(
            config.model_name, config.provider, TokenizerConfig()
        )

    @property
    def model_name(self) -> str:
        return self.config.model_name

    def is_configured(self) -> bool:
        if self.config.is_local:
            return True
        key = self.config.get_api_key()
        return bool(key and key.strip())

    def _request_kwargs(self, text: str, stream: bool) -> dict[str, Any]:
        if not self.is_configured():
            raise AIClientNotConfiguredError(
                f"No API key configured for {self.config.provider.value}"
            )

        kwargs: dict[str, Any] = {
            "model": self.config.litellm_model,
            "messages": [Message(role=Role.USER, content=text).to_litellm()],
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
            "timeout": self.config.timeout,
            "stream": stream,
        }
        api_key = self.config.get_api_key()
        if api_key:
            kwargs["api_key"] = api_key
        if self.config.base_url:
            kwargs["api_base"] = self.config.base_url
        return kwargs

    def _usage(self, input_tokens: int, output_tokens: int) -> TokenUsage:
        return TokenUsage(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            model_name=self.model_name,
            conversation_id=self.conversation_id,
        )

    async def send_message(self, text: str) -> AIMessageResult:
        kwargs = self._request_kwargs(text, stream=False)
        input_estimate = self._counter.estimate_tokens(text)

        try:
            logger.debug("model_request", model=kwargs["model"])
            response = await litellm.acompletion(**kwargs)
        except Exception as e:
            raise AIClientError(
                f"Failed to get response from {self.config.provider.value}: {e}"
            ) from e

        choice = response.choices[0] if response.choices else None
        content = (choice.message.content if choice else None) or ""

        # Prefer provider-reported usage, estimate what is missing
        reported = getattr(response, "usage", None)
        prompt_tokens = getattr(reported, "prompt_tokens", None) if reported else None
        completion_tokens = getattr(reported, "completion_tokens", None) if reported else None
        usage = self._usage(
            prompt_tokens if prompt_tokens is not None else input_estimate,
            completion_tokens if completion_tokens is not None
            else self._counter.estimate_tokens(content),
        )
        return AIMessageResult(content=content, token_usage=usage)

    async def stream_message(
        self,
        text: str,
        on_chunk: ChunkCallback,
        cancellation_token: StreamingCancellationToken | None = None,
    ) -> TokenUsage | None:
        kwargs = self._request_kwargs(text, stream=True)
        input_tokens = self._counter.estimate_tokens(text)
        parts: list[str] = []

        try:
            response = await litellm.acompletion(**kwargs)
        except Exception as e:
            raise AIClientError(
                f"Failed to stream response from {self.config.provider.value}: {e}"
            ) from e

        # Errors raised by on_chunk belong to the caller and are not wrapped
        chunks = self._iter_stream(response)
        try:
            async for chunk in chunks:
                if cancellation_token is not None and cancellation_token.check_cancellation():
                    logger.debug("stream_stopped_on_cancel", model=kwargs["model"])
                    break
                delta = chunk.choices[0].delta if chunk.choices else None
                if delta and delta.content:
                    parts.append(delta.content)
                    on_chunk(delta.content)
        finally:
            await chunks.aclose()

        return self._usage(input_tokens, self._counter.estimate_tokens("".join(parts)))

    async def _iter_stream(self, response: Any) -> AsyncIterator[Any]:
        """Yield provider chunks, wrapping transport errors. Closes the response."""
        try:
            async for chunk in response:
                yield chunk
        except Exception as e:
            raise AIClientError(
                f"Failed to stream response from {self.config.provider.value}: {e}"
            ) from e
        finally:
            aclose = getattr(response, "aclose", None)
            if aclose is not None:
                await aclose()


def create_ai_client(
    config: LLMConfig | None,
    token_counter: TokenCounter | None = None,
    conversation_id: str | None = None,
) -> AIClient | None:
    """Create the AI client for the configured provider, or None if none is configured.

    LiteLLM covers every provider in ``LLMProvider``; routing happens through
    ``LLMConfig.litellm_model``.
    """
    if config is None:
        return None
    return LiteLLMClient(config, token_counter=token_counter, conversation_id=conversation_id)
