"""Configuration management for the Lotus chat core.

Loads settings from YAML config file with Pydantic validation.
Config file location: ~/.lotus/config.yaml
"""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path

import yaml
from pydantic import BaseModel, Field


# === Default paths ===

def get_lotus_home() -> Path:
    """Get the Lotus data directory (~/.lotus)."""
    return Path(os.environ.get("LOTUS_HOME", Path.home() / ".lotus"))


# === Configuration Models ===


class LLMProvider(str, Enum):
    """Supported LLM providers."""

    DEEPSEEK = "deepseek"
    OPENAI = "openai"
    CLAUDE = "claude"
    GEMINI = "gemini"
    OLLAMA = "ollama"


# LiteLLM route prefix per provider
_LITELLM_PREFIX: dict[LLMProvider, str] = {
    LLMProvider.DEEPSEEK: "deepseek",
    LLMProvider.OPENAI: "openai",
    LLMProvider.CLAUDE: "anthropic",
    LLMProvider.GEMINI: "gemini",
    LLMProvider.OLLAMA: "ollama",
}

_DEFAULT_MODELS: dict[LLMProvider, str] = {
    LLMProvider.DEEPSEEK: "deepseek-chat",
    LLMProvider.OPENAI: "gpt-4o",
    LLMProvider.CLAUDE: "claude-sonnet-4-20250514",
    LLMProvider.GEMINI: "gemini-2.5-pro",
    LLMProvider.OLLAMA: "llama3.1",
}

_DEFAULT_KEY_ENVS: dict[LLMProvider, str | None] = {
    LLMProvider.DEEPSEEK: "DEEPSEEK_API_KEY",
    LLMProvider.OPENAI: "OPENAI_API_KEY",
    LLMProvider.CLAUDE: "ANTHROPIC_API_KEY",
    LLMProvider.GEMINI: "GEMINI_API_KEY",
    LLMProvider.OLLAMA: None,
}


def default_model_for(provider: LLMProvider) -> str:
    """Get the default model name for a provider."""
    return _DEFAULT_MODELS[provider]


class LLMConfig(BaseModel):
    """Configuration for the chat model used by the AI client."""

    provider: LLMProvider = LLMProvider.OPENAI
    api_key_env: str | None = None  # Environment variable name for API key
    api_key: str | None = None  # Direct API key (not recommended)
    model: str | None = None  # None = provider default
    base_url: str | None = None  # Custom base URL (e.g., for Ollama)
    temperature: float = 0.7
    max_tokens: int = 2000
    timeout: float = 60.0  # seconds

    @property
    def model_name(self) -> str:
        return self.model or default_model_for(self.provider)

    @property
    def litellm_model(self) -> str:
        """LiteLLM route, e.g. ``anthropic/claude-sonnet-4-20250514``."""
        name = self.model_name
        prefix = _LITELLM_PREFIX[self.provider]
        if name.startswith(f"{prefix}/"):
            return name
        return f"{prefix}/{name}"

    @property
    def is_local(self) -> bool:
        return self.provider == LLMProvider.OLLAMA

    def get_api_key(self) -> str | None:
        """Resolve API key from env var or direct value."""
        env_name = self.api_key_env or _DEFAULT_KEY_ENVS[self.provider]
        if env_name:
            key = os.environ.get(env_name)
            if key:
                return key
        return self.api_key


DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant that summarizes conversations concisely.\n"
    "Focus on the main topics, key decisions, and important information.\n"
    "Keep the summary clear and organized.\n"
    "Do not include unnecessary details or repetitions."
)


class SummarizationConfig(BaseModel):
    """Conversation summarization settings."""

    max_summary_tokens: int = 500  # Advisory, passed to the prompt only
    max_context_tokens: int = 2000  # Hard budget for content selection
    prioritize_user_messages: bool = True  # False = recency-focused selection
    system_prompt: str = DEFAULT_SYSTEM_PROMPT


class MemoryConfig(BaseModel):
    """Live chat memory window settings."""

    policy: str = "token"  # token | message
    max_tokens: int = 4000
    max_messages: int = 50


class TokenizerConfig(BaseModel):
    """Token counting settings."""

    use_tiktoken: bool = True  # False = word heuristic only
    encoding: str = "cl100k_base"


class LotusConfig(BaseModel):
    """Root configuration for the Lotus chat core."""

    llm: LLMConfig | None = None  # None = no AI client configured
    summarization: SummarizationConfig = Field(default_factory=SummarizationConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    tokenizer: TokenizerConfig = Field(default_factory=TokenizerConfig)
    data_dir: str | None = None  # None = ~/.lotus


# === Config Loading ===


def load_config(config_path: Path | None = None) -> LotusConfig:
    """Load configuration from YAML file.

    Falls back to defaults if the config file doesn't exist.
    """
    if config_path is None:
        config_path = get_lotus_home() / "config.yaml"

    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
        return LotusConfig(**raw)

    return LotusConfig()


def save_default_config(config_path: Path | None = None) -> Path:
    """Save the default configuration to a YAML file.

    Creates parent directories if needed. Returns the path.
    """
    if config_path is None:
        config_path = get_lotus_home() / "config.yaml"

    config_path.parent.mkdir(parents=True, exist_ok=True)

    config = LotusConfig(llm=LLMConfig())
    data = config.model_dump(mode="json")

    with open(config_path, "w", encoding="utf-8") as f:
        yaml.dump(data, f, default_flow_style=False, allow_unicode=True, sort_keys=False)

    return config_path
