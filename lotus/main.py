"""Lotus - conversation context & token budget core.

Entry point and composition root.
Usage:
    python -m lotus.main --init                 # Initialize default config
    python -m lotus.main --list                 # List stored conversations
    python -m lotus.main --search QUERY         # Search stored conversations
    python -m lotus.main --summarize ID         # Summarize a stored conversation
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from dataclasses import dataclass
from pathlib import Path

import structlog
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from lotus.config import LotusConfig, get_lotus_home, load_config, save_default_config
from lotus.core.client import AIClient, create_ai_client
from lotus.core.context.summarizer import ConversationSummarizer, create_summarizer
from lotus.core.conversation import ConversationManager
from lotus.core.memory.chat_memory import ChatMemory, create_eviction_policy
from lotus.core.memory.history import ConversationStore
from lotus.core.tokens.counter import TokenCounter, create_token_counter
from lotus.core.tokens.tracker import TokenUsageTracker

logger = structlog.get_logger()
console = Console()


def setup_logging() -> None:
    """Configure structured logging."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer() if sys.stderr.isatty() else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(20),  # INFO level
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def ensure_lotus_home(config: LotusConfig | None = None) -> Path:
    """Ensure the data directory exists."""
    home = Path(config.data_dir) if config and config.data_dir else get_lotus_home()
    home.mkdir(parents=True, exist_ok=True)
    return home


@dataclass
class Services:
    """Everything the surrounding application wires per process."""

    config: LotusConfig
    tracker: TokenUsageTracker
    token_counter: TokenCounter
    client: AIClient | None
    summarizer: ConversationSummarizer
    store: ConversationStore
    manager: ConversationManager


def build_services(
    config: LotusConfig,
    tracker: TokenUsageTracker | None = None,
    client: AIClient | None = None,
) -> Services:
    """Wire the core components.

    The tracker defaults to the process-wide instance; everything below it
    receives it explicitly. ``client`` overrides the configured one.
    """
    tracker = tracker or TokenUsageTracker.get_instance()

    model_name = config.llm.model_name if config.llm else "unknown"
    provider = config.llm.provider if config.llm else None
    counter = create_token_counter(model_name, provider, config.tokenizer)

    if client is None:
        client = create_ai_client(config.llm, token_counter=counter)

    summarizer = create_summarizer(client, counter, tracker=tracker)

    data_dir = ensure_lotus_home(config)
    store = ConversationStore(db_path=str(data_dir / "history.db"))

    memory = ChatMemory(create_eviction_policy(config.memory, counter), counter)
    manager = ConversationManager(
        store=store,
        memory=memory,
        summarizer=summarizer,
        tracker=tracker,
        client=client,
        summarization_config=config.summarization,
    )

    logger.debug(
        "services_built",
        model=model_name,
        client_configured=bool(client and client.is_configured()),
        summarizer_ready=summarizer.is_ready(),
        eviction_policy=config.memory.policy,
    )
    return Services(
        config=config,
        tracker=tracker,
        token_counter=counter,
        client=client,
        summarizer=summarizer,
        store=store,
        manager=manager,
    )


# === CLI commands ===


async def _handle_list(services: Services, query: str | None = None) -> None:
    if query is None:
        conversations = await services.store.list_conversations()
    else:
        conversations = await services.store.search_conversations(query)

    if not conversations:
        console.print("[dim]No conversations found.[/dim]")
        return

    table = Table(title="Conversations")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Title")
    table.add_column("Messages", justify="right")
    table.add_column("Updated")
    table.add_column("Preview", style="dim")
    for c in conversations:
        table.add_row(
            c.id, c.title, str(c.message_count),
            c.updated_at.strftime("%Y-%m-%d %H:%M"), c.preview(),
        )
    console.print(table)


async def _handle_summarize(services: Services, conversation_id: str) -> None:
    if not services.summarizer.is_ready():
        console.print("[yellow]Summarization not available - AI not configured.[/yellow]")
        return

    summary = await services.manager.summarize_conversation(conversation_id)
    if summary is None:
        console.print(f"[red]Conversation not found or empty: {conversation_id}[/red]")
        return

    console.print(Panel(summary, title="Summary", border_style="green"))
    usage = services.tracker.get_conversation_usage(conversation_id)
    console.print(
        f"[dim]Tokens: {usage.input_tokens} in / {usage.output_tokens} out "
        f"({usage.total_tokens} total)[/dim]"
    )


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Lotus - conversation context & token budget core",
        prog="lotus",
    )
    parser.add_argument(
        "--init",
        action="store_true",
        help="Initialize default configuration",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to config file (default: ~/.lotus/config.yaml)",
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="List stored conversations, newest first",
    )
    parser.add_argument(
        "--search",
        type=str,
        default=None,
        metavar="QUERY",
        help="Search stored conversations by title or content",
    )
    parser.add_argument(
        "--summarize",
        type=str,
        default=None,
        metavar="ID",
        help="Summarize a stored conversation",
    )
    args = parser.parse_args()

    setup_logging()

    if args.init:
        config_path = save_default_config(
            Path(args.config) if args.config else None
        )
        print(f"Default config saved to: {config_path}")
        return

    config = load_config(Path(args.config) if args.config else None)
    services = build_services(config)

    try:
        if args.summarize:
            asyncio.run(_handle_summarize(services, args.summarize))
        elif args.search is not None:
            asyncio.run(_handle_list(services, args.search))
        else:  # --list is the default
            asyncio.run(_handle_list(services))
    except KeyboardInterrupt:
        print("\nGoodbye!")


if __name__ == "__main__":
    main()
