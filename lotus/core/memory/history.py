"""Conversation store: SQLite-backed persistent conversation storage.

Stores complete conversations (messages as a JSON payload) for later
retrieval, search and summarization.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Sequence
from uuid import uuid4

import aiosqlite
import structlog

from lotus.config import get_lotus_home
from lotus.core.types import Message

logger = structlog.get_logger()

CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS conversations (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    messages TEXT NOT NULL,
    summary TEXT,
    message_count INTEGER DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_conversations_updated ON conversations(updated_at);
"""


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Conversation:
    """A stored conversation."""

    id: str = field(default_factory=lambda: str(uuid4()))
    title: str = "New Conversation"
    messages: list[Message] = field(default_factory=list)
    summary: str | None = None
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    @property
    def message_count(self) -> int:
        return len(self.messages)

    def preview(self) -> str:
        """First user message (truncated), or the title."""
        first_user = next((m for m in self.messages if m.is_user), None)
        return first_user.content[:50] if first_user else self.title

    def matches(self, query: str) -> bool:
        """Case-insensitive match against title and message content."""
        if not query.strip():
            return False
        needle = query.lower()
        return needle in self.title.lower() or any(
            needle in m.content.lower() for m in self.messages
        )


def _encode_messages(messages: Sequence[Message]) -> str:
    return json.dumps([m.to_dict() for m in messages], ensure_ascii=False)


def _row_to_conversation(row: dict[str, Any]) -> Conversation:
    """Raises json.JSONDecodeError / KeyError / ValueError on corrupt rows."""
    return Conversation(
        id=row["id"],
        title=row["title"],
        messages=[Message.from_dict(raw) for raw in json.loads(row["messages"])],
        summary=row["summary"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


class ConversationStore:
    """Persistent conversation history stored in SQLite."""

    def __init__(self, db_path: str | None = None) -> None:
        self._db_path = db_path or str(get_lotus_home() / "history.db")
        self._initialized = False

    async def _ensure_db(self) -> None:
        """Initialize database tables if needed."""
        if self._initialized:
            return
        async with aiosqlite.connect(self._db_path) as db:
            await db.executescript(CREATE_TABLES_SQL)
            await db.commit()
        self._initialized = True

    async def save_conversation(
        self,
        title: str,
        messages: Sequence[Message] = (),
        conversation_id: str | None = None,
    ) -> Conversation:
        """Create a conversation, or overwrite title and messages of an existing one."""
        await self._ensure_db()

        now = _now()
        conversation = Conversation(
            id=conversation_id or str(uuid4()),
            title=title,
            messages=list(messages),
            created_at=now,
            updated_at=now,
        )

        async with aiosqlite.connect(self._db_path) as db:
            await db.execute(
                """INSERT INTO conversations
                       (id, title, messages, message_count, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                     title = excluded.title,
                     messages = excluded.messages,
                     message_count = excluded.message_count,
                     updated_at = excluded.updated_at""",
                (conversation.id, title, _encode_messages(conversation.messages),
                 conversation.message_count, now.isoformat(), now.isoformat()),
            )
            await db.commit()

        return conversation

    async def update_conversation(
        self, conversation_id: str, messages: Sequence[Message]
    ) -> Conversation | None:
        """Replace the messages of an existing conversation. None if it doesn't exist."""
        await self._ensure_db()

        now = _now().isoformat()
        async with aiosqlite.connect(self._db_path) as db:
            result = await db.execute(
                """UPDATE conversations
                   SET messages = ?, message_count = ?, updated_at = ?
                   WHERE id = ?""",
                (_encode_messages(messages), len(messages), now, conversation_id),
            )
            await db.commit()
            if result.rowcount == 0:
                return None

        return await self.get_conversation(conversation_id)

    async def update_summary(self, conversation_id: str, summary: str) -> bool:
        """Attach a summary to a conversation."""
        await self._ensure_db()

        async with aiosqlite.connect(self._db_path) as db:
            result = await db.execute(
                "UPDATE conversations SET summary = ?, updated_at = ? WHERE id = ?",
                (summary, _now().isoformat(), conversation_id),
            )
            await db.commit()
            return result.rowcount > 0

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        """Load a conversation. Raises on a corrupt record."""
        await self._ensure_db()

        async with aiosqlite.connect(self._db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT * FROM conversations WHERE id = ?", (conversation_id,)
            ) as cursor:
                row = await cursor.fetchone()

        if not row:
            return None
        return _row_to_conversation(dict(row))

    async def list_conversations(self, limit: int | None = None) -> list[Conversation]:
        """List conversations, most recently updated first.

        Records that fail to decode are logged and skipped.
        """
        await self._ensure_db()

        query = "SELECT * FROM conversations ORDER BY updated_at DESC"
        params: list[Any] = []
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        async with aiosqlite.connect(self._db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(query, params) as cursor:
                rows = await cursor.fetchall()

        conversations: list[Conversation] = []
        for row in rows:
            row_dict = dict(row)
            try:
                conversations.append(_row_to_conversation(row_dict))
            except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                logger.warning(
                    "conversation_record_corrupt",
                    conversation_id=row_dict.get("id"),
                    error=str(e),
                )
        return conversations

    async def get_latest_conversation(self) -> Conversation | None:
        latest = await self.list_conversations(limit=1)
        return latest[0] if latest else None

    async def search_conversations(self, query_text: str) -> list[Conversation]:
        """Case-insensitive search over titles and message content."""
        return [c for c in await self.list_conversations() if c.matches(query_text)]

    async def delete_conversation(self, conversation_id: str) -> bool:
        await self._ensure_db()

        async with aiosqlite.connect(self._db_path) as db:
            result = await db.execute("DELETE FROM conversations WHERE id = ?", (conversation_id,))
            await db.commit()
            return result.rowcount > 0

    async def clear_all(self) -> int:
        """Delete every conversation. Returns the number removed."""
        await self._ensure_db()

        async with aiosqlite.connect(self._db_path) as db:
            result = await db.execute("DELETE FROM conversations")
            await db.commit()
            return result.rowcount
