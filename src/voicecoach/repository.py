"""SQLite-backed repository for coaching conversations."""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite

MessageRecord = dict[str, Any]


def _normalize_db_timestamp(value: str | None) -> str | None:
    """Convert SQLite timestamp strings to ISO8601 in UTC."""

    if value is None:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return value
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    else:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.isoformat()


class ConversationRepository:
    """Persist conversations and their messages."""

    def __init__(self, database_path: Path):
        self._path = database_path
        self._connection: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open the SQLite connection and ensure tables exist."""

        if self._connection is not None:
            return

        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = await aiosqlite.connect(self._path)
        self._connection.row_factory = aiosqlite.Row
        await self._connection.execute("PRAGMA journal_mode=WAL;")
        await self._connection.execute("PRAGMA foreign_keys=ON;")
        await self._create_schema()

    async def _create_schema(self) -> None:
        assert self._connection is not None
        await self._connection.executescript(
            """
            CREATE TABLE IF NOT EXISTS conversations (
                conversation_id TEXT PRIMARY KEY,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                completed_at DATETIME
            );

            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                conversation_id TEXT NOT NULL
                    REFERENCES conversations(conversation_id) ON DELETE CASCADE,
                role TEXT NOT NULL,
                content TEXT,
                metadata TEXT,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS idx_messages_conversation
                ON messages(conversation_id, id);
            """
        )
        await self._connection.commit()

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None

    async def create_conversation(self) -> str:
        """Insert a new conversation and return its id."""

        conversation_id = str(uuid.uuid4())
        await self.ensure_conversation(conversation_id)
        return conversation_id

    async def ensure_conversation(self, conversation_id: str) -> None:
        """Insert the conversation if it does not already exist."""

        assert self._connection is not None
        await self._connection.execute(
            "INSERT OR IGNORE INTO conversations(conversation_id) VALUES (?)",
            (conversation_id,),
        )
        await self._connection.commit()

    async def conversation_exists(self, conversation_id: str) -> bool:
        assert self._connection is not None
        cursor = await self._connection.execute(
            "SELECT 1 FROM conversations WHERE conversation_id = ? LIMIT 1",
            (conversation_id,),
        )
        row = await cursor.fetchone()
        await cursor.close()
        return row is not None

    async def mark_completed(self, conversation_id: str) -> None:
        """Record that the coaching session reached its end."""

        assert self._connection is not None
        await self._connection.execute(
            """
            UPDATE conversations
            SET completed_at = CURRENT_TIMESTAMP
            WHERE conversation_id = ? AND completed_at IS NULL
            """,
            (conversation_id,),
        )
        await self._connection.commit()

    async def add_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        *,
        metadata: dict[str, Any] | None = None,
    ) -> int:
        """Persist a single chat message and return its row id."""

        assert self._connection is not None
        metadata_json = json.dumps(metadata) if metadata else None
        cursor = await self._connection.execute(
            """
            INSERT INTO messages(conversation_id, role, content, metadata)
            VALUES (?, ?, ?, ?)
            """,
            (conversation_id, role, content, metadata_json),
        )
        await self._connection.commit()
        message_id = cursor.lastrowid
        await cursor.close()
        return int(message_id or 0)

    async def get_messages(self, conversation_id: str) -> list[MessageRecord]:
        """Return conversation messages ordered by insertion."""

        assert self._connection is not None
        cursor = await self._connection.execute(
            """
            SELECT id, role, content, metadata, created_at
            FROM messages
            WHERE conversation_id = ?
            ORDER BY id ASC
            """,
            (conversation_id,),
        )
        rows = await cursor.fetchall()
        await cursor.close()

        messages: list[MessageRecord] = []
        for row in rows:
            message: MessageRecord = {
                "id": row["id"],
                "role": row["role"],
                "content": row["content"],
                "created_at": _normalize_db_timestamp(row["created_at"]),
            }
            if row["metadata"]:
                message["metadata"] = json.loads(row["metadata"])
            messages.append(message)
        return messages


__all__ = ["ConversationRepository", "MessageRecord"]
