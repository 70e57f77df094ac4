"""
SQLite storage for durable conversations.
This is the persistence collaborator behind the durable sink: every
message row, every streamed update, every model.

Readers subscribe per conversation and receive a fresh snapshot after
each write, so writers never have to notify anyone themselves.
"""

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable
from uuid import uuid4

from omnichat.storage.models import Message, Usage

logger = logging.getLogger(__name__)

CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS conversations (
    id TEXT PRIMARY KEY,
    created_at TEXT NOT NULL,
    title TEXT DEFAULT 'New Conversation',
    model TEXT DEFAULT ''
);

CREATE TABLE IF NOT EXISTS messages (
    id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL,
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    model TEXT DEFAULT '',
    timestamp TEXT NOT NULL,
    attachments TEXT DEFAULT '[]',
    thinking INTEGER DEFAULT 0,
    error INTEGER DEFAULT 0,
    usage TEXT DEFAULT NULL,
    latency_ms REAL DEFAULT NULL,
    grounding_refs TEXT DEFAULT '[]',
    image_url TEXT DEFAULT NULL,
    video_url TEXT DEFAULT NULL,
    FOREIGN KEY (conversation_id) REFERENCES conversations(id)
);

CREATE INDEX IF NOT EXISTS idx_messages_conversation
    ON messages(conversation_id);
CREATE INDEX IF NOT EXISTS idx_messages_timestamp
    ON messages(timestamp);
"""

# Columns stored as JSON text
_JSON_COLUMNS = {"attachments", "usage", "grounding_refs"}
_BOOL_COLUMNS = {"thinking", "error"}
_UPDATABLE = {
    "role", "content", "model", "attachments", "thinking", "error",
    "usage", "latency_ms", "grounding_refs", "image_url", "video_url",
}

MessageCallback = Callable[[list[Message]], None]


def _encode(column: str, value):
    if column in _JSON_COLUMNS:
        if value is None:
            return None
        if isinstance(value, Usage):
            value = asdict(value)
        elif isinstance(value, list):
            value = [asdict(v) if is_dataclass(v) else v for v in value]
        return json.dumps(value)
    if column in _BOOL_COLUMNS:
        return int(bool(value))
    return value


def _row_to_message(row: sqlite3.Row) -> Message:
    data = dict(row)
    for column in _JSON_COLUMNS:
        raw = data.get(column)
        data[column] = json.loads(raw) if raw else None
    return Message.from_dict(data)


class SQLiteStore:
    """Thread-safe SQLite conversation store with per-conversation subscriptions."""

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._subscribers: dict[str, list[MessageCallback]] = {}
        self._sub_lock = threading.Lock()
        self._init_db()

    def _init_db(self):
        with self._connect() as conn:
            conn.executescript(CREATE_TABLES)
        logger.info("SQLite store initialized at %s", self.db_path)

    @contextmanager
    def _connect(self):
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # ── Conversations ─────────────────────────────────────────────────────

    def create_conversation(self, model: str = "", conversation_id: str | None = None) -> str:
        """Create a conversation record and return its id."""
        conversation_id = conversation_id or uuid4().hex
        self.ensure_conversation(conversation_id, datetime.now(timezone.utc).isoformat(), model)
        return conversation_id

    def ensure_conversation(self, conversation_id: str, created_at: str, model: str = ""):
        """Create conversation record if it doesn't exist."""
        with self._connect() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO conversations (id, created_at, model) VALUES (?, ?, ?)",
                (conversation_id, created_at, model),
            )

    def set_title(self, conversation_id: str, title: str):
        with self._connect() as conn:
            conn.execute(
                "UPDATE conversations SET title = ? WHERE id = ?",
                (title, conversation_id),
            )
        logger.debug("Titled conversation %s: %s", conversation_id, title)

    def get_title(self, conversation_id: str) -> str | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT title FROM conversations WHERE id = ?", (conversation_id,)
            ).fetchone()
        return row["title"] if row else None

    def get_recent_conversations(self, limit: int = 20) -> list[dict]:
        """Get most recent conversations with their message counts."""
        with self._connect() as conn:
            rows = conn.execute(
                """SELECT c.id, c.created_at, c.title, c.model,
                          (SELECT COUNT(*) FROM messages m
                           WHERE m.conversation_id = c.id) as message_count
                   FROM conversations c
                   ORDER BY c.created_at DESC
                   LIMIT ?""",
                (limit,),
            ).fetchall()
        return [dict(r) for r in rows]

    # ── Messages ──────────────────────────────────────────────────────────

    def create_message(self, conversation_id: str, message: Message):
        """Insert a message row. Creates the conversation if needed."""
        self.ensure_conversation(conversation_id, message.timestamp, message.model)
        message.conversation_id = conversation_id
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO messages
                   (id, conversation_id, role, content, model, timestamp, attachments,
                    thinking, error, usage, latency_ms, grounding_refs, image_url, video_url)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    message.id, conversation_id, message.role, message.content,
                    message.model, message.timestamp,
                    _encode("attachments", message.attachments),
                    _encode("thinking", message.thinking),
                    _encode("error", message.error),
                    _encode("usage", message.usage),
                    message.latency_ms,
                    _encode("grounding_refs", message.grounding_refs),
                    message.image_url, message.video_url,
                ),
            )
        logger.debug("Stored message %s (role=%s, conv=%s)", message.id, message.role, conversation_id)
        self._notify(conversation_id)

    def update_message(self, conversation_id: str, message_id: str, fields: dict) -> bool:
        """
        Apply a partial update to one message.
        Returns False if no such message exists in the conversation.
        """
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"Cannot update message fields: {sorted(unknown)}")
        if not fields:
            return True

        columns = list(fields)
        assignments = ", ".join(f"{c} = ?" for c in columns)
        values = [_encode(c, fields[c]) for c in columns]

        with self._connect() as conn:
            cur = conn.execute(
                f"UPDATE messages SET {assignments} WHERE id = ? AND conversation_id = ?",
                (*values, message_id, conversation_id),
            )
            updated = cur.rowcount > 0

        if updated:
            self._notify(conversation_id)
        return updated

    def get_conversation(self, conversation_id: str) -> list[Message]:
        """Retrieve all messages for a conversation in order."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM messages WHERE conversation_id = ? ORDER BY timestamp, rowid",
                (conversation_id,),
            ).fetchall()
        return [_row_to_message(r) for r in rows]

    def get_message(self, conversation_id: str, message_id: str) -> Message | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM messages WHERE id = ? AND conversation_id = ?",
                (message_id, conversation_id),
            ).fetchone()
        return _row_to_message(row) if row else None

    # ── Subscriptions ─────────────────────────────────────────────────────

    def subscribe_messages(self, conversation_id: str, callback: MessageCallback) -> Callable[[], None]:
        """
        Call `callback` with the conversation's messages now and after every write.
        Returns an unsubscribe function.
        """
        with self._sub_lock:
            self._subscribers.setdefault(conversation_id, []).append(callback)
        self._deliver(callback, self.get_conversation(conversation_id))

        def unsubscribe():
            with self._sub_lock:
                callbacks = self._subscribers.get(conversation_id, [])
                if callback in callbacks:
                    callbacks.remove(callback)

        return unsubscribe

    def _notify(self, conversation_id: str):
        with self._sub_lock:
            callbacks = list(self._subscribers.get(conversation_id, []))
        if not callbacks:
            return
        snapshot = self.get_conversation(conversation_id)
        for callback in callbacks:
            self._deliver(callback, snapshot)

    @staticmethod
    def _deliver(callback: MessageCallback, snapshot: list[Message]):
        try:
            callback(snapshot)
        except Exception as e:
            logger.error("Message subscriber failed: %s", e)
