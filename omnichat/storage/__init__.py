"""Conversation storage: data models and the durable SQLite store."""

from omnichat.storage.models import Attachment, ConversationMode, Message, Usage
from omnichat.storage.sqlite_store import SQLiteStore

__all__ = ["Attachment", "ConversationMode", "Message", "SQLiteStore", "Usage"]
