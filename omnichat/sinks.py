"""
Message sinks — where a conversation's messages live.

Two interchangeable implementations of one contract:

  EphemeralSink  in-process, insertion-ordered, gone when the session ends
  DurableSink    writes through to SQLiteStore; readers see updates via
                 the store's own subscriptions

The orchestrator only ever sees MessageSink. make_sink() is the single
place that looks at the conversation mode.
"""

from __future__ import annotations

import abc
import logging
from dataclasses import replace
from typing import Callable

from omnichat.storage.models import ConversationMode, Message
from omnichat.storage.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)

EPHEMERAL_CONVERSATION_ID = "temp"


class MessageSink(abc.ABC):
    """Write side of a conversation."""

    conversation_id: str = ""

    @abc.abstractmethod
    async def create_placeholder(self, message: Message) -> None:
        """Write a new message row. Model replies start here with thinking=True."""
        ...

    @abc.abstractmethod
    async def update(self, message_id: str, **fields) -> None:
        """Apply a partial update to an existing message. Unknown ids are ignored."""
        ...

    @abc.abstractmethod
    def messages(self) -> list[Message]:
        """Current messages in order."""
        ...

    async def set_title(self, title: str) -> None:
        """Name the conversation. Sinks without titles ignore this."""
        return None


class EphemeralSink(MessageSink):
    """In-memory sink for temporary chats."""

    def __init__(self):
        self.conversation_id = EPHEMERAL_CONVERSATION_ID
        self._messages: dict[str, Message] = {}
        self._listeners: list[Callable[[list[Message]], None]] = []

    async def create_placeholder(self, message: Message) -> None:
        message.conversation_id = self.conversation_id
        self._messages[message.id] = message
        self._publish()

    async def update(self, message_id: str, **fields) -> None:
        current = self._messages.get(message_id)
        if current is None:
            logger.warning("Ephemeral update for unknown message %s ignored", message_id)
            return
        self._messages[message_id] = replace(current, **fields)
        self._publish()

    def messages(self) -> list[Message]:
        return list(self._messages.values())

    def subscribe(self, callback: Callable[[list[Message]], None]) -> Callable[[], None]:
        """Receive a snapshot after every write. Returns an unsubscribe function."""
        self._listeners.append(callback)
        callback(self.messages())

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def clear(self) -> None:
        self._messages.clear()
        self._publish()

    def _publish(self):
        if not self._listeners:
            return
        snapshot = self.messages()
        for callback in list(self._listeners):
            try:
                callback(snapshot)
            except Exception as e:
                logger.error("Ephemeral subscriber failed: %s", e)


class DurableSink(MessageSink):
    """Sink that writes through to persisted storage."""

    def __init__(self, store: SQLiteStore, conversation_id: str):
        self.store = store
        self.conversation_id = conversation_id

    async def create_placeholder(self, message: Message) -> None:
        self.store.create_message(self.conversation_id, message)

    async def update(self, message_id: str, **fields) -> None:
        if not self.store.update_message(self.conversation_id, message_id, fields):
            logger.warning(
                "Durable update for unknown message %s in %s ignored",
                message_id, self.conversation_id,
            )

    def messages(self) -> list[Message]:
        return self.store.get_conversation(self.conversation_id)

    async def set_title(self, title: str) -> None:
        self.store.set_title(self.conversation_id, title)

    def subscribe(self, callback: Callable[[list[Message]], None]) -> Callable[[], None]:
        return self.store.subscribe_messages(self.conversation_id, callback)


def make_sink(mode: ConversationMode, store: SQLiteStore | None = None) -> MessageSink:
    """Pick the sink for a conversation mode."""
    if mode.is_ephemeral:
        return EphemeralSink()
    if store is None:
        raise ValueError("Durable conversations need a store")
    return DurableSink(store, mode.conversation_id)
