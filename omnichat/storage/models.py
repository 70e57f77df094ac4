"""
Data models for conversation storage.
These define the shape of data flowing through the dispatch core and
into whichever sink (durable or temporary) holds the conversation.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from uuid import uuid4


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Usage:
    """Token accounting reported by a backend."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_dict(cls, data: dict | None) -> Usage | None:
        if not data:
            return None
        return cls(
            prompt_tokens=int(data.get("prompt_tokens", 0) or 0),
            completion_tokens=int(data.get("completion_tokens", 0) or 0),
            total_tokens=int(data.get("total_tokens", 0) or 0),
        )


@dataclass
class Attachment:
    """A file or image sent alongside a user turn."""
    type: str = "image"      # "image" or "file"
    url: str = ""            # data: URL or remote URL
    name: str = ""
    mime_type: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> Attachment:
        return cls(
            type=data.get("type", "image"),
            url=data.get("url", ""),
            name=data.get("name", ""),
            mime_type=data.get("mime_type", ""),
        )


@dataclass
class Message:
    """
    A single message in a conversation.

    The id is assigned before any network call and never changes; every
    streamed update for a model reply targets the same id.
    """
    id: str = field(default_factory=lambda: uuid4().hex)
    conversation_id: str = ""
    role: str = ""           # "user" or "model"
    content: str = ""
    model: str = ""
    timestamp: str = field(default_factory=_now)
    attachments: list[Attachment] = field(default_factory=list)
    thinking: bool = False
    error: bool = False
    usage: Usage | None = None
    latency_ms: float | None = None
    grounding_refs: list[dict] = field(default_factory=list)
    image_url: str | None = None
    video_url: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> Message:
        usage = data.get("usage")
        return cls(
            id=data["id"],
            conversation_id=data.get("conversation_id", ""),
            role=data.get("role", ""),
            content=data.get("content", ""),
            model=data.get("model", ""),
            timestamp=data.get("timestamp") or _now(),
            attachments=[Attachment.from_dict(a) for a in data.get("attachments") or []],
            thinking=bool(data.get("thinking", False)),
            error=bool(data.get("error", False)),
            usage=usage if isinstance(usage, Usage) else Usage.from_dict(usage),
            latency_ms=data.get("latency_ms"),
            grounding_refs=list(data.get("grounding_refs") or []),
            image_url=data.get("image_url"),
            video_url=data.get("video_url"),
        )


@dataclass(frozen=True)
class ConversationMode:
    """
    Where a chat session writes its messages.

    Durable: persisted under conversation_id, visible across reloads.
    Ephemeral: in memory only, discarded when the session ends.
    """
    conversation_id: str | None = None

    @classmethod
    def durable(cls, conversation_id: str) -> ConversationMode:
        if not conversation_id:
            raise ValueError("Durable mode needs a conversation id")
        return cls(conversation_id=conversation_id)

    @classmethod
    def ephemeral(cls) -> ConversationMode:
        return cls(conversation_id=None)

    @property
    def is_ephemeral(self) -> bool:
        return self.conversation_id is None
