"""
Base adapter abstraction.
Every provider family implements this interface so the orchestrator can
consume any backend as one stream of StreamChunk values.
"""

from __future__ import annotations

import abc
import json
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator

import httpx

from omnichat.cancellation import CancellationToken
from omnichat.catalog import ModelInfo, ProviderFamily
from omnichat.errors import GenerationError, MissingCredentialError
from omnichat.storage.models import Attachment, Usage

logger = logging.getLogger(__name__)

MODEL_ROLES = {"assistant", "model"}


@dataclass
class GenerationConfig:
    """
    Sampling settings for one turn.
    max_tokens=None lets each backend apply its own default.
    """
    temperature: float = 0.7
    top_p: float = 1.0
    max_tokens: int | None = None
    system_prompt: str | None = None

    @classmethod
    def from_dict(cls, data: dict | None) -> GenerationConfig:
        data = data or {}
        max_tokens = data.get("max_tokens")
        return cls(
            temperature=float(data.get("temperature", 0.7)),
            top_p=float(data.get("top_p", 1.0)),
            max_tokens=int(max_tokens) if max_tokens else None,
            system_prompt=data.get("system_prompt") or None,
        )


@dataclass(frozen=True)
class GenerationRequest:
    """Everything an adapter needs for one model on one turn."""
    model: ModelInfo
    history: tuple[tuple[str, str], ...]
    new_message: str
    attachments: tuple[Attachment, ...] = ()
    api_key: str = ""
    generation_config: GenerationConfig = field(default_factory=GenerationConfig)
    force_grounding: bool = False

    @property
    def model_id(self) -> str:
        return self.model.id

    @property
    def provider(self) -> str:
        return self.model.provider

    @property
    def family(self) -> ProviderFamily:
        return self.model.family

    @property
    def image_attachments(self) -> list[Attachment]:
        return [a for a in self.attachments if a.type == "image"]


@dataclass
class StreamChunk:
    """One normalized unit of streamed output. Every field is optional."""
    text: str | None = None
    grounding_metadata: dict | None = None
    usage: Usage | None = None
    error: str | None = None


@dataclass
class MediaResult:
    kind: str   # "image" or "video"
    url: str


def normalize_history(
    history,
    system_prompt: str | None = None,
) -> tuple[str | None, list[tuple[str, str]]]:
    """
    Shape raw (role, content) turns for backends that want strict alternation.

    - "assistant"/"model" become "model", anything else but "system" is "user"
    - system turns are hoisted into one system instruction
    - adjacent turns with the same role are merged with a blank line

    Returns (system_instruction, turns).
    """
    system_parts: list[str] = [system_prompt] if system_prompt else []
    turns: list[tuple[str, str]] = []

    for role, content in history:
        if role == "system":
            system_parts.append(content)
            continue
        role = "model" if role in MODEL_ROLES else "user"
        if turns and turns[-1][0] == role:
            turns[-1] = (role, f"{turns[-1][1]}\n\n{content}")
        else:
            turns.append((role, content))

    system_instruction = "\n".join(system_parts) if system_parts else None
    return system_instruction, turns


def error_message_from_response(response: httpx.Response) -> str:
    """Pull a readable message out of a failed backend response."""
    try:
        body = response.json()
    except ValueError:
        return f"Status {response.status_code}"
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return error["message"]
        if isinstance(error, str) and error:
            return error
    return json.dumps(body)


async def iter_sse_data(response: httpx.Response) -> AsyncIterator[str]:
    """Yield the payload of every `data: ` line of a server-sent event stream."""
    async for line in response.aiter_lines():
        line = line.strip()
        if line.startswith("data:"):
            yield line[5:].strip()


class BaseAdapter(abc.ABC):
    """
    Abstract base for provider adapters.
    One instance per provider; requests carry everything model-specific.
    """

    family: ProviderFamily

    def __init__(self, provider: str, base_url: str = ""):
        self.provider = provider
        self.base_url = base_url.rstrip("/")

    @abc.abstractmethod
    def stream(
        self,
        request: GenerationRequest,
        cancel: CancellationToken | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """
        Stream one generation as normalized chunks.
        Finite and not restartable; failures are raised, not yielded.
        """
        ...

    async def generate_media(
        self,
        request: GenerationRequest,
        cancel: CancellationToken | None = None,
    ) -> MediaResult:
        """Produce an image or video reference. Only media-capable adapters override this."""
        raise GenerationError(f"{request.model_id} does not support media generation")

    async def aclose(self):
        """Release adapter-owned resources."""
        return None

    def _require_key(self, request: GenerationRequest) -> str:
        if not request.api_key:
            raise MissingCredentialError(self.provider)
        return request.api_key

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} provider={self.provider!r} url={self.base_url!r}>"
