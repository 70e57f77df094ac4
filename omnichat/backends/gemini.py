"""
Gemini adapter (native_session family), built on the google-genai SDK.

Text turns open a chat session seeded with normalized history and stream
the reply. Per-model behaviour comes from catalog flags:

  thinking_budget  → ThinkingConfig instead of max_output_tokens
  search           → Google Search grounding tool (also when forced by /web)
  maps             → Google Maps grounding tool

Media models skip the session:
  image_generation → models.generate_content, returned as a data: URL
  video_generation → models.generate_videos, polled until done
"""

from __future__ import annotations

import asyncio
import base64
import logging
import re
from typing import Any, AsyncIterator, Awaitable, Callable

from google import genai
from google.genai import types

from omnichat.backends.base import (
    BaseAdapter,
    GenerationRequest,
    MediaResult,
    StreamChunk,
    normalize_history,
)
from omnichat.cancellation import CancellationToken
from omnichat.catalog import ProviderFamily
from omnichat.errors import GenerationError, OmniChatError
from omnichat.storage.models import Attachment, Usage
from omnichat.transport import ResilientTransport

logger = logging.getLogger(__name__)

DEFAULT_MAX_OUTPUT_TOKENS = 8192
DEFAULT_TITLE = "New Conversation"
TITLE_PROMPT = (
    "Generate a concise, engaging title (3-6 words) for this chat session based on "
    "the interaction. Avoid generic phrases like 'Conversation with' or 'Chat about'. "
    "Return only the title text.\n\nUser: {user}\nAI: {ai}"
)

_DATA_URL = re.compile(r"^data:([^;]+);base64,(.+)$", re.DOTALL)


def _default_client_factory(api_key: str) -> Any:
    return genai.Client(api_key=api_key)


def _to_plain(value) -> dict | None:
    """SDK pydantic models → plain dicts for storage."""
    if value is None:
        return None
    if hasattr(value, "model_dump"):
        return value.model_dump(exclude_none=True, mode="json")
    if isinstance(value, dict):
        return value
    return dict(vars(value))


def video_aspect_ratio(prompt: str) -> str:
    lowered = prompt.lower()
    return "9:16" if "portrait" in lowered or "9:16" in lowered else "16:9"


class GeminiAdapter(BaseAdapter):
    """Adapter for Google models through genai chat sessions."""

    family = ProviderFamily.NATIVE_SESSION

    def __init__(
        self,
        provider: str = "Google",
        transport: ResilientTransport | None = None,
        client_factory: Callable[[str], Any] | None = None,
        max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
        video_poll_seconds: float = 5.0,
        video_resolution: str = "720p",
        title_model: str = "gemini-3-flash-preview",
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ):
        super().__init__(provider)
        self.transport = transport
        self.client_factory = client_factory or _default_client_factory
        self.max_output_tokens = max_output_tokens
        self.video_poll_seconds = video_poll_seconds
        self.video_resolution = video_resolution
        self.title_model = title_model
        self._sleep = sleep or asyncio.sleep
        self._clients: dict[str, Any] = {}

    @classmethod
    def from_config(cls, provider: str, transport: ResilientTransport, cfg: dict) -> GeminiAdapter:
        return cls(
            provider,
            transport,
            max_output_tokens=cfg.get("max_output_tokens", DEFAULT_MAX_OUTPUT_TOKENS),
            video_poll_seconds=cfg.get("video_poll_seconds", 5.0),
            video_resolution=cfg.get("video_resolution", "720p"),
            title_model=cfg.get("title_model", "gemini-3-flash-preview"),
        )

    def _client(self, api_key: str):
        if api_key not in self._clients:
            self._clients[api_key] = self.client_factory(api_key)
        return self._clients[api_key]

    # ── Request building ──────────────────────────────────────────────────

    def build_config(
        self,
        request: GenerationRequest,
        system_instruction: str | None,
    ) -> types.GenerateContentConfig:
        gen = request.generation_config
        model = request.model
        kwargs: dict[str, Any] = {
            "temperature": gen.temperature,
            "top_p": gen.top_p,
        }
        if model.thinking_budget:
            kwargs["thinking_config"] = types.ThinkingConfig(thinking_budget=model.thinking_budget)
        else:
            kwargs["max_output_tokens"] = gen.max_tokens or self.max_output_tokens

        tools = []
        if model.supports_grounding or request.force_grounding:
            tools.append(types.Tool(google_search=types.GoogleSearch()))
        if model.supports_maps:
            tools.append(types.Tool(google_maps=types.GoogleMaps()))
        if tools:
            kwargs["tools"] = tools
        if system_instruction:
            kwargs["system_instruction"] = system_instruction
        return types.GenerateContentConfig(**kwargs)

    @staticmethod
    def build_history(turns: list[tuple[str, str]]) -> list[types.Content]:
        return [
            types.Content(role=role, parts=[types.Part(text=content)])
            for role, content in turns
        ]

    async def _load_image(self, attachment: Attachment) -> tuple[bytes, str] | None:
        """Image bytes and mime type from a data: URL or a remote URL."""
        match = _DATA_URL.match(attachment.url)
        if match:
            try:
                return base64.b64decode(match.group(2)), match.group(1)
            except ValueError as e:
                logger.warning("Bad data URL on attachment %s: %s", attachment.name, e)
                return None
        if self.transport is None:
            logger.warning("No transport to fetch attachment %s", attachment.url)
            return None
        try:
            response = await self.transport.execute("GET", attachment.url)
        except OmniChatError as e:
            logger.warning("Failed to fetch image %s: %s", attachment.url, e)
            return None
        if response.status_code >= 400:
            logger.warning("Failed to fetch image %s: HTTP %d", attachment.url, response.status_code)
            return None
        mime = attachment.mime_type or response.headers.get("content-type", "").split(";")[0]
        return response.content, mime or "image/jpeg"

    async def build_parts(self, request: GenerationRequest) -> list[types.Part]:
        parts = [types.Part(text=request.new_message)]
        for attachment in request.image_attachments:
            loaded = await self._load_image(attachment)
            if loaded:
                data, mime = loaded
                parts.append(types.Part.from_bytes(data=data, mime_type=mime))
        return parts

    # ── Streaming ─────────────────────────────────────────────────────────

    @staticmethod
    def to_chunk(element) -> StreamChunk:
        """Normalize one streamed SDK response element."""
        grounding = None
        candidates = getattr(element, "candidates", None) or []
        if candidates:
            grounding = _to_plain(getattr(candidates[0], "grounding_metadata", None))

        usage = None
        meta = getattr(element, "usage_metadata", None)
        if meta is not None:
            usage = Usage(
                prompt_tokens=getattr(meta, "prompt_token_count", 0) or 0,
                completion_tokens=getattr(meta, "candidates_token_count", 0) or 0,
                total_tokens=getattr(meta, "total_token_count", 0) or 0,
            )
        return StreamChunk(
            text=getattr(element, "text", None),
            grounding_metadata=grounding,
            usage=usage,
        )

    async def stream(
        self,
        request: GenerationRequest,
        cancel: CancellationToken | None = None,
    ) -> AsyncIterator[StreamChunk]:
        api_key = self._require_key(request)
        system, turns = normalize_history(request.history, request.generation_config.system_prompt)
        client = self._client(api_key)

        chat = client.aio.chats.create(
            model=request.model_id,
            history=self.build_history(turns),
            config=self.build_config(request, system),
        )
        parts = await self.build_parts(request)
        stream = await chat.send_message_stream(parts)
        async for element in stream:
            if cancel:
                cancel.raise_if_cancelled()
            yield self.to_chunk(element)

    # ── Media ─────────────────────────────────────────────────────────────

    async def generate_media(
        self,
        request: GenerationRequest,
        cancel: CancellationToken | None = None,
    ) -> MediaResult:
        if request.model.is_video_generator:
            return await self._generate_video(request, cancel)
        if request.model.is_image_generator:
            return await self._generate_image(request)
        return await super().generate_media(request, cancel)

    async def _generate_image(self, request: GenerationRequest) -> MediaResult:
        client = self._client(self._require_key(request))
        config = types.GenerateContentConfig(
            response_modalities=["TEXT", "IMAGE"],
            image_config=types.ImageConfig(aspect_ratio="1:1"),
        )
        response = await client.aio.models.generate_content(
            model=request.model_id,
            contents=await self.build_parts(request),
            config=config,
        )
        for candidate in response.candidates or []:
            content = candidate.content
            for part in (content.parts if content else None) or []:
                inline = part.inline_data
                if inline and inline.data:
                    encoded = base64.b64encode(inline.data).decode("ascii")
                    mime = inline.mime_type or "image/png"
                    return MediaResult(kind="image", url=f"data:{mime};base64,{encoded}")
        raise GenerationError("No image returned")

    async def _generate_video(
        self,
        request: GenerationRequest,
        cancel: CancellationToken | None,
    ) -> MediaResult:
        api_key = self._require_key(request)
        client = self._client(api_key)

        image = None
        for attachment in request.image_attachments[:1]:
            loaded = await self._load_image(attachment)
            if loaded:
                image = types.Image(image_bytes=loaded[0], mime_type=loaded[1])

        operation = await client.aio.models.generate_videos(
            model=request.model_id,
            prompt=request.new_message,
            image=image,
            config=types.GenerateVideosConfig(
                number_of_videos=1,
                resolution=self.video_resolution,
                aspect_ratio=video_aspect_ratio(request.new_message),
            ),
        )
        while not operation.done:
            if cancel:
                cancel.raise_if_cancelled()
            await self._sleep(self.video_poll_seconds)
            operation = await client.aio.operations.get(operation)

        if operation.error:
            error = operation.error
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise GenerationError(message or "Video generation failed")
        try:
            uri = operation.response.generated_videos[0].video.uri
        except (AttributeError, IndexError, TypeError):
            uri = None
        if not uri:
            raise GenerationError("No video URI returned")

        # Download links need the key appended to be fetchable
        separator = "&" if "?" in uri else "?"
        return MediaResult(kind="video", url=f"{uri}{separator}key={api_key}")

    # ── Titles ────────────────────────────────────────────────────────────

    async def generate_title(self, api_key: str, user_message: str, ai_response: str) -> str:
        """Short title for a conversation; falls back to the default on any failure."""
        try:
            client = self._client(api_key)
            response = await client.aio.models.generate_content(
                model=self.title_model,
                contents=TITLE_PROMPT.format(user=user_message[:1000], ai=ai_response[:1000]),
                config=types.GenerateContentConfig(max_output_tokens=20, temperature=0.7),
            )
            title = (response.text or "").strip().strip('"')
        except Exception as e:
            logger.warning("Title generation failed: %s", e)
            return DEFAULT_TITLE
        return title or DEFAULT_TITLE
