"""
OpenAI-compatible adapter (delta_json family).

Serves every provider that speaks /chat/completions with SSE deltas:
- OpenAI
- DeepSeek (reasoning_content deltas from R1)
- Groq

Reasoning-only models (o1*) differ in three ways: no temperature/top_p,
max_completion_tokens instead of max_tokens, and no system role (the
instruction is folded into the first user turn).
Image generation (dall-e-3) goes through /images/generations.
"""

from __future__ import annotations

import json
import logging
from typing import AsyncIterator

from omnichat.backends.base import (
    BaseAdapter,
    GenerationRequest,
    MediaResult,
    StreamChunk,
    error_message_from_response,
    iter_sse_data,
    normalize_history,
)
from omnichat.cancellation import CancellationToken
from omnichat.catalog import ProviderFamily
from omnichat.errors import GenerationError, ProtocolParseError
from omnichat.storage.models import Usage
from omnichat.transport import ResilientTransport

logger = logging.getLogger(__name__)

DEFAULT_BASE_URLS = {
    "OpenAI": "https://api.openai.com/v1",
    "DeepSeek": "https://api.deepseek.com",
    "Groq": "https://api.groq.com/openai/v1",
}

# Providers that report usage on the final chunk when asked
INCLUDE_USAGE = {"OpenAI", "DeepSeek"}

DEFAULT_MAX_TOKENS = 4096
REASONING_MAX_TOKENS = 65536
DONE_SENTINEL = "[DONE]"


class OpenAICompatibleAdapter(BaseAdapter):
    """Adapter for /chat/completions streaming backends."""

    family = ProviderFamily.DELTA_JSON

    def __init__(
        self,
        provider: str,
        transport: ResilientTransport,
        base_url: str = "",
        include_usage: bool | None = None,
        reasoning_max_tokens: int = REASONING_MAX_TOKENS,
        image_size: str = "1024x1024",
    ):
        super().__init__(provider, base_url or DEFAULT_BASE_URLS.get(provider, ""))
        if not self.base_url:
            raise ValueError(f"No base_url configured for provider '{provider}'")
        self.transport = transport
        self.include_usage = provider in INCLUDE_USAGE if include_usage is None else include_usage
        self.reasoning_max_tokens = reasoning_max_tokens
        self.image_size = image_size

    @classmethod
    def from_config(cls, provider: str, transport: ResilientTransport, cfg: dict) -> OpenAICompatibleAdapter:
        return cls(
            provider,
            transport,
            base_url=cfg.get("base_url", ""),
            include_usage=cfg.get("include_usage"),
            reasoning_max_tokens=cfg.get("reasoning_max_tokens", REASONING_MAX_TOKENS),
            image_size=cfg.get("image_size", "1024x1024"),
        )

    def _headers(self, api_key: str) -> dict:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
        }

    # ── Request building ──────────────────────────────────────────────────

    def build_messages(self, request: GenerationRequest) -> list[dict]:
        reasoning_only = request.model.reasoning_only
        turns = [*request.history, ("user", request.new_message)]
        system, turns = normalize_history(turns, request.generation_config.system_prompt)
        if system and reasoning_only:
            # no system role: fold into the first user turn
            _, turns = normalize_history([("user", f"[System Instruction]: {system}"), *turns])
            system = None

        messages: list[dict] = [{"role": "system", "content": system}] if system else []
        messages.extend(
            {"role": "assistant" if role == "model" else "user", "content": content}
            for role, content in turns
        )

        images = request.image_attachments
        if self.provider == "OpenAI" and not reasoning_only and images:
            content = [{"type": "text", "text": messages[-1]["content"]}]
            content.extend({"type": "image_url", "image_url": {"url": a.url}} for a in images)
            messages[-1]["content"] = content
        return messages

    def build_body(self, request: GenerationRequest) -> dict:
        gen = request.generation_config
        body = {
            "model": request.model_id,
            "messages": self.build_messages(request),
            "stream": True,
        }
        if request.model.reasoning_only:
            body["max_completion_tokens"] = gen.max_tokens or self.reasoning_max_tokens
        else:
            body["temperature"] = gen.temperature
            body["max_tokens"] = gen.max_tokens or DEFAULT_MAX_TOKENS
            body["top_p"] = gen.top_p
            if self.include_usage:
                body["stream_options"] = {"include_usage": True}
        return body

    # ── Streaming ─────────────────────────────────────────────────────────

    @staticmethod
    def parse_event(payload: str) -> list[StreamChunk]:
        """Turn one `data:` payload into zero or more chunks."""
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            raise ProtocolParseError(f"Bad stream payload: {payload[:100]}") from e
        if not isinstance(data, dict):
            raise ProtocolParseError(f"Unexpected stream payload: {payload[:100]}")

        chunks: list[StreamChunk] = []
        choices = data.get("choices") or []
        delta = (choices[0].get("delta") or {}) if choices else {}
        if delta.get("content"):
            chunks.append(StreamChunk(text=delta["content"]))
        if delta.get("reasoning_content"):
            chunks.append(StreamChunk(text=f"*Thinking: {delta['reasoning_content']}*\n\n"))
        if data.get("usage"):
            chunks.append(StreamChunk(usage=Usage.from_dict(data["usage"])))
        return chunks

    async def stream(
        self,
        request: GenerationRequest,
        cancel: CancellationToken | None = None,
    ) -> AsyncIterator[StreamChunk]:
        api_key = self._require_key(request)
        response = await self.transport.execute(
            "POST",
            f"{self.base_url}/chat/completions",
            json=self.build_body(request),
            headers=self._headers(api_key),
            stream=True,
        )
        try:
            if response.status_code >= 400:
                await response.aread()
                message = error_message_from_response(response)
                logger.warning("%s %s failed: %s", self.provider, request.model_id, message)
                raise GenerationError(message, status=response.status_code)

            async for payload in iter_sse_data(response):
                if payload == DONE_SENTINEL:
                    return
                try:
                    chunks = self.parse_event(payload)
                except ProtocolParseError as e:
                    logger.warning("%s stream: %s", self.provider, e)
                    continue
                for chunk in chunks:
                    if cancel:
                        cancel.raise_if_cancelled()
                    yield chunk
        finally:
            await response.aclose()

    # ── Image generation ──────────────────────────────────────────────────

    async def generate_media(
        self,
        request: GenerationRequest,
        cancel: CancellationToken | None = None,
    ) -> MediaResult:
        if not request.model.is_image_generator:
            return await super().generate_media(request, cancel)
        api_key = self._require_key(request)
        response = await self.transport.execute(
            "POST",
            f"{self.base_url}/images/generations",
            json={
                "model": request.model_id,
                "prompt": request.new_message,
                "n": 1,
                "size": self.image_size,
            },
            headers=self._headers(api_key),
        )
        if response.status_code >= 400:
            raise GenerationError(error_message_from_response(response), status=response.status_code)

        data = response.json()
        if data.get("error"):
            raise GenerationError(data["error"].get("message", "Image generation failed"))
        try:
            url = data["data"][0]["url"]
        except (KeyError, IndexError, TypeError) as e:
            raise GenerationError("No image returned") from e
        logger.info("%s generated image for %s", self.provider, request.model_id)
        return MediaResult(kind="image", url=url)
