"""
Anthropic Messages adapter (block_delta family).

The stream is a sequence of typed events. Only content_block_delta carries
text; usage arrives in two halves (input tokens on message_start, output
tokens on message_delta) and is emitted once at message_stop.
"""

from __future__ import annotations

import json
import logging
from typing import AsyncIterator

from omnichat.backends.base import (
    BaseAdapter,
    GenerationRequest,
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

DEFAULT_BASE_URL = "https://api.anthropic.com/v1"
ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MAX_TOKENS = 4096


class _UsageAccumulator:
    def __init__(self):
        self.input_tokens = 0
        self.output_tokens = 0
        self.seen = False

    def add(self, usage: dict | None):
        if not usage:
            return
        self.seen = True
        self.input_tokens = usage.get("input_tokens", self.input_tokens) or self.input_tokens
        self.output_tokens = usage.get("output_tokens", self.output_tokens) or self.output_tokens

    def to_usage(self) -> Usage:
        return Usage(
            prompt_tokens=self.input_tokens,
            completion_tokens=self.output_tokens,
            total_tokens=self.input_tokens + self.output_tokens,
        )


class AnthropicAdapter(BaseAdapter):
    """Adapter for the Anthropic /messages streaming API."""

    family = ProviderFamily.BLOCK_DELTA

    def __init__(
        self,
        provider: str,
        transport: ResilientTransport,
        base_url: str = DEFAULT_BASE_URL,
        version: str = ANTHROPIC_VERSION,
    ):
        super().__init__(provider, base_url or DEFAULT_BASE_URL)
        self.transport = transport
        self.version = version

    @classmethod
    def from_config(cls, provider: str, transport: ResilientTransport, cfg: dict) -> AnthropicAdapter:
        return cls(
            provider,
            transport,
            base_url=cfg.get("base_url", DEFAULT_BASE_URL),
            version=cfg.get("version", ANTHROPIC_VERSION),
        )

    def build_body(self, request: GenerationRequest) -> dict:
        gen = request.generation_config
        system, turns = normalize_history(request.history, gen.system_prompt)
        messages = [
            {"role": "assistant" if role == "model" else "user", "content": content}
            for role, content in turns
        ]
        if messages and messages[-1]["role"] == "user":
            messages[-1]["content"] += f"\n\n{request.new_message}"
        else:
            messages.append({"role": "user", "content": request.new_message})

        body = {
            "model": request.model_id,
            "max_tokens": gen.max_tokens or DEFAULT_MAX_TOKENS,
            "temperature": gen.temperature,
            "messages": messages,
            "stream": True,
        }
        if system:
            body["system"] = system
        return body

    @staticmethod
    def parse_event(payload: str) -> dict:
        try:
            event = json.loads(payload)
        except json.JSONDecodeError as e:
            raise ProtocolParseError(f"Bad stream payload: {payload[:100]}") from e
        if not isinstance(event, dict) or "type" not in event:
            raise ProtocolParseError(f"Untyped stream event: {payload[:100]}")
        return event

    async def stream(
        self,
        request: GenerationRequest,
        cancel: CancellationToken | None = None,
    ) -> AsyncIterator[StreamChunk]:
        api_key = self._require_key(request)
        response = await self.transport.execute(
            "POST",
            f"{self.base_url}/messages",
            json=self.build_body(request),
            headers={
                "x-api-key": api_key,
                "anthropic-version": self.version,
                "content-type": "application/json",
            },
            stream=True,
        )
        usage = _UsageAccumulator()
        try:
            if response.status_code >= 400:
                await response.aread()
                message = error_message_from_response(response)
                logger.warning("%s %s failed: %s", self.provider, request.model_id, message)
                raise GenerationError(message, status=response.status_code)

            async for payload in iter_sse_data(response):
                try:
                    event = self.parse_event(payload)
                except ProtocolParseError as e:
                    logger.warning("%s stream: %s", self.provider, e)
                    continue

                kind = event["type"]
                if kind == "message_start":
                    usage.add((event.get("message") or {}).get("usage"))
                elif kind == "content_block_delta":
                    text = (event.get("delta") or {}).get("text")
                    if text:
                        if cancel:
                            cancel.raise_if_cancelled()
                        yield StreamChunk(text=text)
                elif kind == "message_delta":
                    usage.add(event.get("usage"))
                elif kind == "message_stop":
                    if usage.seen:
                        yield StreamChunk(usage=usage.to_usage())
                    return
                elif kind == "error":
                    error = event.get("error") or {}
                    raise GenerationError(error.get("message") or "Anthropic stream error")
        finally:
            await response.aclose()
