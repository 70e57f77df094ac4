"""
Fan-out orchestrator — one prompt, N models, concurrently.

Per target model, in isolation:
  1. placeholder message (thinking=True) with a fresh id
  2. adapter + API key resolved for the model's provider
  3. stream, accumulating text; every text chunk rewrites the message
  4. terminal update: thinking=False plus latency, usage, grounding refs
  5. on failure: terminal update with error=True and "Error: <text>"

Image and video models skip streaming: one generate_media call, one
terminal update carrying image_url / video_url.

One model's failure never touches its siblings. dispatch() returns once
every message has reached a terminal state.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Sequence

from omnichat.backends.base import GenerationConfig, GenerationRequest
from omnichat.backends.router import AdapterRouter
from omnichat.cancellation import CancellationToken
from omnichat.credentials import CredentialResolver
from omnichat.errors import GenerationCancelled, GenerationError, MissingCredentialError
from omnichat.sinks import MessageSink
from omnichat.storage.models import Attachment, Message, Usage

logger = logging.getLogger(__name__)

CANCELLED_SUFFIX = "\n\n_Generation stopped._"
MEDIA_LABELS = {"image": "Generated Image:", "video": "Generated Video:"}


@dataclass
class DispatchResult:
    """Final state of one model's reply."""
    model_id: str
    message_id: str
    content: str = ""
    error: str | None = None
    cancelled: bool = False
    usage: Usage | None = None
    latency_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None and not self.cancelled


def grounding_refs(metadata: dict | None) -> list[dict]:
    """Source links out of grounding metadata (web search or maps)."""
    refs = []
    for chunk in (metadata or {}).get("grounding_chunks") or []:
        source = chunk.get("web") or chunk.get("maps") or {}
        if source.get("uri"):
            refs.append({"uri": source["uri"], "title": source.get("title", "")})
    return refs


class FanOutOrchestrator:
    """
    Dispatch one turn to several models and write each reply to a sink.

    max_models caps the targets per turn; max_concurrency caps how many
    replies are in network I/O at once.
    """

    def __init__(
        self,
        router: AdapterRouter,
        credentials: CredentialResolver,
        max_models: int = 6,
        max_concurrency: int = 4,
    ):
        self.router = router
        self.credentials = credentials
        self.max_models = max_models
        self.max_concurrency = max_concurrency

    async def dispatch(
        self,
        prompt: str,
        target_models: Sequence[str],
        sink: MessageSink,
        *,
        history: Sequence[tuple[str, str]] = (),
        attachments: Sequence[Attachment] = (),
        generation_config: GenerationConfig | None = None,
        force_grounding: bool = False,
        cancel: CancellationToken | None = None,
    ) -> list[DispatchResult]:
        targets = list(target_models)
        if len(targets) > self.max_models:
            logger.warning(
                "Turn targets %d models, capping at %d", len(targets), self.max_models
            )
            targets = targets[: self.max_models]
        if not targets:
            return []

        placeholders = []
        try:
            for model_id in targets:
                message = Message(role="model", model=model_id, content="", thinking=True)
                await sink.create_placeholder(message)
                placeholders.append(message)
        except Exception as e:
            logger.error("Placeholder write failed after %d of %d: %s", len(placeholders), len(targets), e)
            for message in placeholders:
                await sink.update(
                    message.id,
                    content="Error: Generation was not started.",
                    thinking=False,
                    error=True,
                )
            raise

        semaphore = asyncio.Semaphore(max(1, self.max_concurrency))
        context = dict(
            history=tuple(history),
            attachments=tuple(attachments),
            generation_config=generation_config or GenerationConfig(),
            force_grounding=force_grounding,
            cancel=cancel,
        )
        raw_results = await asyncio.gather(
            *(self._run_model(m.model, m.id, prompt, sink, semaphore, **context) for m in placeholders),
            return_exceptions=True,
        )

        results = []
        for message, result in zip(placeholders, raw_results):
            if isinstance(result, BaseException):
                # Only reachable when the sink itself failed
                logger.error("Model task %s crashed: %s", message.model, result)
                result = DispatchResult(message.model, message.id, error=str(result))
            results.append(result)
        return results

    async def _run_model(
        self,
        model_id: str,
        message_id: str,
        prompt: str,
        sink: MessageSink,
        semaphore: asyncio.Semaphore,
        *,
        history: tuple,
        attachments: tuple,
        generation_config: GenerationConfig,
        force_grounding: bool,
        cancel: CancellationToken | None,
    ) -> DispatchResult:
        t0 = time.monotonic()
        buffer = ""

        def elapsed() -> float:
            return round((time.monotonic() - t0) * 1000, 1)

        try:
            async with semaphore:
                if cancel:
                    cancel.raise_if_cancelled()
                info, adapter = self.router.resolve(model_id)
                api_key = self.credentials.resolve(info.provider)
                if not api_key:
                    raise MissingCredentialError(info.provider)

                request = GenerationRequest(
                    model=info,
                    history=history,
                    new_message=prompt,
                    attachments=attachments,
                    api_key=api_key,
                    generation_config=generation_config,
                    force_grounding=force_grounding,
                )

                if info.is_media_generator:
                    media = await adapter.generate_media(request, cancel)
                    content = MEDIA_LABELS.get(media.kind, "")
                    latency = elapsed()
                    await sink.update(
                        message_id,
                        content=content,
                        thinking=False,
                        latency_ms=latency,
                        **{f"{media.kind}_url": media.url},
                    )
                    logger.info("%s produced %s in %.0fms", model_id, media.kind, latency)
                    return DispatchResult(model_id, message_id, content=content, latency_ms=latency)

                usage = None
                refs: list[dict] = []
                async for chunk in adapter.stream(request, cancel):
                    if chunk.error:
                        raise GenerationError(chunk.error)
                    if chunk.text:
                        buffer += chunk.text
                        await sink.update(message_id, content=buffer)
                    if chunk.usage:
                        usage = chunk.usage
                    for ref in grounding_refs(chunk.grounding_metadata):
                        if ref not in refs:
                            refs.append(ref)

                latency = elapsed()
                await sink.update(
                    message_id,
                    content=buffer,
                    thinking=False,
                    latency_ms=latency,
                    usage=usage,
                    grounding_refs=refs,
                )
                logger.info("%s finished in %.0fms (%d chars)", model_id, latency, len(buffer))
                return DispatchResult(model_id, message_id, content=buffer, usage=usage, latency_ms=latency)

        except GenerationCancelled:
            content = buffer + CANCELLED_SUFFIX
            latency = elapsed()
            await sink.update(message_id, content=content, thinking=False, error=False, latency_ms=latency)
            logger.info("%s stopped after %.0fms", model_id, latency)
            return DispatchResult(model_id, message_id, content=content, cancelled=True, latency_ms=latency)

        except Exception as e:
            text = str(e) or type(e).__name__
            latency = elapsed()
            logger.warning("%s failed: %s", model_id, text)
            await sink.update(
                message_id,
                content=f"Error: {text}",
                thinking=False,
                error=True,
                latency_ms=latency,
            )
            return DispatchResult(model_id, message_id, content=f"Error: {text}", error=text, latency_ms=latency)
