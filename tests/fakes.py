"""
Fakes shared by the dispatch-core tests.

- mock_transport(): ResilientTransport over httpx.MockTransport, recording sleeps
- sse(): encode events as a server-sent event body
- FakeAdapter: scripted chunks per model id, no network
- RecordingSink: EphemeralSink that keeps every update call
"""

import asyncio
import json

import httpx

from omnichat.backends.base import BaseAdapter, StreamChunk
from omnichat.catalog import ProviderFamily
from omnichat.sinks import EphemeralSink
from omnichat.transport import ResilientTransport


class RecordingSleep:
    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float):
        self.calls.append(seconds)


def mock_transport(handler, **kwargs):
    """(transport, sleep) with every request answered by `handler(request)`."""
    sleep = RecordingSleep()
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ResilientTransport(client=client, sleep=sleep, **kwargs), sleep


def sse(*events) -> bytes:
    lines = []
    for event in events:
        payload = event if isinstance(event, str) else json.dumps(event)
        lines.append(f"data: {payload}\n\n")
    return "".join(lines).encode()


class FakeAdapter(BaseAdapter):
    """
    Adapter whose output is scripted per model id.

    Script items: StreamChunk (yielded), Exception (raised), or a
    zero-argument callable (called, e.g. to fire a cancellation token).
    """

    family = ProviderFamily.DELTA_JSON

    def __init__(self, provider="OpenAI", scripts=None, media=None, delay=0.0):
        super().__init__(provider)
        self.scripts = scripts or {}
        self.media = media or {}
        self.delay = delay
        self.requests = []
        self.media_requests = []
        self.active = 0
        self.peak_active = 0
        self.on_start = None

    async def stream(self, request, cancel=None):
        self.requests.append(request)
        if self.on_start:
            self.on_start(request)
        self.active += 1
        self.peak_active = max(self.peak_active, self.active)
        try:
            for item in self.scripts.get(request.model_id, []):
                await asyncio.sleep(self.delay)
                if isinstance(item, Exception):
                    raise item
                if callable(item):
                    item()
                    continue
                if cancel:
                    cancel.raise_if_cancelled()
                yield item
        finally:
            self.active -= 1

    async def generate_media(self, request, cancel=None):
        self.media_requests.append(request)
        result = self.media[request.model_id]
        if isinstance(result, Exception):
            raise result
        return result


def text_chunks(*parts):
    return [StreamChunk(text=p) for p in parts]


class RecordingSink(EphemeralSink):
    """Ephemeral sink that also records every update call in order."""

    def __init__(self):
        super().__init__()
        self.placeholders = []
        self.updates: list[tuple[str, dict]] = []

    async def create_placeholder(self, message):
        self.placeholders.append(message.id)
        await super().create_placeholder(message)

    async def update(self, message_id, **fields):
        self.updates.append((message_id, fields))
        await super().update(message_id, **fields)

    def contents_for(self, message_id):
        return [f["content"] for mid, f in self.updates if mid == message_id and "content" in f]

    def by_model(self, model_id):
        return next(m for m in self.messages() if m.model == model_id and m.role == "model")


