"""
Cooperative cancellation for in-flight generations.

One token is shared by every model task of a turn. Adapters check it
between chunks; the orchestrator checks it before starting network work.
"""

from __future__ import annotations

import asyncio

from omnichat.errors import GenerationCancelled


class CancellationToken:
    """Flag that can be set once and awaited."""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason = ""

    def cancel(self, reason: str = "") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise GenerationCancelled(self.reason or "Generation cancelled")

    async def wait(self) -> None:
        await self._event.wait()
