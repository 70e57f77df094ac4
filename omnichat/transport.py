"""
Resilient transport — HTTP with retry and exponential backoff.

Retried (transient):
- 429: Rate limited (honours an integer Retry-After header)
- 5xx: Server errors
- Connection failures and timeouts

Returned to the caller untouched (permanent):
- 2xx and every other 4xx; adapters parse error bodies themselves

The transport knows nothing about streaming formats. With stream=True the
body is left unread so the caller can iterate lines and close it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

import httpx

from omnichat.errors import NetworkError, TransientTransportError

logger = logging.getLogger(__name__)


class ResilientTransport:
    """
    Long-lived httpx client with retry/backoff on transient failures.

    One instance is shared by every adapter and connector, so connections
    are pooled across the concurrent model tasks of a turn.
    """

    def __init__(
        self,
        timeout: float = 120,
        max_retries: int = 2,
        initial_backoff_ms: int = 500,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ):
        self.timeout = timeout
        self.max_retries = max_retries
        self.initial_backoff_ms = initial_backoff_ms
        self._client = client
        self._sleep = sleep or asyncio.sleep

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def _is_retryable(status_code: int) -> bool:
        """429 rate limit or any server error."""
        return status_code == 429 or status_code >= 500

    @staticmethod
    def _retry_after_seconds(response: httpx.Response) -> float | None:
        """Integer Retry-After header in seconds, if the backend sent one."""
        value = response.headers.get("Retry-After", "").strip()
        if not value:
            return None
        try:
            return max(0.0, float(int(value)))
        except ValueError:
            # HTTP-date form is not worth parsing; fall back to backoff
            return None

    async def execute(
        self,
        method: str,
        url: str,
        *,
        max_retries: int | None = None,
        initial_backoff_ms: int | None = None,
        stream: bool = False,
        **request_kwargs,
    ) -> httpx.Response:
        """
        Send a request, retrying transient failures.

        Raises:
            TransientTransportError: 429/5xx persisted after every retry.
            NetworkError: the request failed to connect after every retry.
        """
        retries_left = self.max_retries if max_retries is None else max_retries
        backoff = (self.initial_backoff_ms if initial_backoff_ms is None else initial_backoff_ms) / 1000
        client = self._get_client()

        while True:
            try:
                request = client.build_request(method, url, **request_kwargs)
                response = await client.send(request, stream=stream)
            except httpx.TransportError as e:
                if retries_left <= 0:
                    logger.error("%s %s failed after retries: %s", method, url, e)
                    raise NetworkError(f"Network error: {e}") from e
                logger.warning(
                    "%s %s network error, retry in %.1fs (%d left): %s",
                    method, url, backoff, retries_left, e,
                )
                await self._sleep(backoff)
                retries_left -= 1
                backoff *= 2
                continue

            if not self._is_retryable(response.status_code):
                return response

            body = await self._discard(response)
            if retries_left <= 0:
                logger.error(
                    "%s %s exhausted retries (last: HTTP %d)",
                    method, url, response.status_code,
                )
                raise TransientTransportError(
                    response.status_code,
                    f"HTTP {response.status_code}: {body[:200]}" if body else "",
                )

            retry_after = self._retry_after_seconds(response)
            wait = backoff if retry_after is None else retry_after
            logger.warning(
                "%s %s transient %d, retry in %.1fs (%d left)",
                method, url, response.status_code, wait, retries_left,
            )
            await self._sleep(wait)
            retries_left -= 1
            backoff *= 2

    @staticmethod
    async def _discard(response: httpx.Response) -> str:
        """Read and close a response we are not going to hand back."""
        try:
            await response.aread()
            return response.text
        except httpx.HTTPError:
            return ""
        finally:
            await response.aclose()
