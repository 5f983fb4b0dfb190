"""
aiohttp transport for exchange REST calls.
Retries connection errors, 429 and 5xx with exponential backoff; other statuses fail at once.
"""

from __future__ import annotations

import asyncio

import aiohttp

from kline_backfill.core.errors import FetchError
from kline_backfill.core.logging import get_logger
from kline_backfill.exchanges.base import RestTransport

logger = get_logger(__name__)

_RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class AiohttpTransport(RestTransport):
    """
    Shared-session HTTP GET.

    Usage:
        async with AiohttpTransport(timeout_seconds=30) as transport:
            body = await transport.fetch(url)
    """

    def __init__(
        self,
        timeout_seconds: float = 30.0,
        retry_attempts: int = 3,
        retry_backoff_seconds: float = 1.0,
        connection_limit: int = 10,
    ) -> None:
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._retry_attempts = retry_attempts
        self._retry_backoff_seconds = retry_backoff_seconds
        self._connection_limit = connection_limit
        self._session: aiohttp.ClientSession | None = None

    # ── Context Manager ────────────────────────────────────────────────────────

    async def __aenter__(self) -> "AiohttpTransport":
        await self.connect()
        return self

    async def __aexit__(self, *_) -> None:
        await self.disconnect()

    # ── Lifecycle ──────────────────────────────────────────────────────────────

    async def connect(self) -> None:
        self._session = aiohttp.ClientSession(
            timeout=self._timeout,
            connector=aiohttp.TCPConnector(limit=self._connection_limit),
            headers={"Accept": "application/json"},
        )
        logger.info("HTTP transport connected", limit=self._connection_limit)

    async def disconnect(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None
            logger.info("HTTP transport disconnected")

    # ── REST Core ─────────────────────────────────────────────────────────────

    async def fetch(self, url: str) -> bytes:
        session = self._session
        if session is None:
            raise RuntimeError("Transport not initialized. Call connect() first.")

        for attempt in range(self._retry_attempts):
            last_attempt = attempt == self._retry_attempts - 1
            try:
                async with session.get(url) as resp:
                    if 200 <= resp.status < 300:
                        return await resp.read()
                    if resp.status not in _RETRYABLE_STATUS or last_attempt:
                        raise FetchError(f"Unexpected response status: {resp.status}", url=url, status=resp.status)
                    reason = f"status {resp.status}"
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                if last_attempt:
                    raise FetchError(f"Request failed: {exc!r}", url=url) from exc
                reason = repr(exc)

            wait = self._retry_backoff_seconds * (2 ** attempt)
            logger.warning("GET retry", url=url, attempt=attempt, wait=wait, reason=reason)
            await asyncio.sleep(wait)

        # Only reachable with retry_attempts < 1
        raise FetchError("No request attempted", url=url)
