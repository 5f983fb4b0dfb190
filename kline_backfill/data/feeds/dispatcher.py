"""
Bounded concurrent fetching of planned windows.

A fixed pool of worker tasks pulls descriptors from a work queue, so at most
`max_concurrency` requests are in flight no matter how fast results are consumed.
Results are yielded in completion order.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator, Iterable

from kline_backfill.core.errors import DecodeError, FetchError
from kline_backfill.core.logging import get_logger
from kline_backfill.exchanges.base import FetchResult, RequestDescriptor, RestTransport

logger = get_logger(__name__)


def decode_rows(body: bytes, url: str | None = None) -> list[list[Any]]:
    """Decode a candles response body into a list of rows."""
    try:
        data = json.loads(body)
    except (UnicodeDecodeError, ValueError) as exc:
        raise DecodeError(f"Response body is not JSON: {exc}", url=url) from exc
    if not isinstance(data, list):
        # Poloniex reports errors as {"code": ..., "message": ...} objects
        raise DecodeError(f"Expected a list of candles, got {type(data).__name__}: {data!r:.200}", url=url)
    for idx, row in enumerate(data):
        if not isinstance(row, list):
            raise DecodeError(f"Row {idx} is not a list: {row!r:.200}", url=url)
    return data


class FetchDispatcher:
    def __init__(self, transport: RestTransport, max_concurrency: int = 10) -> None:
        if max_concurrency <= 0:
            raise ValueError("max_concurrency must be positive")
        self._transport = transport
        self._max_concurrency = max_concurrency

    async def dispatch(self, descriptors: Iterable[RequestDescriptor]) -> AsyncIterator[FetchResult]:
        todo: asyncio.Queue[RequestDescriptor] = asyncio.Queue()
        for descriptor in descriptors:
            todo.put_nowait(descriptor)
        total = todo.qsize()
        if total == 0:
            return

        results: asyncio.Queue[FetchResult | BaseException] = asyncio.Queue(maxsize=self._max_concurrency)
        workers = [
            asyncio.create_task(self._worker(todo, results))
            for _ in range(min(self._max_concurrency, total))
        ]
        try:
            for _ in range(total):
                item = await results.get()
                if isinstance(item, BaseException):
                    raise item
                yield item
        finally:
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)

    async def _worker(
        self,
        todo: asyncio.Queue[RequestDescriptor],
        results: asyncio.Queue[FetchResult | BaseException],
    ) -> None:
        while True:
            try:
                descriptor = todo.get_nowait()
            except asyncio.QueueEmpty:
                return
            try:
                result = await self._fetch_one(descriptor)
            except Exception as exc:
                await results.put(exc)
                return
            await results.put(result)

    async def _fetch_one(self, descriptor: RequestDescriptor) -> FetchResult:
        try:
            body = await self._transport.fetch(descriptor.url)
            rows = decode_rows(body, url=descriptor.url)
        except FetchError as exc:
            logger.warning(
                "Window fetch failed",
                pair=descriptor.pair, interval=descriptor.interval,
                window_start=descriptor.window_start, kind=exc.kind, error=exc.message,
            )
            return FetchResult(descriptor=descriptor, error=exc)
        logger.debug(
            "Fetched window",
            pair=descriptor.pair, interval=descriptor.interval,
            window_start=descriptor.window_start, rows=len(rows),
        )
        return FetchResult(descriptor=descriptor, payload=rows)
