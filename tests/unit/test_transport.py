"""
Unit tests for the aiohttp transport retry behaviour.
"""

import asyncio

import aiohttp
import pytest

from kline_backfill.core.errors import FetchError
from kline_backfill.exchanges.http import AiohttpTransport

URL = "https://api.poloniex.com/markets/BTC_USDT/candles?interval=HOUR_1"


class FakeResponse:
    def __init__(self, status, body=b"[]"):
        self.status = status
        self._body = body

    async def read(self):
        return self._body


class FakeRequest:
    def __init__(self, outcome):
        self._outcome = outcome

    async def __aenter__(self):
        if isinstance(self._outcome, BaseException):
            raise self._outcome
        return self._outcome

    async def __aexit__(self, *_):
        return False


class FakeSession:
    """Replays one scripted outcome per GET."""

    def __init__(self, *outcomes):
        self._outcomes = list(outcomes)
        self.urls = []

    def get(self, url):
        self.urls.append(url)
        return FakeRequest(self._outcomes.pop(0))


def make_transport(session, retry_attempts=3):
    transport = AiohttpTransport(retry_attempts=retry_attempts, retry_backoff_seconds=0)
    transport._session = session
    return transport


@pytest.mark.asyncio
async def test_success_returns_raw_body():
    session = FakeSession(FakeResponse(200, b'[["1"]]'))
    body = await make_transport(session).fetch(URL)
    assert body == b'[["1"]]'
    assert session.urls == [URL]


@pytest.mark.asyncio
async def test_retryable_status_then_success():
    session = FakeSession(FakeResponse(429), FakeResponse(503), FakeResponse(200, b"[]"))
    body = await make_transport(session).fetch(URL)
    assert body == b"[]"
    assert len(session.urls) == 3


@pytest.mark.asyncio
async def test_non_retryable_status_fails_immediately():
    session = FakeSession(FakeResponse(400), FakeResponse(200))
    with pytest.raises(FetchError) as exc_info:
        await make_transport(session).fetch(URL)
    assert exc_info.value.status == 400
    assert exc_info.value.url == URL
    assert len(session.urls) == 1


@pytest.mark.asyncio
async def test_retries_exhausted_reports_last_status():
    session = FakeSession(FakeResponse(502), FakeResponse(502))
    with pytest.raises(FetchError) as exc_info:
        await make_transport(session, retry_attempts=2).fetch(URL)
    assert exc_info.value.status == 502
    assert len(session.urls) == 2


@pytest.mark.asyncio
async def test_connection_errors_are_retried_then_wrapped():
    session = FakeSession(
        aiohttp.ClientConnectionError("reset"),
        asyncio.TimeoutError(),
    )
    with pytest.raises(FetchError) as exc_info:
        await make_transport(session, retry_attempts=2).fetch(URL)
    assert exc_info.value.status is None
    assert exc_info.value.kind == "fetch"


@pytest.mark.asyncio
async def test_fetch_before_connect_is_rejected():
    with pytest.raises(RuntimeError):
        await AiohttpTransport().fetch(URL)
