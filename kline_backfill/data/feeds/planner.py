"""
Time-window planning for paginated candle requests. Pure arithmetic, no I/O.
"""

from __future__ import annotations

from kline_backfill.core.errors import ConfigError
from kline_backfill.exchanges.base import RequestDescriptor, interval_spec
from kline_backfill.exchanges.poloniex import candles_url

# Max candles per request for Poloniex
BATCH_LIMIT = 500


def plan_windows(
    base_url: str,
    pair: str,
    interval: str,
    start_ms: int,
    now_ms: int,
    limit: int = BATCH_LIMIT,
) -> list[RequestDescriptor]:
    """
    Split [start_ms, now_ms) into contiguous windows of `limit` candles each.
    Window bounds are inclusive; the last window ends at now_ms - 1.
    """
    if limit <= 0:
        raise ConfigError(f"Batch limit must be positive, got {limit}", limit=limit)
    span = interval_spec(interval).duration_ms * limit

    windows = []
    window_start = start_ms
    while window_start < now_ms:
        window_end = min(window_start + span - 1, now_ms - 1)
        windows.append(RequestDescriptor(
            pair=pair,
            interval=interval,
            window_start=window_start,
            window_end=window_end,
            url=candles_url(base_url, pair, interval, window_start, window_end, limit),
        ))
        window_start = window_end + 1
    return windows
