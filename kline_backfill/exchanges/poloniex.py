"""
Poloniex spot candles: URL layout and positional row parser.
Docs: https://api-docs.poloniex.com/spot/api/public/market-data#candles
"""

from __future__ import annotations

import math
from typing import Any
from urllib.parse import urlencode

from kline_backfill.core.errors import ParseError
from kline_backfill.exchanges.base import Kline, KlineParser, VolumeSplit, interval_spec

# ── Row layout ────────────────────────────────────────────────────────────────
# [low, high, open, close, amount, quantity, buyTakerAmount, buyTakerQuantity,
#  tradeCount, ts, weightedAverage, interval, startTime, closeTime]
_LOW, _HIGH, _OPEN, _CLOSE = 0, 1, 2, 3
_QUOTE_TOTAL, _BASE_TOTAL = 4, 5
_QUOTE_BUY, _BASE_BUY = 6, 7
_START_TIME = 12
_ROW_WIDTH = 14


def candles_url(base_url: str, pair: str, interval: str, start_ms: int, end_ms: int, limit: int) -> str:
    query = urlencode({"interval": interval, "startTime": start_ms, "endTime": end_ms, "limit": limit})
    return f"{base_url}/{pair}/candles?{query}"


def _number(row: list[Any], pos: int, idx: int) -> float:
    value = row[pos]
    if isinstance(value, bool):
        raise ParseError(f"Row {idx}: field {pos} is not numeric: {value!r}", row_index=idx)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ParseError(f"Row {idx}: field {pos} is not numeric: {value!r}", row_index=idx) from None
    if not math.isfinite(number):
        raise ParseError(f"Row {idx}: field {pos} is not finite: {value!r}", row_index=idx)
    return number


def _timestamp(row: list[Any], pos: int, idx: int) -> int:
    value = _number(row, pos, idx)
    if not value.is_integer():
        raise ParseError(f"Row {idx}: field {pos} is not an integer timestamp: {row[pos]!r}", row_index=idx)
    return int(value)


class PoloniexKlineParser(KlineParser):
    """Stateless; safe to share across concurrent fetches."""

    def parse(self, pair: str, interval: str, rows: list[list[Any]]) -> list[Kline]:
        timeframe = interval_spec(interval).timeframe
        return [self._parse_row(pair, timeframe, row, idx) for idx, row in enumerate(rows)]

    def _parse_row(self, pair: str, timeframe: str, row: Any, idx: int) -> Kline:
        if not isinstance(row, (list, tuple)) or len(row) != _ROW_WIDTH:
            width = len(row) if isinstance(row, (list, tuple)) else type(row).__name__
            raise ParseError(f"Row {idx}: expected {_ROW_WIDTH} fields, got {width}", row_index=idx)

        total_base = _number(row, _BASE_TOTAL, idx)
        total_quote = _number(row, _QUOTE_TOTAL, idx)
        buy_base = _number(row, _BASE_BUY, idx)
        buy_quote = _number(row, _QUOTE_BUY, idx)

        sell_base = total_base - buy_base
        sell_quote = total_quote - buy_quote
        if min(buy_base, buy_quote, sell_base, sell_quote) < 0:
            raise ParseError(
                f"Row {idx}: volume split is negative "
                f"(base {total_base}/{buy_base}, quote {total_quote}/{buy_quote})",
                row_index=idx,
            )

        return Kline(
            pair=pair,
            timeframe=timeframe,
            open=_number(row, _OPEN, idx),
            high=_number(row, _HIGH, idx),
            low=_number(row, _LOW, idx),
            close=_number(row, _CLOSE, idx),
            period_start_utc=_timestamp(row, _START_TIME, idx),
            volume=VolumeSplit(
                buy_base=buy_base,
                sell_base=sell_base,
                buy_quote=buy_quote,
                sell_quote=sell_quote,
            ),
        )
