"""
Exchange-facing data model and capability interfaces.
Transports and parsers implement these contracts; the pipeline depends on nothing else.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from kline_backfill.core.errors import ConfigError, FetchError


# ── Interval table ────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class IntervalSpec:
    name: str          # exchange interval, e.g. "HOUR_1"
    timeframe: str     # canonical label, e.g. "1h"
    duration_ms: int


INTERVALS: dict[str, IntervalSpec] = {
    spec.name: spec
    for spec in (
        IntervalSpec("MINUTE_5", "5m", 5 * 60 * 1000),
        IntervalSpec("MINUTE_15", "15m", 15 * 60 * 1000),
        IntervalSpec("HOUR_1", "1h", 60 * 60 * 1000),
        IntervalSpec("DAY_1", "1d", 24 * 60 * 60 * 1000),
    )
}


def interval_spec(interval: str) -> IntervalSpec:
    try:
        return INTERVALS[interval]
    except KeyError:
        raise ConfigError(
            f"Unknown interval: {interval}", interval=interval, known=sorted(INTERVALS)
        ) from None


# ── Data Models ───────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class RequestDescriptor:
    pair: str
    interval: str
    window_start: int        # Unix ms, inclusive
    window_end: int          # Unix ms, inclusive
    url: str


@dataclass
class VolumeSplit:
    buy_base: float
    sell_base: float
    buy_quote: float
    sell_quote: float


@dataclass
class Kline:
    pair: str
    timeframe: str
    open: float
    high: float
    low: float
    close: float
    period_start_utc: int    # Unix ms
    volume: VolumeSplit

    def as_tuple(self) -> tuple:
        """Positional layout of a klines_* space tuple."""
        return (
            self.pair, self.timeframe,
            self.open, self.high, self.low, self.close,
            self.period_start_utc,
            self.volume.buy_base, self.volume.sell_base,
            self.volume.buy_quote, self.volume.sell_quote,
        )


@dataclass
class FetchResult:
    descriptor: RequestDescriptor
    payload: list[list[Any]] | None = None
    error: FetchError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


# ── Capabilities ──────────────────────────────────────────────────────────────

class RestTransport(ABC):
    """One HTTP GET per call."""

    @abstractmethod
    async def fetch(self, url: str) -> bytes:
        """Return the raw response body. Raises FetchError on failure."""


class KlineParser(ABC):
    """Turns one exchange payload into canonical klines."""

    @abstractmethod
    def parse(self, pair: str, interval: str, rows: list[list[Any]]) -> list[Kline]:
        """Raises ParseError if any row is malformed."""
