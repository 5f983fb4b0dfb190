"""
Historical kline backfill.
Walks [start, now) for every configured pair and interval, fetches windows
concurrently and stores each candle into its pair's Tarantool space.
"""

from __future__ import annotations

import time
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from kline_backfill.core.errors import (
    BackfillAborted, BackfillError, ParseError, StoreError, UnknownDestination,
)
from kline_backfill.core.logging import get_logger
from kline_backfill.data.feeds.dispatcher import FetchDispatcher
from kline_backfill.data.feeds.planner import BATCH_LIMIT, plan_windows
from kline_backfill.data.storage.destinations import DestinationResolver
from kline_backfill.data.storage.writer import KlineWriter
from kline_backfill.exchanges.base import FetchResult, KlineParser, RequestDescriptor

logger = get_logger(__name__)


def utc_now_ms() -> int:
    return int(time.time() * 1000)


# ── Report ────────────────────────────────────────────────────────────────────

class UnitState(str, Enum):
    PLANNED = "planned"
    FETCHING = "fetching"
    PARSING = "parsing"
    STORING = "storing"
    DONE = "done"
    ABORTED = "aborted"


@dataclass
class WindowFailure:
    window_start: int
    window_end: int
    kind: str
    message: str


@dataclass
class UnitReport:
    pair: str
    interval: str
    state: UnitState = UnitState.PLANNED
    windows_planned: int = 0
    windows_succeeded: int = 0
    records_stored: int = 0
    failures: list[WindowFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state == UnitState.DONE and not self.failures

    def failure_kinds(self) -> dict[str, int]:
        return dict(Counter(f.kind for f in self.failures))


@dataclass
class BackfillReport:
    units: list[UnitReport] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(u.ok for u in self.units)

    @property
    def records_stored(self) -> int:
        return sum(u.records_stored for u in self.units)

    @property
    def failed_units(self) -> list[UnitReport]:
        return [u for u in self.units if not u.ok]


# ── Pipeline ──────────────────────────────────────────────────────────────────

class HistoricalBackfill:
    """
    Pair-major, interval-minor backfill.

    Failure policy per window:
      fetch / decode  -> window skipped and reported
      parse           -> payload skipped (nothing from it is stored), reported
      store           -> rest of the payload skipped, reported
      unknown space   -> unit aborted, pending fetches cancelled
    With fail_fast the first failure aborts the run with BackfillAborted.
    """

    def __init__(
        self,
        dispatcher: FetchDispatcher,
        parser: KlineParser,
        resolver: DestinationResolver,
        writer: KlineWriter,
        base_url: str,
        batch_limit: int = BATCH_LIMIT,
        fail_fast: bool = False,
        clock: Callable[[], int] = utc_now_ms,
    ) -> None:
        self._dispatcher = dispatcher
        self._parser = parser
        self._resolver = resolver
        self._writer = writer
        self._base_url = base_url
        self._batch_limit = batch_limit
        self._fail_fast = fail_fast
        self._clock = clock

    async def run(self, pairs: list[str], intervals: list[str], start_ms: int) -> BackfillReport:
        # Discovery failure is fatal: nothing can be stored without it
        await self._resolver.resolve()

        report = BackfillReport()
        logger.info("Backfill started", pairs=pairs, intervals=intervals, start_ms=start_ms)
        for pair in pairs:
            for interval in intervals:
                unit = UnitReport(pair=pair, interval=interval)
                report.units.append(unit)
                try:
                    await self._run_unit(unit, start_ms)
                except BackfillAborted as exc:
                    exc.report = report
                    raise
                finally:
                    self._log_unit(unit)

        logger.info(
            "Backfill finished",
            units=len(report.units),
            failed_units=len(report.failed_units),
            records=report.records_stored,
        )
        return report

    async def _run_unit(self, unit: UnitReport, start_ms: int) -> None:
        descriptors = plan_windows(
            self._base_url, unit.pair, unit.interval, start_ms, self._clock(), self._batch_limit,
        )
        unit.windows_planned = len(descriptors)
        unit.state = UnitState.FETCHING

        results = self._dispatcher.dispatch(descriptors)
        try:
            async for result in results:
                try:
                    await self._consume(unit, result)
                except UnknownDestination as exc:
                    self._fail(unit, result.descriptor, exc)
                    unit.state = UnitState.ABORTED
                    return
                unit.state = UnitState.FETCHING
        finally:
            await results.aclose()
        unit.state = UnitState.DONE

    async def _consume(self, unit: UnitReport, result: FetchResult) -> None:
        descriptor = result.descriptor
        if not result.ok:
            self._fail(unit, descriptor, result.error)
            return

        unit.state = UnitState.PARSING
        try:
            klines = self._parser.parse(unit.pair, unit.interval, result.payload)
        except ParseError as exc:
            self._fail(unit, descriptor, exc)
            return

        unit.state = UnitState.STORING
        for kline in klines:
            try:
                await self._writer.store(kline)
            except StoreError as exc:
                self._fail(unit, descriptor, exc)
                return
            unit.records_stored += 1
        unit.windows_succeeded += 1

    def _fail(self, unit: UnitReport, descriptor: RequestDescriptor, exc: BackfillError) -> None:
        unit.failures.append(WindowFailure(
            window_start=descriptor.window_start,
            window_end=descriptor.window_end,
            kind=exc.kind,
            message=exc.message,
        ))
        logger.error(
            "Window failed",
            pair=unit.pair, interval=unit.interval,
            window_start=descriptor.window_start, window_end=descriptor.window_end,
            **exc.to_payload(),
        )
        if self._fail_fast:
            unit.state = UnitState.ABORTED
            raise BackfillAborted(f"Backfill aborted on {exc.kind} failure", report=None, cause=exc) from exc

    def _log_unit(self, unit: UnitReport) -> None:
        log = logger.info if unit.ok else logger.warning
        log(
            "Backfill unit complete",
            pair=unit.pair,
            interval=unit.interval,
            state=unit.state.value,
            windows=f"{unit.windows_succeeded}/{unit.windows_planned}",
            records=unit.records_stored,
            failures=unit.failure_kinds(),
        )
