"""
Kline backfill process bootstrap.
Entry point: python -m kline_backfill
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from pathlib import Path

from kline_backfill.core.config import Settings, get_settings
from kline_backfill.core.errors import BackfillAborted, ConfigError, DestinationDiscoveryError
from kline_backfill.core.logging import configure_logging, get_logger
from kline_backfill.data.feeds.dispatcher import FetchDispatcher
from kline_backfill.data.feeds.historical import BackfillReport, HistoricalBackfill
from kline_backfill.data.storage.destinations import DestinationResolver
from kline_backfill.data.storage.schema import Database
from kline_backfill.data.storage.writer import KlineWriter
from kline_backfill.exchanges.base import interval_spec
from kline_backfill.exchanges.http import AiohttpTransport
from kline_backfill.exchanges.poloniex import PoloniexKlineParser

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_CONFIG = 2


class BackfillApp:
    """
    Wires the pipeline from one validated Settings value:
      HTTP transport → Dispatcher → Parser → Writer → Tarantool
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

        self._transport = AiohttpTransport(
            timeout_seconds=settings.request_timeout_seconds,
            retry_attempts=settings.retry_attempts,
            retry_backoff_seconds=settings.retry_backoff_seconds,
            connection_limit=settings.max_concurrency,
        )
        self._db = Database(settings.database)
        self._resolver = DestinationResolver(self._db)
        self._pipeline = HistoricalBackfill(
            dispatcher=FetchDispatcher(self._transport, settings.max_concurrency),
            parser=PoloniexKlineParser(),
            resolver=self._resolver,
            writer=KlineWriter(self._resolver, self._db),
            base_url=settings.base_url,
            batch_limit=settings.batch_limit,
            fail_fast=settings.fail_fast,
        )

    async def run(
        self,
        pairs: list[str] | None = None,
        intervals: list[str] | None = None,
        start_ms: int | None = None,
    ) -> BackfillReport:
        pairs = pairs or self._settings.pairs
        intervals = intervals or self._settings.intervals
        start_ms = self._settings.start_time if start_ms is None else start_ms
        for interval in intervals:
            interval_spec(interval)

        async with self._transport, self._db:
            # Resolve eagerly so a discovery failure stops the run before any fetch
            await self._resolver.resolve()
            return await self._pipeline.run(pairs, intervals, start_ms)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Backfill historical klines into Tarantool")
    parser.add_argument("--config", type=Path, default=None, help="Settings YAML (default config/settings.yaml)")
    parser.add_argument("--pairs", nargs="*", default=[], help="Override pairs from config")
    parser.add_argument("--intervals", nargs="*", default=[], help="Override intervals, e.g. MINUTE_5 HOUR_1")
    parser.add_argument("--start-time", type=int, default=None, help="Override start time (Unix ms)")
    return parser.parse_args(argv)


async def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        settings = Settings(args.config) if args.config else get_settings()
    except ConfigError as exc:
        configure_logging()
        logger.error("Invalid configuration", error=exc.message, **exc.context)
        return EXIT_CONFIG
    configure_logging(settings.log_level)

    loop = asyncio.get_running_loop()
    current = asyncio.current_task()

    def _shutdown(sig: signal.Signals) -> None:
        logger.info("Shutdown signal received", signal=sig.name)
        if current:
            current.cancel()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _shutdown, sig)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler for all signals
            pass

    try:
        report = await BackfillApp(settings).run(
            pairs=args.pairs or None,
            intervals=args.intervals or None,
            start_ms=args.start_time,
        )
    except ConfigError as exc:
        logger.error("Invalid configuration", error=exc.message, **exc.context)
        return EXIT_CONFIG
    except DestinationDiscoveryError as exc:
        logger.error("Destination discovery failed, nothing stored", error=exc.message)
        return EXIT_FAILURES
    except BackfillAborted as exc:
        logger.error("Backfill aborted", cause=exc.cause.kind, error=exc.cause.message)
        return EXIT_FAILURES
    except asyncio.CancelledError:
        logger.warning("Backfill interrupted")
        return EXIT_FAILURES
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(sig)
            except NotImplementedError:
                pass

    for unit in report.failed_units:
        logger.warning(
            "Unit finished with failures",
            pair=unit.pair, interval=unit.interval, state=unit.state.value,
            windows=f"{unit.windows_succeeded}/{unit.windows_planned}",
            failures=unit.failure_kinds(),
        )
    return EXIT_OK if report.ok else EXIT_FAILURES


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
