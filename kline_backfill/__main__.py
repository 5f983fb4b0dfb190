"""
Entry point for running the kline backfill.
Usage:
    python -m kline_backfill
    python -m kline_backfill --pairs BTC_USDT --intervals HOUR_1 --start-time 1704067200000
"""

from kline_backfill.app import cli

if __name__ == "__main__":
    cli()
