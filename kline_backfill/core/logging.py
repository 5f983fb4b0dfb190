"""
structlog setup for backfill runs.
Events go to stdout for operators and, one JSON object per line, to
logs/backfill.log so window failures can be grepped by kind after a run.
Modules bind a logger with get_logger(__name__).
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import structlog

from kline_backfill.core.config import LOGS_DIR

_QUIET_LOGGERS = ("aiohttp", "asyncio", "asynctnt")

_PRE_CHAIN: list = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
]


def _formatter(*renderers) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *renderers],
        foreign_pre_chain=_PRE_CHAIN,
    )


def _handlers(log_file: Path) -> list[logging.Handler]:
    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(_formatter(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())))

    json_file = logging.FileHandler(log_file, encoding="utf-8")
    json_file.setFormatter(_formatter(
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ))
    return [console, json_file]


def configure_logging(level: str = "INFO", log_file: Path | None = None) -> None:
    if log_file is None:
        LOGS_DIR.mkdir(exist_ok=True)
        log_file = LOGS_DIR / "backfill.log"

    structlog.configure(
        processors=[*_PRE_CHAIN, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger()
    root.handlers.clear()
    for handler in _handlers(log_file):
        root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
