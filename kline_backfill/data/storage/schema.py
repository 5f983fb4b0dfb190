"""
Tarantool client for kline spaces.
Run scripts/init_tarantool.lua on the instance first to create the
get_spaces() function and one klines_<pair> space per traded pair.
"""

from __future__ import annotations

import asyncio
from typing import Any, Sequence

import asynctnt
from asynctnt.exceptions import TarantoolError

from kline_backfill.core.config import DatabaseSettings
from kline_backfill.core.errors import DestinationDiscoveryError, StoreError
from kline_backfill.core.logging import get_logger

logger = get_logger(__name__)

_DB_ERRORS = (TarantoolError, OSError, asyncio.TimeoutError)
GUEST_USER = "guest"


def _space_rows(body: Sequence[Any]) -> list[Any]:
    """
    A Lua function returning one table arrives as a single-element body;
    a function returning several values (or call_16) arrives flat.
    """
    rows = list(body or [])
    if len(rows) == 1 and isinstance(rows[0], (list, tuple)) and all(
        isinstance(r, (list, tuple)) for r in rows[0]
    ):
        rows = list(rows[0])
    return rows


class Database:
    """
    Async Tarantool client. One connection per process, created by connect()
    and shared by every writer; calls on it are serialized by a lock.
    """

    def __init__(self, settings: DatabaseSettings) -> None:
        self._settings = settings
        self._conn: asynctnt.Connection | None = None
        self._lock = asyncio.Lock()

    async def __aenter__(self) -> "Database":
        await self.connect()
        return self

    async def __aexit__(self, *_) -> None:
        await self.disconnect()

    async def connect(self) -> None:
        if self._conn is not None:
            raise RuntimeError("Database already connected")
        s = self._settings
        # guest without a password is an unauthenticated session; anyone else authenticates
        user = s.username
        anonymous = user == GUEST_USER and not s.password
        conn = asynctnt.Connection(
            host=s.host,
            port=s.port,
            username=None if anonymous else user,
            password=None if anonymous else (s.password or ""),
            connect_timeout=s.connect_timeout,
            reconnect_timeout=0,
        )
        try:
            await conn.connect()
        except _DB_ERRORS as exc:
            raise DestinationDiscoveryError(
                f"Cannot connect to Tarantool at {s.host}:{s.port}: {exc!r}",
                host=s.host, port=s.port,
            ) from exc
        self._conn = conn
        logger.info("Database connected", host=s.host, port=s.port, user=user, authenticated=not anonymous)

    async def disconnect(self) -> None:
        if self._conn:
            await self._conn.disconnect()
            self._conn = None
            logger.info("Database connection closed")

    def _connection(self) -> asynctnt.Connection:
        if self._conn is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._conn

    # ── Spaces ────────────────────────────────────────────────────────────────

    async def list_destinations(self) -> list[tuple[int, str]]:
        """Return (space_id, space_name) for every space on the instance."""
        conn = self._connection()
        func = self._settings.spaces_function
        try:
            async with self._lock:
                response = await conn.call(func)
        except _DB_ERRORS as exc:
            raise DestinationDiscoveryError(f"Failed to call {func}: {exc!r}", function=func) from exc

        spaces = []
        for row in _space_rows(response.body):
            try:
                space_id, name = row[0], row[1]
                spaces.append((int(space_id), str(name)))
            except (IndexError, KeyError, TypeError, ValueError) as exc:
                raise DestinationDiscoveryError(
                    f"Unexpected row from {func}: {row!r}", function=func
                ) from exc
        return spaces

    # ── Klines ────────────────────────────────────────────────────────────────

    async def insert(self, space_id: int, values: Sequence[Any]) -> None:
        conn = self._connection()
        try:
            async with self._lock:
                await conn.insert(space_id, list(values))
        except _DB_ERRORS as exc:
            raise StoreError(f"Insert into space {space_id} failed: {exc!r}", space_id=space_id) from exc
