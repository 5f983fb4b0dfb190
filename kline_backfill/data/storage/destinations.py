"""
Destination discovery: maps kline space names to Tarantool space ids.
"""

from __future__ import annotations

import asyncio
from typing import Protocol

from kline_backfill.core.errors import DestinationDiscoveryError, UnknownDestination
from kline_backfill.core.logging import get_logger

logger = get_logger(__name__)

# Tarantool system spaces (_space, _vspace, _index, ...) all start with "_"
SYSTEM_PREFIX = "_"
KLINES_PREFIX = "klines_"


class SpaceLister(Protocol):
    async def list_destinations(self) -> list[tuple[int, str]]: ...


def destination_name(pair: str) -> str:
    return f"{KLINES_PREFIX}{pair.lower()}"


class DestinationResolver:
    """
    Enumerates spaces once per process. The first resolve() starts the
    enumeration; every other caller awaits the same task and shares its
    result or its error. The map is read-only afterwards.
    """

    def __init__(self, lister: SpaceLister) -> None:
        self._lister = lister
        self._task: asyncio.Task | None = None
        self._destinations: dict[str, int] | None = None

    @property
    def resolved(self) -> bool:
        return self._destinations is not None

    async def resolve(self) -> dict[str, int]:
        if self._task is None:
            self._task = asyncio.ensure_future(self._discover())
        return await asyncio.shield(self._task)

    async def _discover(self) -> dict[str, int]:
        try:
            spaces = await self._lister.list_destinations()
        except DestinationDiscoveryError:
            logger.error("Destination discovery failed")
            raise
        except Exception as exc:
            logger.error("Destination discovery failed", error=repr(exc))
            raise DestinationDiscoveryError(f"Space enumeration failed: {exc!r}") from exc

        destinations = {
            name: space_id
            for space_id, name in spaces
            if not name.startswith(SYSTEM_PREFIX)
        }
        self._destinations = destinations
        logger.info("Destinations resolved", count=len(destinations), names=sorted(destinations))
        return destinations

    def destination_for(self, name: str) -> int:
        if self._destinations is None:
            raise RuntimeError("Destinations not resolved. Await resolve() first.")
        try:
            return self._destinations[name]
        except KeyError:
            raise UnknownDestination(name) from None
