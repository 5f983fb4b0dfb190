"""
Kline storage: routes each record to its per-pair space.
"""

from __future__ import annotations

from typing import Any, Protocol, Sequence

from kline_backfill.data.storage.destinations import DestinationResolver, destination_name
from kline_backfill.exchanges.base import Kline


class SpaceInserter(Protocol):
    async def insert(self, space_id: int, values: Sequence[Any]) -> None: ...


class KlineWriter:
    def __init__(self, resolver: DestinationResolver, db: SpaceInserter) -> None:
        self._resolver = resolver
        self._db = db

    async def store(self, kline: Kline) -> None:
        """Insert one kline. Raises UnknownDestination or StoreError; never retries."""
        space_id = self._resolver.destination_for(destination_name(kline.pair))
        await self._db.insert(space_id, kline.as_tuple())
