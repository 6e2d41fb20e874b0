"""Per-network critical sections.

Ingestion, the alarm sweep and API edits all take the lock of the network
they touch, so a read-then-write cycle on one network never interleaves
with another writer. Different networks proceed in parallel.
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator


class NetworkLocks:

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def get(self, network_name: str) -> asyncio.Lock:
        return self._locks.setdefault(network_name, asyncio.Lock())

    @asynccontextmanager
    async def hold(self, network_name: str) -> AsyncIterator[None]:
        async with self.get(network_name):
            yield

    def __len__(self) -> int:
        return len(self._locks)


network_locks = NetworkLocks()
