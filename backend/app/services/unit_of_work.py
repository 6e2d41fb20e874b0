"""One snapshot or one network sweep = one unit of work.

lock(network) → timed session → (Store, AlarmService) → commit / rollback →
lock released → queued notifications delivered → deferred notification
failures raised.

Only the store work is timed: waiting for the lock and delivering
notifications do not count against UNIT_OF_WORK_TIMEOUT.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.alarms import AlarmService
from services.locks import NetworkLocks
from services.notifier import Notifier
from services.store import Store

logger = logging.getLogger("netmon.unit_of_work")


class UnitOfWork:

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: Notifier,
        locks: NetworkLocks,
        *,
        timeout: float = 30.0,
        notify_timeout: float = 15.0,
        default_destination: str = "",
    ):
        self.session_factory = session_factory
        self.notifier = notifier
        self.locks = locks
        self.timeout = timeout
        self.notify_timeout = notify_timeout
        self.default_destination = default_destination

    @asynccontextmanager
    async def begin(self, network_name: str) -> AsyncIterator[tuple[Store, AlarmService]]:
        async with self.locks.hold(network_name):
            async with asyncio.timeout(self.timeout):
                async with self.session_factory() as session:
                    store = Store(session)
                    alarms = AlarmService(
                        store,
                        self.notifier,
                        notify_timeout=self.notify_timeout,
                        default_destination=self.default_destination,
                    )
                    yield store, alarms
                    # exiting the session without commit rolls back
                    await session.commit()

        if alarms.outbox:
            logger.debug("Delivering %d notification(s) for %s", len(alarms.outbox), network_name)
        await alarms.deliver()
        alarms.raise_for_failures()
