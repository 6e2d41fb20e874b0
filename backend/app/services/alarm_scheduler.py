"""
Alarm lifecycle scheduler.

Background task that runs every ALERT_CHECK_INTERVAL seconds (after
ALERT_CHECK_INITIAL_DELAY). For every network, in its own unit of work:
1. threshold = now - network.alerting_delay
2. Network silent since before threshold → NETWORK_DOWN (once), skip devices
3. Network fresh → close the NETWORK_DOWN alarm if one is open
4. Per device, by operation mode:
   UNAUTHORIZED  close the alarm once the device has vanished
   ALLOWED       close any leftover alarm
   ALWAYS_ON     DEVICE_DOWN when silent; close once its latest status
                 record is an online one at or after threshold
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from models.alarm import AlarmType
from models.base import utcnow
from models.device import DeviceOperationMode
from models.network import Network
from services.alarms import AlarmService
from services.errors import AlarmStateError, NotificationError
from services.store import Store
from services.unit_of_work import UnitOfWork

logger = logging.getLogger("netmon.alarm_scheduler")


async def sweep_network(
    store: Store,
    alarms: AlarmService,
    network: Network,
    now: datetime,
) -> None:
    threshold = now - timedelta(seconds=network.alerting_delay)

    if network.last_seen_at < threshold:
        if network.active_alarm_id is None:
            await alarms.open_alarm(AlarmType.NETWORK_DOWN, network)
        # a dark network says nothing about its devices
        return

    if network.active_alarm_id is not None:
        await alarms.close_alarm(network)

    for device in await store.list_devices(network.id):
        mode = device.operation_mode

        if mode == DeviceOperationMode.UNAUTHORIZED:
            # opened by ingestion on appearance; only cleared here
            if device.active_alarm_id is not None and device.last_seen_at < threshold:
                await alarms.close_alarm(network, device, "device has left the network")

        elif mode == DeviceOperationMode.ALLOWED:
            if device.active_alarm_id is not None:
                await alarms.close_alarm(network, device, "device is now authorized")

        elif mode == DeviceOperationMode.ALWAYS_ON:
            if device.last_seen_at < threshold:
                if device.active_alarm_id is None:
                    await alarms.open_alarm(AlarmType.DEVICE_DOWN, network, device)
            elif device.active_alarm_id is not None:
                latest = await store.latest_status_record(network.id, device.mac_address)
                if latest is not None and latest.online and latest.timestamp >= threshold:
                    await alarms.close_alarm(network, device)


class AlarmScheduler:
    """Background task: evaluates staleness and opens/closes alarms."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        uow: UnitOfWork,
        *,
        initial_delay: float = 60,
        interval: float = 60,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.uow = uow
        self.initial_delay = initial_delay
        self.interval = interval
        self.clock = clock
        self._running = False
        self._wake = asyncio.Event()
        self._cycle_lock = asyncio.Lock()

    async def start(self) -> None:
        self._running = True
        self._wake.clear()
        logger.info(
            "AlarmScheduler started (initial delay %ss, check every %ss)",
            self.initial_delay, self.interval,
        )

        await self._sleep(self.initial_delay)
        while self._running:
            async with self._cycle_lock:
                try:
                    await self.run_cycle()
                except Exception as exc:
                    logger.error("AlarmScheduler cycle error: %s", exc, exc_info=True)
            await self._sleep(self.interval)

    async def stop(self) -> None:
        self._running = False
        self._wake.set()
        # let a tick in progress finish its networks
        async with self._cycle_lock:
            pass
        logger.info("AlarmScheduler stopped")

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def run_cycle(self, now: datetime | None = None) -> None:
        now = now or self.clock()
        async with self.session_factory() as session:
            names = [n.name for n in await Store(session).list_networks()]

        logger.info("Running scheduled alert check (%d networks)", len(names))
        # networks are independent: a slow one must not hold up the rest
        await asyncio.gather(*(self._sweep_one(name, now) for name in names))

    async def _sweep_one(self, network_name: str, now: datetime) -> None:
        try:
            await self._sweep_locked(network_name, now)
        except NotificationError as exc:
            logger.error("Sweep of %s committed, but %s", network_name, exc)
        except AlarmStateError as exc:
            logger.error("Alarm state violation while sweeping %s: %s", network_name, exc)
        except TimeoutError:
            logger.error("Sweep of %s timed out after %ss, rolled back", network_name, self.uow.timeout)
        except Exception as exc:
            logger.error("Sweep failed for network %s: %s", network_name, exc, exc_info=True)

    async def _sweep_locked(self, network_name: str, now: datetime) -> None:
        async with self.uow.begin(network_name) as (store, alarms):
            network = await store.get_network(network_name)
            if network is None:
                return
            await sweep_network(store, alarms, network, now)
