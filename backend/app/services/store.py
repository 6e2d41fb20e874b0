"""SQLAlchemy-backed store for networks, devices, status records and alarms.

One Store wraps one AsyncSession, i.e. one unit of work. Nothing here
commits; the caller owns the transaction.
"""
from __future__ import annotations

import logging

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from models.alarm import Alarm
from models.base import utcnow
from models.device import Device
from models.network import Network
from models.status_record import DeviceStatusRecord

logger = logging.getLogger("netmon.store")


class Store:

    def __init__(self, session: AsyncSession):
        self.session = session

    # ------------------------------------------------------------------
    # Networks
    # ------------------------------------------------------------------

    async def get_network(self, name: str) -> Network | None:
        result = await self.session.execute(select(Network).where(Network.name == name))
        return result.scalar_one_or_none()

    async def get_or_create_network(self, name: str) -> Network:
        network = await self.get_network(name)
        if network is None:
            now = utcnow()
            network = Network(
                name=name,
                first_seen_at=now,
                last_seen_at=now,
                alerting_delay=settings.DEFAULT_ALERTING_DELAY,
            )
            self.session.add(network)
            await self.session.flush()
            logger.info("New network: %s (alerting delay %ds)", name, network.alerting_delay)
        return network

    async def list_networks(self) -> list[Network]:
        result = await self.session.execute(select(Network).order_by(Network.id))
        return list(result.scalars().all())

    async def save_network(self, network: Network) -> Network:
        self.session.add(network)
        await self.session.flush()
        return network

    # ------------------------------------------------------------------
    # Devices
    # ------------------------------------------------------------------

    async def get_device(self, device_id: int) -> Device | None:
        return await self.session.get(Device, device_id)

    async def list_devices(self, network_id: int) -> list[Device]:
        stmt = select(Device).where(Device.network_id == network_id).order_by(Device.id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def save_device(self, device: Device) -> Device:
        self.session.add(device)
        await self.session.flush()
        return device

    # ------------------------------------------------------------------
    # Status history
    # ------------------------------------------------------------------

    async def save_status_record(self, record: DeviceStatusRecord) -> DeviceStatusRecord:
        self.session.add(record)
        await self.session.flush()
        return record

    async def list_online_devices(self, network_id: int) -> list[DeviceStatusRecord]:
        """Latest record per MAC on the network, keeping only online=True."""
        latest = (
            select(func.max(DeviceStatusRecord.id))
            .where(DeviceStatusRecord.network_id == network_id)
            .group_by(DeviceStatusRecord.mac_address)
        )
        stmt = (
            select(DeviceStatusRecord)
            .where(
                and_(
                    DeviceStatusRecord.id.in_(latest),
                    DeviceStatusRecord.online == True,  # noqa: E712
                )
            )
            .order_by(DeviceStatusRecord.mac_address)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def latest_status_record(
        self, network_id: int, mac_address: str
    ) -> DeviceStatusRecord | None:
        stmt = (
            select(DeviceStatusRecord)
            .where(
                and_(
                    DeviceStatusRecord.network_id == network_id,
                    DeviceStatusRecord.mac_address == mac_address,
                )
            )
            .order_by(DeviceStatusRecord.id.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Alarms
    # ------------------------------------------------------------------

    async def save_alarm(self, alarm: Alarm) -> Alarm:
        self.session.add(alarm)
        await self.session.flush()
        return alarm

    async def latest_alarm(self, network_id: int, device_id: int | None = None) -> Alarm | None:
        """Most recent alarm for the network itself (device_id=None) or one device."""
        if device_id is None:
            target = Alarm.device_id.is_(None)
        else:
            target = Alarm.device_id == device_id
        stmt = (
            select(Alarm)
            .where(and_(Alarm.network_id == network_id, target))
            .order_by(Alarm.id.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_alarms(
        self,
        *,
        network_id: int | None = None,
        active: bool | None = None,
        limit: int = 100,
    ) -> list[Alarm]:
        stmt = select(Alarm)
        conditions = []
        if network_id is not None:
            conditions.append(Alarm.network_id == network_id)
        if active is True:
            conditions.append(Alarm.closed_at.is_(None))
        elif active is False:
            conditions.append(Alarm.closed_at.is_not(None))
        if conditions:
            stmt = stmt.where(and_(*conditions))
        stmt = stmt.order_by(Alarm.id.desc()).limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
