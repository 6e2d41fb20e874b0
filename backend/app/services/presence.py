"""Presence diff engine: one snapshot in, state transitions out.

A snapshot lists every device seen online on a network at time T.
Compared with the believed state (latest status record per MAC):
- unknown MAC        → new UNAUTHORIZED device, "first contact" alarm, online record
- known, was offline → online record
- known, was online  → nothing written to history (duplicate snapshot)
- online, not listed → offline record
Everything for one snapshot commits together.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone

from pydantic import BaseModel, ValidationError, field_validator

from models.alarm import AlarmType
from models.device import Device, DeviceOperationMode
from models.status_record import DeviceStatusRecord
from services.alarms import AlarmService
from services.errors import AlarmStateError, MalformedEventError, NotificationError
from services.store import Store
from services.unit_of_work import UnitOfWork

logger = logging.getLogger("netmon.presence")


# ---------------------------------------------------------------------------
# Event contract
# ---------------------------------------------------------------------------

class PresenceDevice(BaseModel):
    mac: str | None = None
    ip: str | None = None


class PresenceSnapshot(BaseModel):
    timestamp: datetime
    devices: list[PresenceDevice] = []

    @field_validator("timestamp")
    @classmethod
    def _to_naive_utc(cls, value: datetime) -> datetime:
        # RFC3339 with offset and epoch seconds arrive tz-aware; naive means UTC
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value


def extract_network_name(routing_key: str) -> str:
    """Network name is the second-to-last segment: "network/<name>/presence"."""
    if not routing_key or not routing_key.strip():
        raise MalformedEventError("empty routing key")
    segments = routing_key.strip().split("/")
    if len(segments) < 2:
        logger.warning("Unexpected routing key format %r, using it as network name", routing_key)
        return routing_key.strip()
    name = segments[-2].strip()
    if not name:
        raise MalformedEventError(f"routing key {routing_key!r} has an empty network segment")
    return name


def parse_snapshot(payload: str | bytes | dict) -> PresenceSnapshot:
    try:
        if isinstance(payload, dict):
            return PresenceSnapshot.model_validate(payload)
        return PresenceSnapshot.model_validate_json(payload)
    except ValidationError as exc:
        raise MalformedEventError(f"invalid presence payload: {exc.error_count()} error(s)") from exc


def normalize_mac(mac: str | None) -> str:
    return (mac or "").strip().upper()


# ---------------------------------------------------------------------------
# Diff
# ---------------------------------------------------------------------------

async def apply_snapshot(
    store: Store,
    alarms: AlarmService,
    network_name: str,
    timestamp: datetime,
    devices: list[PresenceDevice],
) -> None:
    network = await store.get_or_create_network(network_name)
    network.last_seen_at = timestamp
    await store.save_network(network)

    known = {d.mac_address: d for d in await store.list_devices(network.id)}
    currently_online = {r.mac_address: r for r in await store.list_online_devices(network.id)}

    observed: dict[str, str | None] = {}
    for entry in devices:
        mac = normalize_mac(entry.mac)
        if not mac:
            logger.warning("Skipping device with blank MAC on %s (ip=%s)", network_name, entry.ip)
            continue
        observed[mac] = entry.ip

    for mac, ip in observed.items():
        device = known.get(mac)

        if device is None:
            device = Device(
                network_id=network.id,
                mac_address=mac,
                ip_address=ip,
                operation_mode=DeviceOperationMode.UNAUTHORIZED,
                online=True,
                first_seen_at=timestamp,
                last_seen_at=timestamp,
            )
            await store.save_device(device)
            known[mac] = device
            logger.info("New device: %s (%s) on %s", mac, ip, network_name)
            await alarms.open_alarm(AlarmType.UNAUTHORIZED_DEVICE, network, device, "first contact")
            await store.save_status_record(DeviceStatusRecord(
                network_id=network.id, mac_address=mac, ip_address=ip,
                online=True, timestamp=timestamp,
            ))
            continue

        if ip:
            device.ip_address = ip
        device.last_seen_at = timestamp
        device.online = True
        await store.save_device(device)

        if (
            device.operation_mode == DeviceOperationMode.UNAUTHORIZED
            and device.active_alarm_id is None
        ):
            await alarms.open_alarm(AlarmType.UNAUTHORIZED_DEVICE, network, device, "seen again")

        if mac not in currently_online:
            logger.info("Device came online: %s (%s) on %s", mac, device.ip_address, network_name)
            await store.save_status_record(DeviceStatusRecord(
                network_id=network.id, mac_address=mac, ip_address=device.ip_address,
                online=True, timestamp=timestamp,
            ))

    for mac, device in known.items():
        if mac in observed:
            continue
        if device.online:
            device.online = False
            await store.save_device(device)
        previous = currently_online.get(mac)
        if previous is not None:
            ip = device.ip_address or previous.ip_address
            logger.info("Device went offline: %s (%s) on %s", mac, ip, network_name)
            await store.save_status_record(DeviceStatusRecord(
                network_id=network.id, mac_address=mac, ip_address=ip,
                online=False, timestamp=timestamp,
            ))


# ---------------------------------------------------------------------------
# Entry point for transports
# ---------------------------------------------------------------------------

class PresenceProcessor:
    """Validates one raw event and applies it inside the network's unit of work."""

    def __init__(self, uow: UnitOfWork):
        self.uow = uow

    async def process(self, routing_key: str, payload: str | bytes | dict) -> bool:
        """Return True when the snapshot was committed."""
        try:
            network_name = extract_network_name(routing_key)
            snapshot = parse_snapshot(payload)
        except MalformedEventError as exc:
            logger.warning("Dropping presence event from %r: %s", routing_key, exc)
            return False

        try:
            await self._apply(network_name, snapshot)
        except NotificationError as exc:
            logger.error("Snapshot for %s committed, but %s", network_name, exc)
        except AlarmStateError as exc:
            logger.error("Alarm state violation while processing %s: %s", network_name, exc)
            return False
        except TimeoutError:
            logger.error(
                "Snapshot for %s timed out after %ss, rolled back", network_name, self.uow.timeout,
            )
            return False
        except Exception as exc:
            logger.error(
                "Failed to process snapshot for %s: %s", network_name, exc, exc_info=True,
            )
            return False
        return True

    async def _apply(self, network_name: str, snapshot: PresenceSnapshot) -> None:
        async with self.uow.begin(network_name) as (store, alarms):
            await apply_snapshot(store, alarms, network_name, snapshot.timestamp, snapshot.devices)
        logger.debug(
            "Snapshot applied: %s @ %s (%d devices)",
            network_name, snapshot.timestamp, len(snapshot.devices),
        )
