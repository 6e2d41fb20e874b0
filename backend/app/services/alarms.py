"""Alarm open/close with the one-open-alarm-per-(network, device) invariant.

open:  refuse if an alarm is already open, persist, stamp active_alarm_id
       on the owner (network or device), queue the notification.
close: refuse if nothing is open, set closed_at, clear active_alarm_id,
       append opened-at/duration to the message, queue the notification.

Queued notifications go out through deliver() after the caller has
committed, so a slow or failing notifier never undoes alarm state.
Failures are collected and raised as NotificationError by
raise_for_failures().
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable

from models.alarm import Alarm, AlarmType
from models.base import utcnow
from models.device import Device
from models.network import Network
from services.errors import AlarmStateError, NotificationError
from services.notifier import Notifier
from services.store import Store

logger = logging.getLogger("netmon.alarms")

ALARM_TYPE_MESSAGES = {
    AlarmType.NETWORK_DOWN: "Network is unavailable",
    AlarmType.DEVICE_DOWN: "Device is offline",
    AlarmType.UNAUTHORIZED_DEVICE: "Unauthorized device detected",
}


def format_duration(delta: timedelta) -> str:
    total = max(int(delta.total_seconds()), 0)
    days, rem = divmod(total, 86400)
    hours, rem = divmod(rem, 3600)
    minutes, seconds = divmod(rem, 60)
    return f"{days} days, {hours} hours, {minutes} minutes, {seconds} seconds"


def render_alert(
    alarm_type: AlarmType,
    closure: bool,
    network: Network,
    device: Device | None,
    message: str | None,
    now: datetime,
) -> tuple[str, str]:
    """Build (subject, body) for an alarm notification."""
    subject = f"[{network.name}] " + ("alert closure" if closure else "alert")
    if device is not None:
        subject += f" for device: {device.name_or_mac}"

    lines = ["ALERT CLOSED" if closure else "ALERT TRIGGERED", ""]
    lines.append(f"Network: {network.name}")
    if device is not None:
        lines.append(
            f"Device: {device.name_or_mac} (mac:{device.mac_address}, ip:{device.ip_address or '-'})"
        )
    lines.append(f"UTC time: {now.isoformat()}")
    lines.append("")
    lines.append(ALARM_TYPE_MESSAGES[alarm_type] + ".")
    if message and message.strip():
        lines.append("")
        lines.append(f"Additional info: {message.strip()}")
    return subject, "\n".join(lines)


class AlarmService:
    """Alarm lifecycle bound to one unit of work (one Store/session)."""

    def __init__(
        self,
        store: Store,
        notifier: Notifier,
        *,
        notify_timeout: float = 15.0,
        default_destination: str = "",
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.notifier = notifier
        self.notify_timeout = notify_timeout
        self.default_destination = default_destination
        self.clock = clock
        self.outbox: list[tuple[str, str, str]] = []
        self.failures: list[tuple[str, Exception]] = []

    async def open_alarm(
        self,
        alarm_type: AlarmType,
        network: Network,
        device: Device | None = None,
        message: str | None = None,
    ) -> Alarm:
        target = device.name_or_mac if device else None
        logger.info(
            "Opening %s: network=%s device=%s message=%s",
            alarm_type.value, network.name, target or "N/A", message,
        )

        latest = await self.store.latest_alarm(network.id, device.id if device else None)
        if latest is not None and latest.closed_at is None:
            raise AlarmStateError(
                "There's already an open alarm", network=network.name, device=target,
            )

        alarm = Alarm(
            network_id=network.id,
            device_id=device.id if device else None,
            alarm_type=alarm_type,
            message=message,
            opened_at=self.clock(),
        )
        await self.store.save_alarm(alarm)

        if device is None:
            network.active_alarm_id = alarm.id
            await self.store.save_network(network)
        else:
            device.active_alarm_id = alarm.id
            await self.store.save_device(device)

        self._send(alarm_type, False, network, device, message)
        return alarm

    async def close_alarm(
        self,
        network: Network,
        device: Device | None = None,
        message: str | None = None,
    ) -> Alarm:
        target = device.name_or_mac if device else None
        logger.info(
            "Closing alarm: network=%s device=%s message=%s",
            network.name, target or "N/A", message,
        )

        alarm = await self.store.latest_alarm(network.id, device.id if device else None)
        if alarm is None or alarm.closed_at is not None:
            raise AlarmStateError(
                "There's no open alarm", network=network.name, device=target,
            )

        alarm.closed_at = self.clock()
        await self.store.save_alarm(alarm)

        if device is None:
            network.active_alarm_id = None
            await self.store.save_network(network)
        else:
            device.active_alarm_id = None
            await self.store.save_device(device)

        duration = format_duration(alarm.closed_at - alarm.opened_at)
        info = f"Alert opened at: {alarm.opened_at.isoformat()}\nDuration: {duration}"
        full_message = ((message or "").strip() + "\n" + info).strip()

        self._send(alarm.alarm_type, True, network, device, full_message)
        return alarm

    # ------------------------------------------------------------------
    def _send(
        self,
        alarm_type: AlarmType,
        closure: bool,
        network: Network,
        device: Device | None,
        message: str | None,
    ) -> None:
        subject, body = render_alert(alarm_type, closure, network, device, message, self.clock())
        destination = network.notify_destination or self.default_destination
        if not destination:
            logger.warning("No notify destination for %s, alert not delivered:\n%s", network.name, body)
            return
        self.outbox.append((destination, subject, body))

    async def deliver(self) -> None:
        """Send queued notifications. Call only after the alarm state is committed."""
        outbox, self.outbox = self.outbox, []
        for destination, subject, body in outbox:
            try:
                await asyncio.wait_for(
                    self.notifier.notify(destination, subject, body),
                    timeout=self.notify_timeout,
                )
            except Exception as exc:
                logger.error("Notification to %s failed (%s): %r", destination, subject, exc)
                self.failures.append((subject, exc))

    def raise_for_failures(self) -> None:
        if self.failures:
            failures, self.failures = self.failures, []
            raise NotificationError(failures)
