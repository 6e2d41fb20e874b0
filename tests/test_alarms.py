from __future__ import annotations

import asyncio
import json
from datetime import timedelta

import pytest

from conftest import NOW, RecordingNotifier, make_env
from models import Alarm, AlarmType, Device, DeviceOperationMode, DeviceStatusRecord, Network
from services.alarms import format_duration, render_alert
from services.errors import AlarmStateError, NotificationError
from services.notifier import Notifier

MAC = "AA:BB:CC:DD:EE:FF"


def test_format_duration():
    assert format_duration(timedelta(0)) == "0 days, 0 hours, 0 minutes, 0 seconds"
    assert format_duration(timedelta(days=2, hours=3, minutes=4, seconds=5)) == (
        "2 days, 3 hours, 4 minutes, 5 seconds"
    )
    assert format_duration(timedelta(seconds=-5)) == "0 days, 0 hours, 0 minutes, 0 seconds"


def test_render_network_alert():
    network = Network(name="home")
    subject, body = render_alert(AlarmType.NETWORK_DOWN, False, network, None, None, NOW)
    assert subject == "[home] alert"
    assert body.splitlines() == [
        "ALERT TRIGGERED",
        "",
        "Network: home",
        "UTC time: 2026-01-01T12:00:00",
        "",
        "Network is unavailable.",
    ]


def test_render_device_closure_uses_name_and_info():
    network = Network(name="office")
    device = Device(mac_address=MAC, ip_address="10.0.0.5", name="printer")
    subject, body = render_alert(
        AlarmType.DEVICE_DOWN, True, network, device, "  back online  ", NOW,
    )
    assert subject == "[office] alert closure for device: printer"
    assert body.startswith("ALERT CLOSED")
    assert f"Device: printer (mac:{MAC}, ip:10.0.0.5)" in body
    assert "Device is offline." in body
    assert body.endswith("Additional info: back online")


def test_open_when_open_is_rejected(db_path):
    async def scenario():
        env = await make_env(db_path)
        try:
            await env.add(Network(name="home", first_seen_at=NOW, last_seen_at=NOW, alerting_delay=60))

            async with env.uow.begin("home") as (store, alarms):
                network = await store.get_network("home")
                await alarms.open_alarm(AlarmType.NETWORK_DOWN, network)

            with pytest.raises(AlarmStateError) as excinfo:
                async with env.uow.begin("home") as (store, alarms):
                    network = await store.get_network("home")
                    await alarms.open_alarm(AlarmType.NETWORK_DOWN, network)
            assert excinfo.value.network == "home"
            assert excinfo.value.device is None

            assert len(await env.all(Alarm)) == 1
        finally:
            await env.dispose()

    asyncio.run(scenario())


def test_close_without_open_alarm_is_rejected(db_path):
    async def scenario():
        env = await make_env(db_path)
        try:
            network = Network(name="home", first_seen_at=NOW, last_seen_at=NOW, alerting_delay=60)
            await env.add(network)
            await env.add(Device(
                network_id=network.id, mac_address=MAC,
                operation_mode=DeviceOperationMode.ALWAYS_ON, online=True,
                first_seen_at=NOW, last_seen_at=NOW,
            ))

            with pytest.raises(AlarmStateError) as excinfo:
                async with env.uow.begin("home") as (store, alarms):
                    network = await store.get_network("home")
                    device = (await store.list_devices(network.id))[0]
                    await alarms.close_alarm(network, device)
            assert excinfo.value.device == MAC
            assert env.notifier.sent == []
        finally:
            await env.dispose()

    asyncio.run(scenario())


def test_device_and_network_alarms_are_independent(db_path):
    async def scenario():
        env = await make_env(db_path)
        try:
            network = Network(name="home", first_seen_at=NOW, last_seen_at=NOW, alerting_delay=60)
            await env.add(network)
            await env.add(Device(
                network_id=network.id, mac_address=MAC,
                operation_mode=DeviceOperationMode.ALWAYS_ON, online=False,
                first_seen_at=NOW, last_seen_at=NOW,
            ))

            async with env.uow.begin("home") as (store, alarms):
                network = await store.get_network("home")
                device = (await store.list_devices(network.id))[0]
                await alarms.open_alarm(AlarmType.DEVICE_DOWN, network, device)
                await alarms.open_alarm(AlarmType.NETWORK_DOWN, network)
                await alarms.close_alarm(network)

            alarms = await env.all(Alarm)
            assert [(a.alarm_type, a.closed_at is None) for a in alarms] == [
                (AlarmType.DEVICE_DOWN, True),
                (AlarmType.NETWORK_DOWN, False),
            ]
            assert (await env.all(Device))[0].active_alarm_id == alarms[0].id
            assert (await env.all(Network))[0].active_alarm_id is None
        finally:
            await env.dispose()

    asyncio.run(scenario())


def test_failed_notification_does_not_undo_alarm(db_path):
    async def scenario():
        env = await make_env(db_path, notifier=RecordingNotifier(fail=True))
        try:
            await env.add(Network(name="home", first_seen_at=NOW, last_seen_at=NOW, alerting_delay=60))

            with pytest.raises(NotificationError) as excinfo:
                async with env.uow.begin("home") as (store, alarms):
                    network = await store.get_network("home")
                    await alarms.open_alarm(AlarmType.NETWORK_DOWN, network)

            assert len(excinfo.value.failures) == 1
            assert excinfo.value.failures[0][0] == "[home] alert"

            alarms = await env.all(Alarm)
            assert len(alarms) == 1 and alarms[0].closed_at is None
            assert (await env.all(Network))[0].active_alarm_id == alarms[0].id
        finally:
            await env.dispose()

    asyncio.run(scenario())


def test_network_destination_overrides_default(db_path):
    async def scenario():
        env = await make_env(db_path)
        try:
            await env.add(Network(
                name="home", first_seen_at=NOW, last_seen_at=NOW,
                alerting_delay=60, notify_destination="home-admin@example.com",
            ))
            async with env.uow.begin("home") as (store, alarms):
                network = await store.get_network("home")
                await alarms.open_alarm(AlarmType.NETWORK_DOWN, network)

            assert [s[0] for s in env.notifier.sent] == ["home-admin@example.com"]
        finally:
            await env.dispose()

    asyncio.run(scenario())


def test_missing_destination_only_logs(db_path):
    async def scenario():
        env = await make_env(db_path)
        env.uow.default_destination = ""
        try:
            await env.add(Network(name="home", first_seen_at=NOW, last_seen_at=NOW, alerting_delay=60))
            async with env.uow.begin("home") as (store, alarms):
                network = await store.get_network("home")
                await alarms.open_alarm(AlarmType.NETWORK_DOWN, network)

            assert env.notifier.sent == []
            assert len(await env.all(Alarm)) == 1
        finally:
            await env.dispose()

    asyncio.run(scenario())


def test_unit_of_work_rolls_back_on_error(db_path):
    async def scenario():
        env = await make_env(db_path)
        try:
            with pytest.raises(RuntimeError):
                async with env.uow.begin("home") as (store, alarms):
                    network = await store.get_or_create_network("home")
                    network.last_seen_at = NOW
                    await alarms.open_alarm(AlarmType.NETWORK_DOWN, network)
                    raise RuntimeError("boom")

            assert await env.all(Network) == []
            assert await env.all(Alarm) == []
            assert not env.locks.get("home").locked()
        finally:
            await env.dispose()

    asyncio.run(scenario())


class HangingNotifier(Notifier):
    def __init__(self) -> None:
        self.calls = 0

    async def notify(self, destination: str, subject: str, body: str) -> None:
        self.calls += 1
        await asyncio.sleep(10)


def test_hanging_notifier_does_not_roll_back_snapshot(db_path):
    macs = [f"AA:BB:CC:DD:EE:0{i}" for i in range(5)]
    payload = json.dumps({
        "timestamp": NOW.isoformat(),
        "devices": [{"mac": mac, "ip": None} for mac in macs],
    })

    async def scenario():
        notifier = HangingNotifier()
        env = await make_env(db_path, notifier=notifier, timeout=1.0, notify_timeout=0.3)
        try:
            # five deliveries time out one after another, well past the unit timeout
            assert await env.processor.process("network/home/presence", payload) is True

            assert sorted(d.mac_address for d in await env.all(Device)) == macs
            alarms = await env.all(Alarm)
            assert len(alarms) == 5
            assert all(a.closed_at is None for a in alarms)
            assert len(await env.all(DeviceStatusRecord)) == 5
            assert notifier.calls == 5

            # committed state means the next snapshot does not reopen or resend
            await env.processor.process("network/home/presence", payload)
            assert len(await env.all(Alarm)) == 5
            assert notifier.calls == 5
        finally:
            await env.dispose()

    asyncio.run(scenario())


def test_notifications_are_sent_after_the_lock_is_released(db_path):
    async def scenario():
        env = await make_env(db_path)
        lock_held = []

        class LockCheckingNotifier(Notifier):
            async def notify(self, destination: str, subject: str, body: str) -> None:
                lock_held.append(env.locks.get("home").locked())

        env.uow.notifier = LockCheckingNotifier()
        try:
            await env.processor.process("network/home/presence", json.dumps({
                "timestamp": NOW.isoformat(), "devices": [{"mac": MAC}],
            }))
            assert lock_held == [False]
        finally:
            await env.dispose()

    asyncio.run(scenario())


def test_waiting_for_the_lock_does_not_count_against_timeout(db_path):
    async def scenario():
        env = await make_env(db_path, timeout=0.5)
        try:
            async def busy_unit():
                async with env.locks.hold("home"):
                    await asyncio.sleep(1.0)

            blocker = asyncio.create_task(busy_unit())
            await asyncio.sleep(0)
            committed = await env.processor.process("network/home/presence", json.dumps({
                "timestamp": NOW.isoformat(), "devices": [{"mac": MAC}],
            }))
            await blocker

            assert committed is True
            assert len(await env.all(Device)) == 1
        finally:
            await env.dispose()

    asyncio.run(scenario())


def test_concurrent_opens_for_one_device_leave_one_open_alarm(db_path):
    async def scenario():
        env = await make_env(db_path)
        try:
            network = Network(name="home", first_seen_at=NOW, last_seen_at=NOW, alerting_delay=60)
            await env.add(network)
            await env.add(Device(
                network_id=network.id, mac_address=MAC,
                operation_mode=DeviceOperationMode.ALWAYS_ON, online=False,
                first_seen_at=NOW, last_seen_at=NOW,
            ))

            async def open_device_down():
                async with env.uow.begin("home") as (store, alarms):
                    network = await store.get_network("home")
                    device = (await store.list_devices(network.id))[0]
                    await asyncio.sleep(0.01)
                    await alarms.open_alarm(AlarmType.DEVICE_DOWN, network, device)

            results = await asyncio.gather(
                open_device_down(), open_device_down(), return_exceptions=True,
            )

            assert results.count(None) == 1
            assert len([r for r in results if isinstance(r, AlarmStateError)]) == 1
            alarms = await env.all(Alarm)
            assert len(alarms) == 1 and alarms[0].closed_at is None
            assert (await env.all(Device))[0].active_alarm_id == alarms[0].id
        finally:
            await env.dispose()

    asyncio.run(scenario())
