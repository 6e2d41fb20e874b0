from models.base import Base, async_session, engine, get_session, utcnow
from models.network import Network
from models.device import Device, DeviceOperationMode
from models.status_record import DeviceStatusRecord
from models.alarm import Alarm, AlarmType

__all__ = [
    "Base",
    "async_session",
    "engine",
    "get_session",
    "utcnow",
    "Network",
    "Device",
    "DeviceOperationMode",
    "DeviceStatusRecord",
    "Alarm",
    "AlarmType",
]
