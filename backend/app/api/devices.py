import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from models import Device, DeviceOperationMode, Network, get_session
from services.locks import network_locks

logger = logging.getLogger("netmon.api.devices")

router = APIRouter(prefix="/api/devices", tags=["devices"])


# --- Schemas ---

class DeviceUpdate(BaseModel):
    operation_mode: DeviceOperationMode | None = None
    name: str | None = None

    @field_validator("operation_mode")
    @classmethod
    def _mode_not_null(cls, value):
        # omitted means unchanged; an explicit null is not a mode
        if value is None:
            raise ValueError("operation_mode cannot be null")
        return value


class DeviceOut(BaseModel):
    id: int
    network_id: int
    mac_address: str
    ip_address: str | None
    name: str | None
    operation_mode: DeviceOperationMode
    online: bool
    first_seen_at: datetime
    last_seen_at: datetime
    active_alarm_id: int | None

    model_config = {"from_attributes": True}


# --- Endpoints ---

@router.get("/{device_id}", response_model=DeviceOut)
async def get_device(device_id: int, session: AsyncSession = Depends(get_session)):
    device = await session.get(Device, device_id)
    if not device:
        raise HTTPException(404, "Device not found")
    return device


@router.patch("/{device_id}", response_model=DeviceOut)
async def update_device(
    device_id: int,
    data: DeviceUpdate,
    session: AsyncSession = Depends(get_session),
):
    device = await session.get(Device, device_id)
    if not device:
        raise HTTPException(404, "Device not found")
    network = await session.get(Network, device.network_id)

    # mode changes race with the alarm sweep otherwise
    async with network_locks.hold(network.name):
        await session.refresh(device)
        changes = data.model_dump(exclude_unset=True)
        for field, value in changes.items():
            setattr(device, field, value)
        await session.commit()

    if "operation_mode" in changes:
        logger.info(
            "Device %s on %s is now %s",
            device.mac_address, network.name, device.operation_mode.value,
        )
    return device
