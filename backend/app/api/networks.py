from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from models import Network, get_session
from services.locks import network_locks
from services.store import Store
from api.devices import DeviceOut

router = APIRouter(prefix="/api/networks", tags=["networks"])


# --- Schemas ---

class NetworkOut(BaseModel):
    id: int
    name: str
    first_seen_at: datetime
    last_seen_at: datetime
    alerting_delay: int
    notify_destination: str | None
    active_alarm_id: int | None

    model_config = {"from_attributes": True}


class NetworkUpdate(BaseModel):
    alerting_delay: int | None = Field(None, ge=1)
    notify_destination: str | None = None

    @field_validator("alerting_delay")
    @classmethod
    def _delay_not_null(cls, value):
        if value is None:
            raise ValueError("alerting_delay cannot be null")
        return value


async def _get_network_or_404(store: Store, name: str) -> Network:
    network = await store.get_network(name)
    if not network:
        raise HTTPException(404, f"Network not found: {name}")
    return network


# --- Endpoints ---

@router.get("", response_model=list[NetworkOut])
async def list_networks(session: AsyncSession = Depends(get_session)):
    return await Store(session).list_networks()


@router.get("/{name}", response_model=NetworkOut)
async def get_network(name: str, session: AsyncSession = Depends(get_session)):
    return await _get_network_or_404(Store(session), name)


@router.patch("/{name}", response_model=NetworkOut)
async def update_network(
    name: str,
    data: NetworkUpdate,
    session: AsyncSession = Depends(get_session),
):
    store = Store(session)
    async with network_locks.hold(name):
        network = await _get_network_or_404(store, name)
        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(network, field, value)
        await session.commit()
    return network


@router.get("/{name}/devices", response_model=list[DeviceOut])
async def list_network_devices(
    name: str,
    online_only: bool = Query(False),
    session: AsyncSession = Depends(get_session),
):
    store = Store(session)
    network = await _get_network_or_404(store, name)
    devices = await store.list_devices(network.id)
    if online_only:
        devices = [d for d in devices if d.online]
    return devices
