"""REST API for alarms (current and recent, no analytics)."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from models import AlarmType, get_session
from services.store import Store

router = APIRouter(prefix="/api/alarms", tags=["alarms"])


class AlarmOut(BaseModel):
    id: int
    network_id: int
    device_id: int | None
    alarm_type: AlarmType
    message: str | None
    opened_at: datetime
    closed_at: datetime | None

    model_config = {"from_attributes": True}


@router.get("", response_model=list[AlarmOut])
async def list_alarms(
    network: Optional[str] = Query(None, description="Network name"),
    active: Optional[bool] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    session: AsyncSession = Depends(get_session),
):
    store = Store(session)
    network_id = None
    if network is not None:
        net = await store.get_network(network)
        if not net:
            raise HTTPException(404, f"Network not found: {network}")
        network_id = net.id
    return await store.list_alarms(network_id=network_id, active=active, limit=limit)
