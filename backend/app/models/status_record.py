"""Device status history.

Append-only: one row per online/offline transition of a MAC on a network,
never one per snapshot. The latest row per (network, MAC) is the device's
believed state.
"""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base


class DeviceStatusRecord(Base):
    __tablename__ = "device_status_records"

    __table_args__ = (
        Index("ix_device_status_records_network_mac", "network_id", "mac_address", "id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    network_id: Mapped[int] = mapped_column(ForeignKey("networks.id", ondelete="CASCADE"))
    mac_address: Mapped[str] = mapped_column(String(17))
    ip_address: Mapped[str | None] = mapped_column(String(45), default=None)
    online: Mapped[bool] = mapped_column()
    timestamp: Mapped[datetime] = mapped_column()

    def __repr__(self) -> str:
        state = "online" if self.online else "offline"
        return f"<DeviceStatusRecord {self.mac_address} {state} @ {self.timestamp}>"
