"""Alarms for networks and devices.

device_id NULL = network-level alarm. closed_at NULL = open.
At most one open alarm per (network, device); rows are never deleted.
"""
from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import ForeignKey, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, utcnow


class AlarmType(str, enum.Enum):
    NETWORK_DOWN = "NETWORK_DOWN"
    DEVICE_DOWN = "DEVICE_DOWN"
    UNAUTHORIZED_DEVICE = "UNAUTHORIZED_DEVICE"


class Alarm(Base):
    __tablename__ = "alarms"

    __table_args__ = (
        Index("ix_alarms_network_device_opened", "network_id", "device_id", "opened_at"),
        Index(
            "uq_alarms_open_per_device",
            "network_id", "device_id",
            unique=True,
            postgresql_where=text("closed_at IS NULL"),
            sqlite_where=text("closed_at IS NULL"),
        ),
        Index(
            "uq_alarms_open_per_network",
            "network_id",
            unique=True,
            postgresql_where=text("device_id IS NULL AND closed_at IS NULL"),
            sqlite_where=text("device_id IS NULL AND closed_at IS NULL"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    network_id: Mapped[int] = mapped_column(ForeignKey("networks.id", ondelete="CASCADE"))
    device_id: Mapped[int | None] = mapped_column(
        ForeignKey("devices.id", ondelete="CASCADE"), default=None
    )
    alarm_type: Mapped[AlarmType]
    message: Mapped[str | None] = mapped_column(String(500), default=None)
    opened_at: Mapped[datetime] = mapped_column(default=utcnow)
    closed_at: Mapped[datetime | None] = mapped_column(default=None)

    @property
    def is_open(self) -> bool:
        return self.closed_at is None

    def __repr__(self) -> str:
        target = f"device={self.device_id}" if self.device_id else "network"
        return f"<Alarm {self.alarm_type.value} net={self.network_id} {target}>"
