import enum
from datetime import datetime

from sqlalchemy import ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from models.base import Base, utcnow


class DeviceOperationMode(str, enum.Enum):
    UNAUTHORIZED = "UNAUTHORIZED"  # alert on presence
    ALLOWED = "ALLOWED"            # no alerting
    ALWAYS_ON = "ALWAYS_ON"        # alert on absence


class Device(Base):
    __tablename__ = "devices"

    __table_args__ = (
        UniqueConstraint("network_id", "mac_address", name="uq_devices_network_mac"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    network_id: Mapped[int] = mapped_column(ForeignKey("networks.id", ondelete="CASCADE"), index=True)
    mac_address: Mapped[str] = mapped_column(String(17))
    ip_address: Mapped[str | None] = mapped_column(String(45), default=None)
    name: Mapped[str | None] = mapped_column(String(100), default=None)
    operation_mode: Mapped[DeviceOperationMode] = mapped_column(
        default=DeviceOperationMode.UNAUTHORIZED
    )
    online: Mapped[bool] = mapped_column(default=False)
    first_seen_at: Mapped[datetime] = mapped_column(default=utcnow)
    last_seen_at: Mapped[datetime] = mapped_column(default=utcnow)
    active_alarm_id: Mapped[int | None] = mapped_column(default=None)

    network = relationship("Network", back_populates="devices")

    @property
    def name_or_mac(self) -> str:
        return self.name or self.mac_address

    def __repr__(self) -> str:
        return f"<Device {self.mac_address} ({self.operation_mode.value}) @ {self.ip_address}>"
