from datetime import datetime

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from models.base import Base, utcnow


class Network(Base):
    __tablename__ = "networks"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100), unique=True)
    first_seen_at: Mapped[datetime] = mapped_column(default=utcnow)
    last_seen_at: Mapped[datetime] = mapped_column(default=utcnow)
    alerting_delay: Mapped[int] = mapped_column(default=300)  # seconds
    notify_destination: Mapped[str | None] = mapped_column(String(255), default=None)
    # network-level alarm only; device alarms are stamped on the device
    active_alarm_id: Mapped[int | None] = mapped_column(default=None)

    devices = relationship("Device", back_populates="network", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Network {self.name}>"
