from datetime import datetime
from sqlalchemy import String, Float, Integer, Index
from sqlalchemy.orm import Mapped, mapped_column
from ridematch.database import Base, UTCDateTime


class DriverPresence(Base):
    __tablename__ = "driver_presence"

    # One row per driver, overwritten on every heartbeat
    driver_id: Mapped[str] = mapped_column(String, primary_key=True)
    lat: Mapped[float] = mapped_column(Float, nullable=False)
    lng: Mapped[float] = mapped_column(Float, nullable=False)
    last_seen: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    service: Mapped[str | None] = mapped_column(String(30), nullable=True)
    accuracy_m: Mapped[float | None] = mapped_column(Float, nullable=True)
    speed_kmh: Mapped[float | None] = mapped_column(Float, nullable=True)
    heading_deg: Mapped[float | None] = mapped_column(Float, nullable=True)
    device_os: Mapped[str | None] = mapped_column(String(30), nullable=True)
    app_version: Mapped[str | None] = mapped_column(String(30), nullable=True)
    battery_pct: Mapped[int | None] = mapped_column(Integer, nullable=True)

    __table_args__ = (
        Index("idx_presence_last_seen", "last_seen"),
        Index("idx_presence_location", "lat", "lng"),
    )
