import uuid
from datetime import datetime
from decimal import Decimal
from sqlalchemy import String, Float, Numeric, Index, text
from sqlalchemy.orm import Mapped, mapped_column
from ridematch.database import Base, UTCDateTime


class Ride(Base):
    __tablename__ = "rides"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    rider_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    driver_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)

    pickup_lat: Mapped[float] = mapped_column(Float, nullable=False)
    pickup_lng: Mapped[float] = mapped_column(Float, nullable=False)
    dropoff_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    dropoff_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    dropoff_address: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # offered | consented | enroute | ontrip | completed | expired | declined
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="offered", index=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    driver_accepted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    rider_consented_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    ended_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    amount: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    currency: Mapped[str | None] = mapped_column(String(5), nullable=True)

    __table_args__ = (
        # At most one open ride per driver; assignment relies on this to detect races.
        Index(
            "uq_rides_driver_open",
            "driver_id",
            unique=True,
            postgresql_where=text("ended_at IS NULL"),
            sqlite_where=text("ended_at IS NULL"),
        ),
    )
