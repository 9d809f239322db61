"""
Presence store: latest location and liveness per driver.

Rows are overwritten on every heartbeat, so the table stays one row per
driver no matter how often clients report.
"""
import logging
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from ridematch.config import get_settings
from ridematch.database import STORAGE_ERRORS, utcnow
from ridematch.errors import StorageUnavailable
from ridematch.models.presence import DriverPresence

logger = logging.getLogger(__name__)
settings = get_settings()

TELEMETRY_FIELDS = (
    "service", "accuracy_m", "speed_kmh", "heading_deg",
    "device_os", "app_version", "battery_pct",
)
# Kept from the previous heartbeat when a client omits them
STICKY_FIELDS = ("service", "device_os", "app_version")


def liveness_window() -> timedelta:
    return timedelta(seconds=settings.liveness_window_seconds)


def live_since(now: datetime) -> datetime:
    """Oldest last_seen that still counts as live at ``now``."""
    return now - liveness_window()


def _upsert_stmt(dialect_name: str, values: dict):
    if dialect_name == "postgresql":
        stmt = postgresql.insert(DriverPresence).values(**values)
    elif dialect_name == "sqlite":
        stmt = sqlite.insert(DriverPresence).values(**values)
    else:
        raise NotImplementedError(f"presence upsert not supported on {dialect_name}")

    table = DriverPresence.__table__
    update_cols = {
        "lat": stmt.excluded.lat,
        "lng": stmt.excluded.lng,
        "last_seen": stmt.excluded.last_seen,
    }
    for field in TELEMETRY_FIELDS:
        if field in STICKY_FIELDS:
            update_cols[field] = func.coalesce(stmt.excluded[field], table.c[field])
        else:
            update_cols[field] = stmt.excluded[field]
    return stmt.on_conflict_do_update(index_elements=[table.c.driver_id], set_=update_cols)


async def report_presence(
    db: AsyncSession,
    driver_id: str,
    lat: float,
    lng: float,
    telemetry: dict | None = None,
    now: datetime | None = None,
) -> None:
    """Idempotent upsert of the driver's current position and last-seen time."""
    now = now or utcnow()
    values = {"driver_id": driver_id, "lat": lat, "lng": lng, "last_seen": now}
    for field in TELEMETRY_FIELDS:
        values[field] = (telemetry or {}).get(field)

    try:
        await db.execute(_upsert_stmt(db.bind.dialect.name, values))
        await db.commit()
    except STORAGE_ERRORS as exc:
        await db.rollback()
        logger.error("Presence upsert failed driver=%s: %s", driver_id, exc)
        raise StorageUnavailable("Presence store unavailable") from exc


async def get_presence(db: AsyncSession, driver_id: str) -> DriverPresence | None:
    return await db.get(DriverPresence, driver_id, populate_existing=True)


async def is_live(db: AsyncSession, driver_id: str, as_of: datetime | None = None) -> bool:
    as_of = as_of or utcnow()
    result = await db.execute(
        select(DriverPresence.last_seen).where(DriverPresence.driver_id == driver_id)
    )
    last_seen = result.scalar_one_or_none()
    if last_seen is None:
        return False
    return as_of - last_seen <= liveness_window()
