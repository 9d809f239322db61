"""
Candidate selection for a pickup point.

Flow:
  1. Walk the search tiers of the policy, narrowest first
  2. Per tier: live drivers inside the lat/lng rectangle with no busy ride
  3. First non-empty tier wins; ordering is most recently seen first

The rectangle is a coarse geofence, not a radius search.
"""
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from math import radians, sin, cos, sqrt, atan2

from sqlalchemy import and_, exists, func, not_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ridematch.config import get_settings
from ridematch.database import utcnow
from ridematch.models.presence import DriverPresence
from ridematch.models.ride import Ride
from ridematch.services.presence import live_since

logger = logging.getLogger(__name__)
settings = get_settings()

NEARBY_MIN_HALF_DEG = 0.01
NEARBY_MAX_HALF_DEG = 1.0
NEARBY_SAMPLE_SIZE = 5


@dataclass(frozen=True)
class SearchTier:
    half_width_deg: float
    half_height_deg: float

    def bounds(self, lat: float, lng: float) -> dict[str, float]:
        return {
            "min_lat": lat - self.half_height_deg,
            "max_lat": lat + self.half_height_deg,
            "min_lng": lng - self.half_width_deg,
            "max_lng": lng + self.half_width_deg,
        }


@dataclass(frozen=True)
class SearchPolicy:
    """Bounded escalation: each tier is tried once, in order."""

    tiers: tuple[SearchTier, ...]

    @classmethod
    def from_settings(cls) -> "SearchPolicy":
        return cls(tiers=tuple(SearchTier(d, d) for d in settings.search_tiers_deg))


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Approximate straight-line distance in km (diagnostics only)."""
    R = 6371
    phi1, phi2 = radians(lat1), radians(lat2)
    dphi = radians(lat2 - lat1)
    dlambda = radians(lng2 - lng1)
    a = sin(dphi / 2) ** 2 + cos(phi1) * cos(phi2) * sin(dlambda / 2) ** 2
    return 2 * R * atan2(sqrt(a), sqrt(1 - a))


def busy_ride_clause(driver_col, now: datetime):
    """
    EXISTS an open ride for the driver that still holds them.

    An offer past its deadline with no acceptance does not count, even
    while its ended_at is still NULL.
    """
    stale_offer = and_(Ride.status == "offered", Ride.expires_at < now)
    return exists().where(
        Ride.driver_id == driver_col,
        Ride.ended_at.is_(None),
        not_(stale_offer),
    )


def _in_rectangle(bounds: dict[str, float]):
    return and_(
        DriverPresence.lat.between(bounds["min_lat"], bounds["max_lat"]),
        DriverPresence.lng.between(bounds["min_lng"], bounds["max_lng"]),
    )


async def _query_tier(
    db: AsyncSession,
    tier: SearchTier,
    lat: float,
    lng: float,
    exclude: set[str],
    now: datetime,
) -> list[str]:
    stmt = (
        select(DriverPresence.driver_id)
        .where(
            DriverPresence.last_seen >= live_since(now),
            _in_rectangle(tier.bounds(lat, lng)),
            not_(busy_ride_clause(DriverPresence.driver_id, now)),
        )
        .order_by(DriverPresence.last_seen.desc())
        .limit(settings.candidate_limit + len(exclude))
    )
    result = await db.execute(stmt)
    rows = [driver_id for driver_id in result.scalars() if driver_id not in exclude]
    return rows[: settings.candidate_limit]


async def select_candidates(
    db: AsyncSession,
    pickup_lat: float,
    pickup_lng: float,
    exclude_driver_ids: Iterable[str] = (),
    now: datetime | None = None,
    policy: SearchPolicy | None = None,
) -> list[str]:
    """Ordered driver ids eligible for binding; empty means no drivers nearby."""
    now = now or utcnow()
    policy = policy or SearchPolicy.from_settings()
    exclude = set(exclude_driver_ids)

    for index, tier in enumerate(policy.tiers):
        candidates = await _query_tier(db, tier, pickup_lat, pickup_lng, exclude, now)
        if candidates:
            return candidates
        if index + 1 < len(policy.tiers):
            logger.warning(
                "No candidates within ±%.2f° of (%.5f, %.5f), widening to ±%.2f°",
                tier.half_height_deg, pickup_lat, pickup_lng,
                policy.tiers[index + 1].half_height_deg,
            )

    logger.warning("No drivers nearby (%.5f, %.5f) after %d tiers", pickup_lat, pickup_lng, len(policy.tiers))
    return []


def _clamp(value: float | None, default: float) -> float:
    if value is None:
        return default
    return max(NEARBY_MIN_HALF_DEG, min(NEARBY_MAX_HALF_DEG, value))


async def count_nearby(
    db: AsyncSession,
    lat: float,
    lng: float,
    half_width: float | None = None,
    half_height: float | None = None,
    now: datetime | None = None,
) -> dict:
    """
    Rider-facing diagnostics: how many live drivers sit in the rectangle.
    Not used for dispatch; the count is never widened.
    """
    now = now or utcnow()
    default_half = settings.search_tiers_deg[0]
    tier = SearchTier(_clamp(half_width, default_half), _clamp(half_height, default_half))
    bounds = tier.bounds(lat, lng)
    live = DriverPresence.last_seen >= live_since(now)

    recent_total = await db.scalar(select(func.count()).select_from(DriverPresence).where(live))
    count = await db.scalar(
        select(func.count()).select_from(DriverPresence).where(live, _in_rectangle(bounds))
    )
    samples = await db.execute(
        select(DriverPresence.lat, DriverPresence.lng)
        .where(live)
        .order_by(DriverPresence.last_seen.desc())
        .limit(NEARBY_SAMPLE_SIZE)
    )
    distances = [haversine_km(lat, lng, row.lat, row.lng) for row in samples]
    nearest = round(min(distances), 3) if distances else None

    if not count:
        logger.info("Nearby: 0 drivers in rectangle around (%.5f, %.5f), %d live overall", lat, lng, recent_total or 0)

    return {
        "count": count or 0,
        "recent_total": recent_total or 0,
        "nearest_distance_km": nearest,
        "bounds": bounds,
    }
