"""
Driver-rider assignment.

Flow:
  1. Select candidates around the pickup (requester excluded)
  2. For each candidate, in order, INSERT an `offered` ride bound to them
  3. The partial unique index uq_rides_driver_open rejects the insert when
     the driver already holds an open ride -> next candidate
  4. First successful insert wins; exhaustion -> all_candidates_busy

No locks are taken: the index is the only serialisation point between
concurrent assignments touching the same driver.
"""
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ridematch.config import get_settings
from ridematch.database import STORAGE_ERRORS, utcnow
from ridematch.errors import StorageUnavailable
from ridematch.models.ride import Ride
from ridematch.schemas.schemas import AssignOutcomeEnum
from ridematch.services.candidates import SearchPolicy, select_candidates
from ridematch.services.expiry import offer_ttl, release_stale_offer

logger = logging.getLogger(__name__)
settings = get_settings()


@dataclass(frozen=True)
class Location:
    lat: float
    lng: float


@dataclass
class AssignmentResult:
    outcome: AssignOutcomeEnum
    ride: Ride | None = None

    @property
    def ride_id(self) -> str | None:
        return self.ride.id if self.ride else None

    @property
    def matched(self) -> bool:
        return self.outcome == AssignOutcomeEnum.matched


async def assign(
    db: AsyncSession,
    rider_id: str,
    pickup: Location,
    dropoff: Location | None = None,
    dropoff_address: str | None = None,
    now: datetime | None = None,
    policy: SearchPolicy | None = None,
) -> AssignmentResult:
    """Bind one driver to a new ride request, or report why none could be bound."""
    now = now or utcnow()
    candidates = await select_candidates(
        db, pickup.lat, pickup.lng, exclude_driver_ids={rider_id}, now=now, policy=policy,
    )
    if not candidates:
        return AssignmentResult(AssignOutcomeEnum.no_drivers_available)

    return await bind_first_available(
        db, rider_id, pickup, candidates, dropoff=dropoff, dropoff_address=dropoff_address, now=now,
    )


async def bind_first_available(
    db: AsyncSession,
    rider_id: str,
    pickup: Location,
    candidates: list[str],
    dropoff: Location | None = None,
    dropoff_address: str | None = None,
    now: datetime | None = None,
) -> AssignmentResult:
    now = now or utcnow()
    storage_errors: list[Exception] = []

    for driver_id in candidates:
        try:
            ride = await _bind(db, rider_id, driver_id, pickup, dropoff, dropoff_address, now)
        except IntegrityError:
            await db.rollback()
            logger.info("Driver %s became busy before bind, trying next candidate", driver_id)
            continue
        except STORAGE_ERRORS as exc:
            await db.rollback()
            storage_errors.append(exc)
            logger.error("Bind failed rider=%s driver=%s: %s", rider_id, driver_id, exc)
            if len(storage_errors) >= settings.assign_max_storage_errors:
                raise StorageUnavailable("Ride store unavailable during assignment") from exc
            continue

        logger.info("Matched rider=%s to driver=%s ride=%s", rider_id, driver_id, ride.id)
        return AssignmentResult(AssignOutcomeEnum.matched, ride)

    if storage_errors:
        # Some candidates were never actually tried; do not report them as busy.
        raise StorageUnavailable("Ride store unavailable during assignment") from storage_errors[-1]

    logger.warning("All %d candidate(s) for rider=%s became busy", len(candidates), rider_id)
    return AssignmentResult(AssignOutcomeEnum.all_candidates_busy)


async def _bind(
    db: AsyncSession,
    rider_id: str,
    driver_id: str,
    pickup: Location,
    dropoff: Location | None,
    dropoff_address: str | None,
    now: datetime,
) -> Ride:
    """One transaction: free the driver's lapsed offer, then claim them."""
    released = await release_stale_offer(db, driver_id, now)
    if released:
        logger.info("Released %d expired offer(s) held by driver=%s", released, driver_id)

    ride = Ride(
        rider_id=rider_id,
        driver_id=driver_id,
        pickup_lat=pickup.lat,
        pickup_lng=pickup.lng,
        dropoff_lat=dropoff.lat if dropoff else None,
        dropoff_lng=dropoff.lng if dropoff else None,
        dropoff_address=dropoff_address,
        status="offered",
        created_at=now,
        expires_at=now + offer_ttl(),
        updated_at=now,
    )
    db.add(ride)
    await db.flush()
    await db.commit()
    return ride
