"""
Rides router: POST /v1/rides (assign), reads, and lifecycle transitions
POST /v1/rides/{id}/accept|consent|decline|start|complete
"""
import logging
from typing import Optional

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ridematch.config import get_settings
from ridematch.database import get_db, utcnow
from ridematch.errors import Forbidden
from ridematch.middleware.auth import Identity, get_current_driver, get_current_rider, get_current_user
from ridematch.middleware.idempotency import check_idempotency, store_idempotency_result
from ridematch.redis_client import cache_delete, cache_get, cache_set, get_redis, ride_cache_key
from ridematch.schemas.schemas import (
    ActiveRideResponse, AssignOutcomeEnum, AssignResponse, CompleteRideRequest,
    RideCreateRequest, RideListResponse, RideResponse, RideStatusEnum,
)
from ridematch.services import lifecycle
from ridematch.services.assignment import Location, assign
from ridematch.services.eligibility import EligibilityChecker, get_eligibility_checker

logger = logging.getLogger(__name__)
settings = get_settings()
router = APIRouter(prefix="/v1/rides", tags=["Rides"])

OUTCOME_MESSAGES = {
    AssignOutcomeEnum.no_drivers_available: "No drivers nearby",
    AssignOutcomeEnum.all_candidates_busy: "All nearby drivers became busy",
}


async def eligibility_checker(db: AsyncSession = Depends(get_db)) -> EligibilityChecker:
    return get_eligibility_checker(db)


@router.post("", response_model=AssignResponse)
async def request_ride(
    payload: RideCreateRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
    rider_id: str = Depends(get_current_rider),
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
):
    # 1. Idempotency check
    if idempotency_key:
        cached = await check_idempotency(request, redis, rider_id)
        if cached:
            return cached

    # 2. Candidate selection + bind
    pickup = Location(payload.pickup.lat, payload.pickup.lng)
    dropoff = Location(payload.dropoff.lat, payload.dropoff.lng) if payload.dropoff else None
    result = await assign(db, rider_id, pickup, dropoff=dropoff, dropoff_address=payload.dropoff_address)

    if result.matched:
        resp = AssignResponse(
            ok=True,
            outcome=result.outcome,
            ride_id=result.ride.id,
            status=RideStatusEnum.offered,
            expires_at=result.ride.expires_at,
        )
    else:
        resp = AssignResponse(ok=False, outcome=result.outcome, message=OUTCOME_MESSAGES[result.outcome])

    # 3. Store idempotency result
    if idempotency_key:
        await store_idempotency_result(redis, idempotency_key, rider_id, 200, resp.model_dump(mode="json"))
    return resp


@router.get("/active", response_model=ActiveRideResponse)
async def active_ride(
    db: AsyncSession = Depends(get_db),
    rider_id: str = Depends(get_current_rider),
):
    now = utcnow()
    ride = await lifecycle.active_ride_for_rider(db, rider_id, now=now)
    return ActiveRideResponse(ride=lifecycle.to_response(ride, now) if ride else None)


@router.get("/mine", response_model=RideListResponse)
async def my_rides(
    db: AsyncSession = Depends(get_db),
    rider_id: str = Depends(get_current_rider),
):
    now = utcnow()
    rides = await lifecycle.ride_history(db, rider_id=rider_id)
    return RideListResponse(rides=[lifecycle.to_response(r, now) for r in rides])


@router.get("/{ride_id}", response_model=RideResponse)
async def get_ride(
    ride_id: str,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
    identity: Identity = Depends(get_current_user),
):
    """Polled by both apps; effective status is recomputed even on a cache hit."""
    now = utcnow()
    cache_key = ride_cache_key(ride_id)

    # Cache-aside: check Redis first
    cached = await cache_get(redis, cache_key)
    if cached:
        stored = RideResponse.model_validate_json(cached)
        if identity.user_id not in (stored.rider_id, stored.driver_id):
            raise Forbidden("Not a participant of this ride")
        return stored.model_copy(update={"status": RideStatusEnum(lifecycle.effective_status(stored, now))})

    # DB fallback
    ride = await lifecycle.get_ride(db, ride_id, identity.user_id)
    await cache_set(
        redis, cache_key, RideResponse.model_validate(ride).model_dump_json(), ttl=settings.ride_cache_ttl_seconds
    )
    return lifecycle.to_response(ride, now)


async def _after_transition(redis: aioredis.Redis, ride) -> RideResponse:
    await cache_delete(redis, ride_cache_key(ride.id))
    return lifecycle.to_response(ride)


@router.post("/{ride_id}/accept", response_model=RideResponse)
async def accept_ride(
    ride_id: str,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
    eligibility: EligibilityChecker = Depends(eligibility_checker),
    driver_id: str = Depends(get_current_driver),
):
    """Driver accepts the offer before it expires."""
    ride = await lifecycle.accept(db, ride_id, driver_id, eligibility)
    return await _after_transition(redis, ride)


@router.post("/{ride_id}/consent", response_model=RideResponse)
async def consent_ride(
    ride_id: str,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
    rider_id: str = Depends(get_current_rider),
):
    """Rider approves the driver who accepted."""
    ride = await lifecycle.consent(db, ride_id, rider_id)
    return await _after_transition(redis, ride)


@router.post("/{ride_id}/decline", response_model=RideResponse)
async def decline_ride(
    ride_id: str,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
    rider_id: str = Depends(get_current_rider),
):
    ride = await lifecycle.decline(db, ride_id, rider_id)
    return await _after_transition(redis, ride)


@router.post("/{ride_id}/start", response_model=RideResponse)
async def start_ride(
    ride_id: str,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
    driver_id: str = Depends(get_current_driver),
):
    ride = await lifecycle.start(db, ride_id, driver_id)
    return await _after_transition(redis, ride)


@router.post("/{ride_id}/complete", response_model=RideResponse)
async def complete_ride(
    ride_id: str,
    payload: Optional[CompleteRideRequest] = None,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
    driver_id: str = Depends(get_current_driver),
):
    """Ends the ride; the driver may report the fare they settled with the rider."""
    ride = await lifecycle.complete(
        db,
        ride_id,
        driver_id,
        amount=payload.amount if payload else None,
        currency=payload.currency if payload else None,
    )
    return await _after_transition(redis, ride)
