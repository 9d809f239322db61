"""
Drivers router: POST /v1/drivers/heartbeat, GET /v1/drivers/nearby,
                GET /v1/drivers/me/offers, GET /v1/drivers/me/rides
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ridematch.config import get_settings
from ridematch.database import get_db, utcnow
from ridematch.middleware.auth import get_current_driver
from ridematch.schemas.schemas import HeartbeatRequest, HeartbeatResponse, NearbyResponse, RideListResponse
from ridematch.services import lifecycle
from ridematch.services.candidates import count_nearby
from ridematch.services.presence import report_presence

logger = logging.getLogger(__name__)
settings = get_settings()
router = APIRouter(prefix="/v1/drivers", tags=["Drivers"])


@router.post("/heartbeat", response_model=HeartbeatResponse)
async def heartbeat(
    payload: HeartbeatRequest,
    db: AsyncSession = Depends(get_db),
    driver_id: str = Depends(get_current_driver),
):
    """
    High-frequency endpoint: every GPS tick plus a keep-alive re-send.
    Overwrites the driver's single presence row.
    """
    await report_presence(db, driver_id, payload.lat, payload.lng, payload.telemetry())
    return HeartbeatResponse(next_heartbeat_sec=settings.heartbeat_interval_seconds)


@router.get("/nearby", response_model=NearbyResponse)
async def nearby(
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    width: Optional[float] = Query(default=None, gt=0, description="half-width in degrees"),
    height: Optional[float] = Query(default=None, gt=0, description="half-height in degrees"),
    db: AsyncSession = Depends(get_db),
):
    """Live driver count around a point. Display only; dispatch never reads it."""
    result = await count_nearby(db, lat, lng, half_width=width, half_height=height)
    return NearbyResponse(**result)


@router.get("/me/offers", response_model=RideListResponse)
async def my_offers(
    db: AsyncSession = Depends(get_db),
    driver_id: str = Depends(get_current_driver),
):
    now = utcnow()
    rides = await lifecycle.driver_offers(db, driver_id, now=now)
    return RideListResponse(rides=[lifecycle.to_response(r, now) for r in rides])


@router.get("/me/rides", response_model=RideListResponse)
async def my_rides(
    db: AsyncSession = Depends(get_db),
    driver_id: str = Depends(get_current_driver),
):
    now = utcnow()
    rides = await lifecycle.ride_history(db, driver_id=driver_id)
    return RideListResponse(rides=[lifecycle.to_response(r, now) for r in rides])
