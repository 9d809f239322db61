from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, field_validator


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class RideStatusEnum(str, Enum):
    offered = "offered"
    consented = "consented"
    enroute = "enroute"
    ontrip = "ontrip"
    completed = "completed"
    expired = "expired"
    declined = "declined"


class AssignOutcomeEnum(str, Enum):
    matched = "matched"
    no_drivers_available = "no_drivers_available"
    all_candidates_busy = "all_candidates_busy"


# ---------------------------------------------------------------------------
# Presence schemas
# ---------------------------------------------------------------------------

class HeartbeatRequest(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    service: Optional[str] = Field(default=None, max_length=30)
    accuracy_m: Optional[float] = Field(default=None, ge=0)
    speed_kmh: Optional[float] = Field(default=None, ge=0)
    heading_deg: Optional[float] = Field(default=None, ge=0, lt=360)
    device_os: Optional[str] = Field(default=None, max_length=30)
    app_version: Optional[str] = Field(default=None, max_length=30)
    battery_pct: Optional[int] = Field(default=None, ge=0, le=100)

    def telemetry(self) -> dict:
        return self.model_dump(exclude={"lat", "lng"}, exclude_none=True)


class HeartbeatResponse(BaseModel):
    ok: bool = True
    next_heartbeat_sec: int


class NearbyResponse(BaseModel):
    ok: bool = True
    count: int
    recent_total: int
    nearest_distance_km: Optional[float] = None
    bounds: dict[str, float]


# ---------------------------------------------------------------------------
# Ride schemas
# ---------------------------------------------------------------------------

class Point(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class RideCreateRequest(BaseModel):
    pickup: Point
    dropoff: Optional[Point] = None
    dropoff_address: Optional[str] = Field(default=None, max_length=500)


class AssignResponse(BaseModel):
    ok: bool
    outcome: AssignOutcomeEnum
    ride_id: Optional[str] = None
    status: Optional[RideStatusEnum] = None
    expires_at: Optional[datetime] = None
    message: Optional[str] = None


class RideResponse(BaseModel):
    id: str
    rider_id: str
    driver_id: Optional[str] = None
    status: RideStatusEnum
    pickup_lat: float
    pickup_lng: float
    dropoff_lat: Optional[float] = None
    dropoff_lng: Optional[float] = None
    dropoff_address: Optional[str] = None
    created_at: datetime
    expires_at: datetime
    driver_accepted_at: Optional[datetime] = None
    rider_consented_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None

    model_config = {"from_attributes": True}


class ActiveRideResponse(BaseModel):
    ok: bool = True
    ride: Optional[RideResponse] = None


class RideListResponse(BaseModel):
    ok: bool = True
    rides: list[RideResponse]


class CompleteRideRequest(BaseModel):
    amount: Optional[Decimal] = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=5)

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: Optional[str]) -> Optional[str]:
        return v.upper() if v else v
