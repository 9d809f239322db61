"""
Ride lifecycle state machine.

    offered -> consented -> enroute -> ontrip -> completed
    offered -> expired              (past expires_at, no acceptance)
    offered | consented -> declined (rider turns the driver down)

Every write is a single-row conditional UPDATE keyed on the status that
was read, so two racing actors cannot both move the same ride. Reads
apply expiry and rider auto-consent on the fly (``effective_status``).
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import and_, not_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ridematch.config import get_settings
from ridematch.database import STORAGE_ERRORS, utcnow
from ridematch.errors import (
    Forbidden, InvalidTransition, NotEligible, OfferExpired, RideNotFound, StorageUnavailable,
)
from ridematch.models.ride import Ride
from ridematch.schemas.schemas import RideResponse, RideStatusEnum
from ridematch.services.eligibility import EligibilityChecker
from ridematch.services.expiry import is_expired

logger = logging.getLogger(__name__)
settings = get_settings()

DRIVER_OFFER_STATUSES = ("offered", "consented", "enroute")
# Non-terminal states in the order a ride moves through them
PROGRESSION = ("offered", "consented", "enroute", "ontrip")
MAX_WRITE_ATTEMPTS = 3


@dataclass(frozen=True)
class Transition:
    name: str
    actor: str            # "driver" | "rider"
    sources: tuple[str, ...]
    target: str
    stamp: str            # timestamp column set on success


TRANSITIONS: dict[str, Transition] = {
    "accept": Transition("accept", "driver", ("offered",), "consented", "driver_accepted_at"),
    "consent": Transition("consent", "rider", ("consented",), "enroute", "rider_consented_at"),
    "start": Transition("start", "driver", ("enroute",), "ontrip", "started_at"),
    "complete": Transition("complete", "driver", ("ontrip",), "completed", "ended_at"),
    "decline": Transition("decline", "rider", ("offered", "consented"), "declined", "ended_at"),
}


def consent_grace() -> timedelta:
    return timedelta(seconds=settings.consent_grace_seconds)


def effective_status(ride: Ride, now: datetime | None = None) -> str:
    """Stored status with offer expiry and rider auto-consent applied."""
    now = now or utcnow()
    if is_expired(ride, now):
        return "expired"
    if (
        ride.status == "consented"
        and ride.driver_accepted_at is not None
        and now > ride.driver_accepted_at + consent_grace()
    ):
        return "enroute"
    return ride.status


def is_valid_transition(current: str, target: str) -> bool:
    return any(current in t.sources and t.target == target for t in TRANSITIONS.values())


def to_response(ride: Ride, now: datetime | None = None) -> RideResponse:
    resp = RideResponse.model_validate(ride)
    return resp.model_copy(update={"status": RideStatusEnum(effective_status(ride, now))})


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

async def load_ride(db: AsyncSession, ride_id: str) -> Ride:
    ride = await db.get(Ride, ride_id, populate_existing=True)
    if ride is None:
        raise RideNotFound("Ride not found")
    return ride


async def get_ride(db: AsyncSession, ride_id: str, actor_id: str) -> Ride:
    ride = await load_ride(db, ride_id)
    if actor_id not in (ride.rider_id, ride.driver_id):
        raise Forbidden("Not a participant of this ride")
    return ride


def _not_stale_offer(now: datetime):
    return not_(and_(Ride.status == "offered", Ride.expires_at < now))


async def active_ride_for_rider(db: AsyncSession, rider_id: str, now: datetime | None = None) -> Ride | None:
    now = now or utcnow()
    result = await db.execute(
        select(Ride)
        .where(Ride.rider_id == rider_id, Ride.ended_at.is_(None), _not_stale_offer(now))
        .order_by(Ride.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def driver_offers(db: AsyncSession, driver_id: str, now: datetime | None = None) -> list[Ride]:
    """Offers awaiting the driver plus rides they accepted but have not started."""
    now = now or utcnow()
    result = await db.execute(
        select(Ride)
        .where(
            Ride.driver_id == driver_id,
            Ride.status.in_(DRIVER_OFFER_STATUSES),
            Ride.ended_at.is_(None),
            _not_stale_offer(now),
        )
        .order_by(Ride.created_at.desc())
        .limit(10)
    )
    return list(result.scalars())


async def ride_history(
    db: AsyncSession,
    rider_id: str | None = None,
    driver_id: str | None = None,
    limit: int = 100,
) -> list[Ride]:
    stmt = select(Ride).order_by(Ride.created_at.desc()).limit(limit)
    if rider_id is not None:
        stmt = stmt.where(Ride.rider_id == rider_id)
    if driver_id is not None:
        stmt = stmt.where(Ride.driver_id == driver_id)
    result = await db.execute(stmt)
    return list(result.scalars())


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

def _check_actor(ride: Ride, transition: Transition, actor_id: str) -> None:
    bound = ride.driver_id if transition.actor == "driver" else ride.rider_id
    if actor_id != bound:
        raise Forbidden(f"Only the ride's {transition.actor} may {transition.name}")


def _already_applied(ride: Ride, transition: Transition, current: str) -> bool:
    if current == transition.target:
        return True
    # A retried step the ride has since moved past, e.g. accept after auto-consent
    return (
        getattr(ride, transition.stamp) is not None
        and transition.target in PROGRESSION
        and current in PROGRESSION
        and PROGRESSION.index(current) > PROGRESSION.index(transition.target)
    )


def _check_state(ride: Ride, transition: Transition, current: str) -> bool:
    """True when this transition already happened (idempotent retry)."""
    if _already_applied(ride, transition, current):
        return True
    if current == "expired":
        raise OfferExpired("Offer expired")
    if current not in transition.sources:
        raise InvalidTransition(f"Cannot {transition.name} a ride that is {current}")
    return False


def _write_values(ride: Ride, transition: Transition, now: datetime, extra: dict) -> dict:
    values = {"status": transition.target, transition.stamp: now, "updated_at": now, **extra}
    # Starting an auto-consented ride records when the grace period lapsed.
    if transition.name == "start" and ride.rider_consented_at is None and ride.driver_accepted_at is not None:
        values["rider_consented_at"] = ride.driver_accepted_at + consent_grace()
    return values


async def _apply(
    db: AsyncSession,
    ride_id: str,
    transition: Transition,
    actor_id: str,
    now: datetime,
    extra: dict | None = None,
    eligibility: EligibilityChecker | None = None,
) -> Ride:
    extra = extra or {}
    for _ in range(MAX_WRITE_ATTEMPTS):
        ride = await load_ride(db, ride_id)
        _check_actor(ride, transition, actor_id)
        current = effective_status(ride, now)
        if _check_state(ride, transition, current):
            logger.info("Ride %s already %s, %s is a no-op", ride_id, current, transition.name)
            return ride

        if eligibility is not None and not await eligibility.is_eligible_to_accept_rides(actor_id):
            raise NotEligible("Payment setup required before accepting rides")

        conditions = [Ride.id == ride_id, Ride.status == ride.status]
        if ride.status == "offered":
            conditions.append(Ride.expires_at >= now)

        try:
            result = await db.execute(
                update(Ride)
                .where(*conditions)
                .values(**_write_values(ride, transition, now, extra))
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        except STORAGE_ERRORS as exc:
            await db.rollback()
            logger.error("Ride %s %s failed: %s", ride_id, transition.name, exc)
            raise StorageUnavailable("Ride store unavailable") from exc

        if result.rowcount == 1:
            logger.info("Ride %s %s -> %s by %s", ride_id, ride.status, transition.target, actor_id)
            return await load_ride(db, ride_id)
        # Lost a race with another writer (or the deadline passed); classify again.
        logger.info("Ride %s changed during %s, re-reading", ride_id, transition.name)

    raise InvalidTransition(f"Ride {ride_id} kept changing during {transition.name}")


async def accept(
    db: AsyncSession,
    ride_id: str,
    driver_id: str,
    eligibility: EligibilityChecker,
    now: datetime | None = None,
) -> Ride:
    return await _apply(db, ride_id, TRANSITIONS["accept"], driver_id, now or utcnow(), eligibility=eligibility)


async def consent(db: AsyncSession, ride_id: str, rider_id: str, now: datetime | None = None) -> Ride:
    return await _apply(db, ride_id, TRANSITIONS["consent"], rider_id, now or utcnow())


async def decline(db: AsyncSession, ride_id: str, rider_id: str, now: datetime | None = None) -> Ride:
    return await _apply(db, ride_id, TRANSITIONS["decline"], rider_id, now or utcnow())


async def start(db: AsyncSession, ride_id: str, driver_id: str, now: datetime | None = None) -> Ride:
    return await _apply(db, ride_id, TRANSITIONS["start"], driver_id, now or utcnow())


async def complete(
    db: AsyncSession,
    ride_id: str,
    driver_id: str,
    amount: Decimal | None = None,
    currency: str | None = None,
    now: datetime | None = None,
) -> Ride:
    extra = {}
    if amount is not None:
        extra = {"amount": amount, "currency": currency or settings.default_currency}
    return await _apply(db, ride_id, TRANSITIONS["complete"], driver_id, now or utcnow(), extra=extra)
