"""
Offer expiry.

Expiry is decided on read: an offer nobody accepted before ``expires_at``
is expired whether or not the row says so. The sweep below only persists
that outcome so the driver's open-ride slot is released without waiting
for the next assignment touching them.
"""
import asyncio
import logging
from datetime import datetime, timedelta

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ridematch.config import get_settings
from ridematch.database import STORAGE_ERRORS, utcnow
from ridematch.errors import StorageUnavailable
from ridematch.models.ride import Ride

logger = logging.getLogger(__name__)
settings = get_settings()


def offer_ttl() -> timedelta:
    return timedelta(seconds=settings.offer_ttl_seconds)


def is_expired(ride: Ride, now: datetime | None = None) -> bool:
    now = now or utcnow()
    return ride.status == "offered" and now > ride.expires_at


def _stale_offers(now: datetime):
    return (
        Ride.status == "offered",
        Ride.ended_at.is_(None),
        Ride.expires_at < now,
    )


async def release_stale_offer(db: AsyncSession, driver_id: str, now: datetime) -> int:
    """Close the driver's expired offer, if any. Caller owns the transaction."""
    result = await db.execute(
        update(Ride)
        .where(Ride.driver_id == driver_id, *_stale_offers(now))
        .values(status="expired", ended_at=Ride.expires_at, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


async def expire_stale_offers(db: AsyncSession, now: datetime | None = None) -> int:
    now = now or utcnow()
    try:
        result = await db.execute(
            update(Ride)
            .where(*_stale_offers(now))
            .values(status="expired", ended_at=Ride.expires_at, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
    except STORAGE_ERRORS as exc:
        await db.rollback()
        raise StorageUnavailable("Could not expire stale offers") from exc
    return result.rowcount or 0


class OfferExpiryMonitor:
    """Periodic sweep run from the application lifespan."""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession], interval_seconds: float):
        self.sessionmaker = sessionmaker
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task | None = None

    def start(self) -> None:
        if self._task is None and self.interval_seconds > 0:
            self._task = asyncio.create_task(self._run(), name="offer-expiry-monitor")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("Offer expiry monitor had already stopped with an error")
        self._task = None

    async def sweep_once(self) -> int:
        async with self.sessionmaker() as db:
            expired = await expire_stale_offers(db)
        if expired:
            logger.info("Expired %d stale offer(s)", expired)
        return expired

    async def _run(self) -> None:
        while True:
            try:
                await self.sweep_once()
            except StorageUnavailable as exc:
                logger.error("Offer sweep failed, retrying next tick: %s", exc.__cause__ or exc)
            except Exception:
                logger.exception("Offer sweep crashed, retrying next tick")
            await asyncio.sleep(self.interval_seconds)
