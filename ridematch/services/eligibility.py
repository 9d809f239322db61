"""
Driver onboarding/payment collaborator.

A driver may accept offers only once payment collection is set up. The
default checker reads the driver_accounts table; when an onboarding
service URL is configured the check goes over HTTP instead.
"""
import asyncio
import logging
from typing import Protocol

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from ridematch.config import get_settings
from ridematch.errors import CollaboratorUnavailable
from ridematch.models.driver_account import DriverAccount

logger = logging.getLogger(__name__)
settings = get_settings()

MAX_ATTEMPTS = 3


class EligibilityChecker(Protocol):
    async def is_eligible_to_accept_rides(self, driver_id: str) -> bool: ...


class DatabaseEligibility:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def is_eligible_to_accept_rides(self, driver_id: str) -> bool:
        account = await self.db.get(DriverAccount, driver_id)
        return bool(account and account.payment_active and account.payment_link)


class HttpEligibility:
    """
    GET {base_url}/drivers/{driver_id}/eligibility -> {"eligible": bool}

    Retries transport errors and 5xx with exponential backoff; a 404 means
    the driver never onboarded.
    """

    def __init__(self, base_url: str, client: httpx.AsyncClient | None = None, backoff_base: float = 0.5):
        self.base_url = base_url.rstrip("/")
        self.client = client
        self.backoff_base = backoff_base

    async def is_eligible_to_accept_rides(self, driver_id: str) -> bool:
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                return await self._fetch(driver_id)
            except (httpx.TransportError, httpx.HTTPStatusError) as exc:
                if attempt == MAX_ATTEMPTS:
                    logger.error("Eligibility check failed after %d attempts driver=%s: %s", attempt, driver_id, exc)
                    raise CollaboratorUnavailable("Onboarding service unavailable") from exc
                await asyncio.sleep(self.backoff_base * 2 ** (attempt - 1))
        return False

    async def _fetch(self, driver_id: str) -> bool:
        url = f"{self.base_url}/drivers/{driver_id}/eligibility"
        headers = {"Authorization": f"Bearer {settings.onboarding_api_key}"} if settings.onboarding_api_key else {}
        if self.client is not None:
            resp = await self.client.get(url, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=settings.onboarding_timeout_seconds) as client:
                resp = await client.get(url, headers=headers)
        if resp.status_code == 404:
            return False
        resp.raise_for_status()
        return bool(resp.json().get("eligible"))


def get_eligibility_checker(db: AsyncSession) -> EligibilityChecker:
    if settings.onboarding_base_url:
        return HttpEligibility(settings.onboarding_base_url)
    return DatabaseEligibility(db)
