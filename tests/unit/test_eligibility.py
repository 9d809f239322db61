"""
Unit tests for the HTTP onboarding/payment eligibility client.
"""
import httpx
import pytest

from ridematch.errors import CollaboratorUnavailable, StorageUnavailable
from ridematch.services.eligibility import HttpEligibility


def client_for(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
class TestHttpEligibility:
    async def test_eligible_driver(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.path)
            return httpx.Response(200, json={"eligible": True})

        async with client_for(handler) as client:
            checker = HttpEligibility("http://onboarding.test/", client=client, backoff_base=0)
            assert await checker.is_eligible_to_accept_rides("driver-1") is True
        assert seen == ["/drivers/driver-1/eligibility"]

    async def test_ineligible_driver(self):
        async with client_for(lambda r: httpx.Response(200, json={"eligible": False})) as client:
            checker = HttpEligibility("http://onboarding.test", client=client, backoff_base=0)
            assert await checker.is_eligible_to_accept_rides("driver-1") is False

    async def test_unknown_driver_is_not_eligible(self):
        async with client_for(lambda r: httpx.Response(404)) as client:
            checker = HttpEligibility("http://onboarding.test", client=client, backoff_base=0)
            assert await checker.is_eligible_to_accept_rides("ghost") is False

    async def test_transient_failure_is_retried(self):
        responses = iter([httpx.Response(503), httpx.Response(200, json={"eligible": True})])

        async with client_for(lambda r: next(responses)) as client:
            checker = HttpEligibility("http://onboarding.test", client=client, backoff_base=0)
            assert await checker.is_eligible_to_accept_rides("driver-1") is True

    async def test_persistent_failure_raises_unavailable(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        async with client_for(handler) as client:
            checker = HttpEligibility("http://onboarding.test", client=client, backoff_base=0)
            with pytest.raises(CollaboratorUnavailable) as exc_info:
                await checker.is_eligible_to_accept_rides("driver-1")
        assert isinstance(exc_info.value, StorageUnavailable)
        assert len(calls) == 3
