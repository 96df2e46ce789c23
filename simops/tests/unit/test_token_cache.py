from __future__ import annotations

import asyncio

import httpx
import pytest

from simops.core.errors import ProviderAuthError
from simops.providers.fleet_api.base import TenantCredentials
from simops.providers.fleet_api.tokens import TokenCache
from simops.services.resilience import RetryPolicy
from simops.services.telemetry import get_counter


TOKEN_URL = "https://auth.test/oauth/token"
CREDS = TenantCredentials(label="Parent", client_id="client-parent", client_secret="s3cret", scope="fleet.read")


def _cache(now: dict[str, float] | None = None) -> TokenCache:
    clock = now if now is not None else {"t": 1000.0}
    return TokenCache(
        TOKEN_URL,
        expiry_margin_s=10,
        retry_policy=RetryPolicy(retries=0, base_delay_ms=1),
        time_source=lambda: clock["t"],
    )


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_request() -> None:
    requests: list[httpx.Request] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        await asyncio.sleep(0.01)
        return httpx.Response(200, json={"access_token": "tok-1", "expires_in": 3600})

    cache = _cache()
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        tokens = await asyncio.gather(*(cache.get_access_token(CREDS, client) for _ in range(5)))

    assert tokens == ["tok-1"] * 5
    assert len(requests) == 1
    body = requests[0].content.decode()
    assert "grant_type=client_credentials" in body
    assert "client_id=client-parent" in body
    assert "scope=fleet.read" in body
    assert get_counter("provider_token_requests_total") == 1


@pytest.mark.asyncio
async def test_token_refreshes_inside_expiry_margin() -> None:
    now = {"t": 1000.0}
    issued = iter(["tok-1", "tok-2"])

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"access_token": next(issued), "expires_in": 60})

    cache = _cache(now)
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        assert await cache.get_access_token(CREDS, client) == "tok-1"
        now["t"] = 1040.0
        assert await cache.get_access_token(CREDS, client) == "tok-1"
        # 60s lifetime minus the 10s margin.
        now["t"] = 1051.0
        assert await cache.get_access_token(CREDS, client) == "tok-2"


@pytest.mark.asyncio
async def test_rejected_request_raises_and_clears_in_flight() -> None:
    responses = iter(
        [
            httpx.Response(401, json={"error": "invalid_client"}),
            httpx.Response(200, json={"access_token": "tok-ok"}),
        ]
    )

    def handler(request: httpx.Request) -> httpx.Response:
        return next(responses)

    cache = _cache()
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(ProviderAuthError) as excinfo:
            await cache.get_access_token(CREDS, client)
        assert excinfo.value.status == 401
        assert "Parent" in str(excinfo.value)
        assert await cache.get_access_token(CREDS, client) == "tok-ok"


@pytest.mark.asyncio
async def test_missing_access_token_is_an_auth_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"token_type": "bearer"})

    cache = _cache()
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(ProviderAuthError):
            await cache.get_access_token(CREDS, client)
    assert cache.cached_entry("client-parent") is None


@pytest.mark.asyncio
async def test_transport_failure_is_wrapped() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    cache = _cache()
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(ProviderAuthError) as excinfo:
            await cache.get_access_token(CREDS, client)
    assert excinfo.value.status == 0
