from __future__ import annotations

from urllib.parse import parse_qs

import httpx
import pytest

from simops.core.errors import ProviderHttpError
from simops.providers.fleet_api.base import TenantCredentials
from simops.providers.fleet_api.client import HttpFleetApiClient
from simops.providers.fleet_api.tokens import TokenCache
from simops.services.resilience import RetryPolicy


BASE = "https://api.test/v1"
CREDS = TenantCredentials(label="Parent", client_id="client-parent", client_secret="s3cret")


def _client(handler) -> tuple[HttpFleetApiClient, httpx.AsyncClient]:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    policy = RetryPolicy(retries=0, base_delay_ms=1)
    tokens = TokenCache("https://auth.test/token", retry_policy=policy)
    return HttpFleetApiClient(BASE, token_cache=tokens, http_client=http, retry_policy=policy, page_size=2), http


def _token_response(request: httpx.Request) -> httpx.Response | None:
    if request.url.host == "auth.test":
        return httpx.Response(200, json={"access_token": "tok", "expires_in": 3600})
    return None


@pytest.mark.asyncio
async def test_list_fleets_follows_pages() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        token = _token_response(request)
        if token is not None:
            return token
        assert request.headers["Authorization"] == "Bearer tok"
        if request.url.params.get("Page") == "1":
            return httpx.Response(200, json={"fleets": [{"sid": "FL2", "friendly_name": "Vans"}], "meta": {}})
        return httpx.Response(
            200,
            json={
                "fleets": [{"sid": "FL1", "unique_name": "trucks"}, {"friendly_name": "no sid"}],
                "meta": {"next_page_url": f"{BASE}/Fleets?PageSize=2&Page=1"},
            },
        )

    client, http = _client(handler)
    async with http:
        fleets = await client.list_fleets(CREDS)
    assert [(f.sid, f.friendly_name) for f in fleets] == [("FL1", "trucks"), ("FL2", "Vans")]


@pytest.mark.asyncio
async def test_list_devices_falls_through_rejected_candidates() -> None:
    paths: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        token = _token_response(request)
        if token is not None:
            return token
        paths.append(request.url.path)
        if len(paths) <= 4:
            return httpx.Response(404, json={"message": "not found"})
        return httpx.Response(
            200,
            json={
                "sims": [
                    {"sid": "HS1", "iccid": "8901", "status": "active"},
                    {"sid": "HS2", "iccid": "8902", "status": "active", "fleet_sid": "other"},
                    {"sid": "HS3", "iccid": "8903", "unique_name": "van-1"},
                ]
            },
        )

    client, http = _client(handler)
    async with http:
        sims = await client.list_devices(CREDS, "FL1")
    assert len(paths) == 5
    assert [sim.sid for sim in sims] == ["HS1", "HS2", "HS3"]
    assert {sim.fleet_sid for sim in sims} == {"FL1"}
    assert sims[2].unique_name == "van-1"


@pytest.mark.asyncio
async def test_list_devices_raises_on_server_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        token = _token_response(request)
        if token is not None:
            return token
        return httpx.Response(500, json={"message": "boom"})

    client, http = _client(handler)
    async with http:
        with pytest.raises(ProviderHttpError) as excinfo:
            await client.list_devices(CREDS, "FL1")
    assert excinfo.value.status_code == 500


@pytest.mark.asyncio
async def test_list_devices_returns_empty_when_every_candidate_rejects() -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        token = _token_response(request)
        if token is not None:
            return token
        calls["count"] += 1
        return httpx.Response(400, json={"message": "bad parameter"})

    client, http = _client(handler)
    async with http:
        assert await client.list_devices(CREDS, "FL1") == []
    assert calls["count"] == 6


@pytest.mark.asyncio
async def test_send_command_posts_form_with_payload() -> None:
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        token = _token_response(request)
        if token is not None:
            return token
        captured.append(request)
        return httpx.Response(201, json={"sid": "HC1", "status": "queued"})

    client, http = _client(handler)
    async with http:
        data = await client.send_command(CREDS, command="reset", device_external_id="HS1")
    assert data["sid"] == "HC1"
    request = captured[0]
    assert request.method == "POST"
    assert request.url.path == "/v1/SmsCommands"
    form = parse_qs(request.content.decode(), keep_blank_values=True)
    assert form == {"Command": ["reset"], "Sim": ["HS1"], "Payload": [""]}


@pytest.mark.asyncio
async def test_unauthorized_response_invalidates_token() -> None:
    issued = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "auth.test":
            issued["count"] += 1
            return httpx.Response(200, json={"access_token": f"tok-{issued['count']}"})
        if request.headers["Authorization"] == "Bearer tok-1":
            return httpx.Response(401, json={"message": "expired"})
        return httpx.Response(200, json={"fleets": []})

    client, http = _client(handler)
    async with http:
        with pytest.raises(ProviderHttpError):
            await client.list_fleets(CREDS)
        assert await client.list_fleets(CREDS) == []
    assert issued["count"] == 2


@pytest.mark.asyncio
async def test_command_log_cursor_is_relative() -> None:
    paths: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        token = _token_response(request)
        if token is not None:
            return token
        paths.append(str(request.url))
        return httpx.Response(
            200,
            json={
                "sms_commands": [
                    {"sid": "HC1", "status": "delivered", "payload": "reset", "date_created": "2026-10-01T10:00:00Z"}
                ],
                "meta": {"next_page_url": f"{BASE}/SmsCommands?Sim=HS1&PageSize=1&Page=1"},
            },
        )

    client, http = _client(handler)
    async with http:
        page = await client.list_command_logs(CREDS, "HS1", page_size=1, created_after="2026-10-01T00:00:00Z")
        assert page.next_cursor == "/SmsCommands?Sim=HS1&PageSize=1&Page=1"
        assert page.entries[0].sid == "HC1"
        assert page.entries[0].status == "delivered"
        await client.list_command_logs(CREDS, "HS1", cursor=page.next_cursor)
    assert "CreatedAfter=" in paths[0]
    assert paths[1] == f"{BASE}/SmsCommands?Sim=HS1&PageSize=1&Page=1"
