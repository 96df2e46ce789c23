from __future__ import annotations

import json
import logging
import time
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote

import httpx

from simops.core.config import get_settings
from simops.core.errors import ProviderError, ProviderHttpError
from simops.providers.fleet_api.base import (
    DEVICE_LISTING_CANDIDATES,
    FALLBACK_STATUSES,
    CommandLogPage,
    DeviceListingCandidate,
    RemoteFleet,
    RemoteSim,
    TenantCredentials,
    extract_items,
    next_page_url,
    normalize_command,
    normalize_fleet,
    normalize_sim,
    response_detail,
)
from simops.providers.fleet_api.tokens import TokenCache, get_token_cache
from simops.services.resilience import RetryPolicy, default_retry_policy, with_retry
from simops.services.telemetry import record_external_call


logger = logging.getLogger(__name__)


def _is_transport_error(exc: Exception) -> bool:
    return isinstance(exc, httpx.TransportError)


class HttpFleetApiClient:
    """Typed wrapper over the provider's fleet, SIM and SMS command endpoints."""

    def __init__(
        self,
        base_url: str,
        *,
        token_cache: TokenCache | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout_s: float = 20.0,
        retry_policy: RetryPolicy | None = None,
        page_size: int = 500,
        candidates: tuple[DeviceListingCandidate, ...] = DEVICE_LISTING_CANDIDATES,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._tokens = token_cache or get_token_cache()
        self._client = http_client
        self._owns_client = http_client is None
        self._timeout_s = timeout_s
        self._retry_policy = retry_policy or default_retry_policy()
        self._page_size = page_size
        self._candidates = candidates

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            # One pooled client per provider client instance.
            self._client = httpx.AsyncClient(timeout=self._timeout_s)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _url(self, path: str) -> str:
        if path.startswith("http"):
            return path
        return f"{self._base_url}{path if path.startswith('/') else '/' + path}"

    def strip_base(self, url: str) -> str:
        # Cursors are stored relative so they survive base URL normalization.
        if url.startswith(self._base_url):
            return url[len(self._base_url):]
        return url

    async def _request(
        self,
        credentials: TenantCredentials,
        method: str,
        path: str,
        *,
        data: dict[str, str] | None = None,
    ) -> Any:
        client = self._get_client()
        token = await self._tokens.get_access_token(credentials, client)
        url = self._url(path)
        headers = {"Accept": "application/json", "Authorization": f"Bearer {token}"}

        async def _call() -> httpx.Response:
            return await client.request(method, url, data=data, headers=headers, timeout=self._timeout_s)

        start = time.monotonic()
        try:
            response = await with_retry(
                _call,
                retries=self._retry_policy.retries,
                base_delay_ms=self._retry_policy.base_delay_ms,
                retryable=_is_transport_error,
            )
        except httpx.HTTPError as exc:
            record_external_call(
                integration="provider.api",
                latency_ms=(time.monotonic() - start) * 1000.0,
                success=False,
            )
            raise ProviderError(
                0,
                {"error": exc.__class__.__name__},
                f"Provider API unreachable for {credentials.label}: {exc}",
            ) from exc
        record_external_call(
            integration="provider.api",
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=not response.is_error,
        )
        if response.is_error:
            detail = response_detail(response)
            if response.status_code == 401:
                # Token revoked before its reported expiry; fetch a new one next time.
                self._tokens.invalidate(credentials.client_id)
            raise ProviderHttpError(
                response.status_code,
                detail,
                f"Provider API request failed ({response.status_code}): {json.dumps(detail, default=str)}",
            )
        return response_detail(response)

    async def list_fleets(self, credentials: TenantCredentials) -> list[RemoteFleet]:
        fleets: list[RemoteFleet] = []
        next_path: str | None = f"/Fleets?PageSize={self._page_size}"
        while next_path:
            data = await self._request(credentials, "GET", next_path)
            for item in extract_items(data, "fleets"):
                fleet = normalize_fleet(item)
                if fleet.sid:
                    fleets.append(fleet)
            next_url = next_page_url(data)
            next_path = self.strip_base(next_url) if next_url else None
        return fleets

    async def _list_candidate(
        self, credentials: TenantCredentials, candidate: DeviceListingCandidate, fleet_ref: str
    ) -> list[RemoteSim]:
        sims: list[RemoteSim] = []
        visited: set[str] = set()
        next_path: str | None = candidate.first_path(fleet_ref, self._page_size)
        while next_path and next_path not in visited:
            visited.add(next_path)
            data = await self._request(credentials, "GET", next_path)
            for item in extract_items(data, "sims"):
                sim = normalize_sim(item)
                if sim.sid:
                    # Stamp the fleet we asked for; some shapes omit or differ on it.
                    sims.append(replace(sim, fleet_sid=fleet_ref))
            next_url = next_page_url(data)
            next_path = self.strip_base(next_url) if next_url else None
        return sims

    async def list_devices(self, credentials: TenantCredentials, fleet_external_ref: str) -> list[RemoteSim]:
        for candidate in self._candidates:
            try:
                sims = await self._list_candidate(credentials, candidate, fleet_external_ref)
            except ProviderHttpError as exc:
                if exc.status in FALLBACK_STATUSES:
                    logger.debug(
                        "device_listing_candidate_rejected candidate=%s fleet=%s status=%s",
                        candidate.name,
                        fleet_external_ref,
                        exc.status,
                    )
                    continue
                raise
            if sims:
                return sims
        return []

    async def send_command(
        self,
        credentials: TenantCredentials,
        *,
        command: str,
        device_external_id: str,
        text: str | None = None,
    ) -> dict[str, Any]:
        # Payload must be present, even empty, for the provider to accept the command.
        form = {"Command": command, "Sim": device_external_id, "Payload": text or ""}
        data = await self._request(credentials, "POST", "/SmsCommands", data=form)
        return data if isinstance(data, dict) else {}

    async def list_command_logs(
        self,
        credentials: TenantCredentials,
        device_external_id: str,
        *,
        created_after: str | None = None,
        cursor: str | None = None,
        page_size: int = 50,
    ) -> CommandLogPage:
        if cursor:
            path = cursor
        else:
            path = f"/SmsCommands?Sim={quote(device_external_id, safe='')}&PageSize={page_size}"
            if created_after:
                path += f"&CreatedAfter={quote(created_after, safe='')}"
        data = await self._request(credentials, "GET", path)
        now = datetime.now(timezone.utc)
        entries = [normalize_command(item, now=now) for item in extract_items(data, "sms_commands")]
        next_url = next_page_url(data)
        return CommandLogPage(entries=entries, next_cursor=self.strip_base(next_url) if next_url else None)


def build_http_client() -> HttpFleetApiClient:
    settings = get_settings()
    return HttpFleetApiClient(
        settings.provider_base_url,
        timeout_s=settings.provider_timeout_s,
        page_size=settings.fleet_page_size,
    )
