from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Callable

import httpx

from simops.core.config import get_settings
from simops.core.errors import ProviderAuthError
from simops.providers.fleet_api.base import TenantCredentials, response_detail
from simops.services.resilience import RetryPolicy, default_retry_policy, with_retry
from simops.services.telemetry import increment_counter, record_external_call


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenCacheEntry:
    token: str
    expires_at: float


def _is_transport_error(exc: Exception) -> bool:
    return isinstance(exc, httpx.TransportError)


class TokenCache:
    """Per-tenant client-credentials tokens, keyed by client id.

    Concurrent callers for the same tenant share a single in-flight fetch, so
    a burst of commands against one tenant issues one token request.
    """

    def __init__(
        self,
        token_url: str,
        *,
        expiry_margin_s: float = 10.0,
        default_ttl_s: int = 3600,
        retry_policy: RetryPolicy | None = None,
        time_source: Callable[[], float] | None = None,
    ) -> None:
        self._token_url = token_url
        self._margin_s = expiry_margin_s
        self._default_ttl_s = default_ttl_s
        self._retry_policy = retry_policy or default_retry_policy()
        self._time = time_source or time.time
        self._entries: dict[str, TokenCacheEntry] = {}
        self._in_flight: dict[str, asyncio.Task[str]] = {}
        self._lock = asyncio.Lock()

    def cached_entry(self, client_id: str) -> TokenCacheEntry | None:
        return self._entries.get(client_id)

    def _valid_token(self, client_id: str) -> str | None:
        entry = self._entries.get(client_id)
        if entry is not None and entry.expires_at > self._time() + self._margin_s:
            return entry.token
        return None

    async def get_access_token(self, credentials: TenantCredentials, client: httpx.AsyncClient) -> str:
        key = credentials.client_id
        async with self._lock:
            token = self._valid_token(key)
            if token is not None:
                return token
            task = self._in_flight.get(key)
            if task is None:
                task = asyncio.ensure_future(self._fetch(credentials, client))
                self._in_flight[key] = task
            else:
                increment_counter("provider_token_shared_total")
        # shield: a cancelled waiter must not cancel the fetch other callers share.
        return await asyncio.shield(task)

    async def _fetch(self, credentials: TenantCredentials, client: httpx.AsyncClient) -> str:
        key = credentials.client_id
        try:
            return await self._request_token(credentials, client)
        finally:
            self._in_flight.pop(key, None)

    async def _request_token(self, credentials: TenantCredentials, client: httpx.AsyncClient) -> str:
        form = {
            "grant_type": "client_credentials",
            "client_id": credentials.client_id,
            "client_secret": credentials.client_secret,
        }
        if credentials.scope:
            form["scope"] = credentials.scope
        if credentials.audience:
            form["audience"] = credentials.audience

        async def _call() -> httpx.Response:
            return await client.post(self._token_url, data=form, headers={"Accept": "application/json"})

        start = time.monotonic()
        increment_counter("provider_token_requests_total")
        try:
            response = await with_retry(
                _call,
                retries=self._retry_policy.retries,
                base_delay_ms=self._retry_policy.base_delay_ms,
                retryable=_is_transport_error,
            )
        except httpx.HTTPError as exc:
            record_external_call(
                integration="provider.token",
                latency_ms=(time.monotonic() - start) * 1000.0,
                success=False,
            )
            logger.warning("provider_token_transport_failed account=%s", credentials.label, exc_info=exc)
            raise ProviderAuthError(
                0,
                {"error": exc.__class__.__name__},
                f"Failed to obtain provider token for {credentials.label}: {exc}",
            ) from exc

        record_external_call(
            integration="provider.token",
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=not response.is_error,
        )
        if response.is_error:
            detail = response_detail(response)
            logger.warning("provider_token_rejected account=%s status=%s", credentials.label, response.status_code)
            raise ProviderAuthError(
                response.status_code,
                detail,
                f"Failed to obtain provider token for {credentials.label}: "
                f"{response.status_code} {response.reason_phrase} {json.dumps(detail, default=str)}",
            )

        data = response_detail(response)
        token = data.get("access_token") if isinstance(data, dict) else None
        if not token:
            raise ProviderAuthError(
                response.status_code,
                data,
                f"Provider token response for {credentials.label} has no access_token",
            )
        expires_in = data.get("expires_in") or self._default_ttl_s
        entry = TokenCacheEntry(token=str(token), expires_at=self._time() + float(expires_in))
        self._entries[credentials.client_id] = entry
        return entry.token

    def invalidate(self, client_id: str) -> None:
        self._entries.pop(client_id, None)

    def clear(self) -> None:
        self._entries.clear()
        self._in_flight.clear()


_token_cache: TokenCache | None = None


def get_token_cache() -> TokenCache:
    # One cache per process so every client instance shares tokens.
    global _token_cache
    if _token_cache is None:
        settings = get_settings()
        _token_cache = TokenCache(
            settings.provider_token_url,
            expiry_margin_s=settings.token_expiry_margin_s,
            default_ttl_s=settings.token_default_ttl_s,
        )
    return _token_cache


def reset_token_cache() -> None:
    global _token_cache
    _token_cache = None
