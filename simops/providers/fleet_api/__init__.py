from __future__ import annotations

from simops.core.config import get_settings
from simops.core.errors import ConfigError
from simops.providers.fleet_api.base import FleetApiClient, TenantCredentials
from simops.providers.fleet_api.client import HttpFleetApiClient, build_http_client
from simops.providers.fleet_api.fake import FakeFleetApiClient


def get_fleet_api_client() -> FleetApiClient:
    settings = get_settings()
    provider = (settings.fleet_provider or "http").lower()

    if provider == "fake":
        return FakeFleetApiClient()
    if provider != "http":
        raise ConfigError(f"Unsupported fleet provider: {provider}")
    return build_http_client()


__all__ = [
    "FakeFleetApiClient",
    "FleetApiClient",
    "HttpFleetApiClient",
    "TenantCredentials",
    "get_fleet_api_client",
]
