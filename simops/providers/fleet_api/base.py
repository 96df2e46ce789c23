from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Protocol
from urllib.parse import quote


@dataclass(frozen=True)
class TenantCredentials:
    # Decrypted credential set for one tenant; never persisted in this form.
    label: str
    client_id: str
    client_secret: str = field(repr=False)
    scope: str | None = None
    audience: str | None = None


@dataclass(frozen=True)
class RemoteFleet:
    sid: str
    unique_name: str | None
    friendly_name: str


@dataclass(frozen=True)
class RemoteSim:
    sid: str
    iccid: str
    unique_name: str | None
    status: str
    fleet_sid: str
    fleet_name: str | None
    last_seen_at: str | None = None


@dataclass(frozen=True)
class RemoteCommand:
    sid: str
    status: str
    payload: str
    command: str
    sim_sid: str
    created_at: str


@dataclass(frozen=True)
class CommandLogPage:
    entries: list[RemoteCommand]
    next_cursor: str | None


@dataclass(frozen=True)
class DeviceListingCandidate:
    """One endpoint/parameter shape tried when listing a fleet's devices."""

    name: str
    path_template: str

    def first_path(self, fleet_ref: str, page_size: int) -> str:
        return self.path_template.format(fleet=quote(fleet_ref, safe=""), page_size=page_size)


# Tenants expose different endpoint shapes and query casings; tried in order.
DEVICE_LISTING_CANDIDATES: tuple[DeviceListingCandidate, ...] = (
    DeviceListingCandidate("fleet_nested", "/Fleets/{fleet}/Sims?PageSize={page_size}"),
    DeviceListingCandidate("sims_fleet_sid", "/Sims?FleetSid={fleet}&PageSize={page_size}"),
    DeviceListingCandidate("sims_fleet", "/Sims?Fleet={fleet}&PageSize={page_size}"),
    DeviceListingCandidate("fleet_nested_lower", "/fleets/{fleet}/sims?PageSize={page_size}"),
    DeviceListingCandidate("sims_lower_fleet_sid", "/sims?FleetSid={fleet}&PageSize={page_size}"),
    DeviceListingCandidate("sims_lower_camel", "/sims?fleetSid={fleet}&PageSize={page_size}"),
)

# Statuses that mean "this candidate shape does not apply", not "the call failed".
FALLBACK_STATUSES = frozenset({400, 404})


class FleetApiClient(Protocol):
    async def list_fleets(self, credentials: TenantCredentials) -> list[RemoteFleet]:
        ...

    async def list_devices(self, credentials: TenantCredentials, fleet_external_ref: str) -> list[RemoteSim]:
        ...

    async def send_command(
        self,
        credentials: TenantCredentials,
        *,
        command: str,
        device_external_id: str,
        text: str | None = None,
    ) -> dict[str, Any]:
        ...

    async def list_command_logs(
        self,
        credentials: TenantCredentials,
        device_external_id: str,
        *,
        created_after: str | None = None,
        cursor: str | None = None,
        page_size: int = 50,
    ) -> CommandLogPage:
        ...

    async def aclose(self) -> None:
        ...


def _first(item: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = item.get(key)
        if value is not None:
            return value
    return None


def _optional_str(value: Any) -> str | None:
    return str(value) if value else None


def normalize_fleet(item: Mapping[str, Any]) -> RemoteFleet:
    sid = str(_first(item, "sid", "id") or "")
    unique_name = _first(item, "unique_name", "uniqueName")
    friendly = _first(item, "friendly_name", "friendlyName") or unique_name or sid
    return RemoteFleet(sid=sid, unique_name=_optional_str(unique_name), friendly_name=str(friendly))


def normalize_sim(item: Mapping[str, Any]) -> RemoteSim:
    return RemoteSim(
        sid=str(_first(item, "sid", "id") or ""),
        iccid=str(_first(item, "iccid", "sim_iccid") or ""),
        unique_name=_optional_str(_first(item, "unique_name", "uniqueName")),
        status=str(_first(item, "status") or "unknown"),
        fleet_sid=str(_first(item, "fleet_sid", "fleetSid", "fleet_id") or ""),
        fleet_name=_optional_str(_first(item, "fleet_name", "fleetName")),
        last_seen_at=_optional_str(_first(item, "last_seen_at", "lastSeenAt")),
    )


def normalize_command(item: Mapping[str, Any], *, now: datetime) -> RemoteCommand:
    return RemoteCommand(
        sid=str(_first(item, "sid", "id") or ""),
        status=str(_first(item, "status") or "unknown"),
        payload=str(_first(item, "payload") or ""),
        command=str(_first(item, "command", "Command") or ""),
        sim_sid=str(_first(item, "sim_sid", "simSid") or ""),
        created_at=str(_first(item, "date_created", "created_at") or now.isoformat()),
    )


def extract_items(data: Mapping[str, Any], key: str) -> list[Mapping[str, Any]]:
    # List endpoints use either a resource-named key or a generic `data` key.
    items = data.get(key)
    if items is None:
        items = data.get("data")
    return [item for item in (items or []) if isinstance(item, Mapping)]


def next_page_url(data: Mapping[str, Any]) -> str | None:
    meta = data.get("meta")
    if not isinstance(meta, Mapping):
        return None
    value = _first(meta, "next_page_url", "nextPageUrl")
    return str(value) if value else None


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def response_detail(response: Any) -> Any:
    # Best-effort error body; providers are not consistent about JSON errors.
    try:
        return response.json()
    except ValueError:
        return {"status": response.status_code}
