from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from simops.core.errors import ProviderHttpError
from simops.providers.fleet_api.base import (
    CommandLogPage,
    RemoteCommand,
    RemoteFleet,
    RemoteSim,
    TenantCredentials,
)


@dataclass
class SentCommand:
    client_id: str
    command: str
    device_external_id: str
    text: str | None


@dataclass
class FakeFleetApiClient:
    """In-memory provider for local runs and tests; keyed by tenant client id."""

    fleets: dict[str, list[RemoteFleet]] = field(default_factory=dict)
    devices: dict[tuple[str, str], list[RemoteSim]] = field(default_factory=dict)
    logs: dict[str, list[RemoteCommand]] = field(default_factory=dict)
    # Fleet refs that answer 404, and device sids whose sends fail.
    missing_fleets: set[str] = field(default_factory=set)
    failing_devices: set[str] = field(default_factory=set)
    failing_accounts: set[str] = field(default_factory=set)
    # Fleet refs that answer 503 for the given number of listings before succeeding.
    transient_failures: dict[str, int] = field(default_factory=dict)
    log_page_size: int = 50
    sent: list[SentCommand] = field(default_factory=list)
    calls: list[tuple[str, str]] = field(default_factory=list)

    async def aclose(self) -> None:
        return None

    def _check_account(self, credentials: TenantCredentials) -> None:
        if credentials.client_id in self.failing_accounts:
            raise ProviderHttpError(503, {"message": "unavailable"}, f"Provider unavailable for {credentials.label}")

    async def list_fleets(self, credentials: TenantCredentials) -> list[RemoteFleet]:
        self.calls.append(("list_fleets", credentials.client_id))
        self._check_account(credentials)
        return list(self.fleets.get(credentials.client_id, []))

    async def list_devices(self, credentials: TenantCredentials, fleet_external_ref: str) -> list[RemoteSim]:
        self.calls.append(("list_devices", fleet_external_ref))
        self._check_account(credentials)
        if fleet_external_ref in self.missing_fleets:
            raise ProviderHttpError(404, {"message": "fleet not found"})
        if self.transient_failures.get(fleet_external_ref, 0) > 0:
            self.transient_failures[fleet_external_ref] -= 1
            raise ProviderHttpError(503, {"message": "unavailable"}, "Provider unavailable")
        return list(self.devices.get((credentials.client_id, fleet_external_ref), []))

    async def send_command(
        self,
        credentials: TenantCredentials,
        *,
        command: str,
        device_external_id: str,
        text: str | None = None,
    ) -> dict[str, Any]:
        self.calls.append(("send_command", device_external_id))
        if device_external_id in self.failing_devices:
            raise ProviderHttpError(500, {"message": "send failed"}, f"Provider rejected command for {device_external_id}")
        self.sent.append(SentCommand(credentials.client_id, command, device_external_id, text))
        sid = f"HC{len(self.sent):06d}"
        self.logs.setdefault(device_external_id, []).append(
            RemoteCommand(
                sid=sid,
                status="queued",
                payload=text or "",
                command=command,
                sim_sid=device_external_id,
                created_at=datetime.now(timezone.utc).isoformat(),
            )
        )
        return {"sid": sid, "status": "queued"}

    async def list_command_logs(
        self,
        credentials: TenantCredentials,
        device_external_id: str,
        *,
        created_after: str | None = None,
        cursor: str | None = None,
        page_size: int = 50,
    ) -> CommandLogPage:
        self.calls.append(("list_command_logs", device_external_id))
        entries = self.logs.get(device_external_id, [])
        if created_after:
            entries = [entry for entry in entries if entry.created_at > created_after]
        # Cursor is the offset, mirroring the provider's opaque next-page path.
        offset = int(cursor.rsplit("=", 1)[-1]) if cursor else 0
        size = min(page_size, self.log_page_size)
        page = entries[offset:offset + size]
        next_offset = offset + size
        next_cursor = f"/SmsCommands?Sim={device_external_id}&Offset={next_offset}" if next_offset < len(entries) else None
        return CommandLogPage(entries=list(page), next_cursor=next_cursor)
