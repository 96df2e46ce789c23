from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from simops.core.config import Settings, get_settings
from simops.core.errors import Forbidden, ProviderHttpError
from simops.domain.models import Account, Fleet
from simops.persistence.repos import accounts as accounts_repo
from simops.persistence.repos import fleets as fleets_repo
from simops.persistence.repos import scopes as scopes_repo
from simops.persistence.repos import sims as sims_repo
from simops.providers.fleet_api.base import FleetApiClient, RemoteSim, TenantCredentials, parse_timestamp
from simops.services.authz.scopes import (
    AuthContext,
    has_read_access,
    readable_account_ids,
    require_owner,
    writable_account_ids,
)
from simops.services.credentials import account_credentials
from simops.services.crypto.vault import encrypt_secret
from simops.services.resilience import bounded_map, is_transient_error, with_retry


logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class SyncedAccount:
    id: str
    label: str


@dataclass(frozen=True)
class FleetSyncResult:
    account_id: str
    fleets: int
    error: str | None = None


@dataclass(frozen=True)
class DeviceSyncSummary:
    account_id: str
    fleet_id: str | None = None
    synced: int | None = None
    error: str | None = None


class SyncOrchestrator:
    """Mirror provider accounts, fleets and SIMs into local storage.

    Runs are request-scoped. Accounts must be synced before fleets and fleets
    before devices; the caller is responsible for that ordering. Every write
    is an upsert, so re-running any step is safe.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        client: FleetApiClient,
        *,
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._client = client
        self._settings = settings or get_settings()

    def _key(self) -> bytes:
        return self._settings.encryption_key_bytes()

    async def sync_accounts_from_config(self, ctx: AuthContext) -> list[SyncedAccount]:
        require_owner(ctx, "Only the owner can sync accounts")
        configs = self._settings.provider_accounts()
        key = self._key()
        synced: list[SyncedAccount] = []
        async with self._session_factory() as session:
            for config in configs:
                account = await accounts_repo.upsert_account(
                    session,
                    label=config.label,
                    client_id=config.client_id,
                    client_secret_encrypted=encrypt_secret(config.client_secret, key=key),
                    oauth_scope=config.scope,
                    oauth_audience=config.audience,
                )
                await scopes_repo.grant_full_scope(session, user_id=ctx.user_id, account_id=account.id)
                synced.append(SyncedAccount(id=account.id, label=account.label))
            await session.commit()
        logger.info("accounts_synced count=%s owner=%s", len(synced), ctx.user_id)
        return synced

    async def _load_accounts(self, account_ids: list[str] | None) -> list[Account]:
        async with self._session_factory() as session:
            return await accounts_repo.list_accounts(session, account_ids)

    async def _all_account_ids(self) -> list[str]:
        async with self._session_factory() as session:
            return await accounts_repo.list_account_ids(session)

    async def _fleet_sync_account_ids(self, ctx: AuthContext, account_ids: list[str] | None) -> list[str]:
        if ctx.is_owner:
            return list(account_ids) if account_ids else await self._all_account_ids()
        writable = writable_account_ids(ctx.scopes)
        if not writable:
            raise Forbidden("Write scope required to sync fleets")
        if account_ids:
            return [account_id for account_id in account_ids if account_id in writable]
        return writable

    async def _device_sync_account_ids(self, ctx: AuthContext, account_ids: list[str] | None) -> list[str]:
        if ctx.is_owner:
            return list(account_ids) if account_ids else await self._all_account_ids()
        readable = readable_account_ids(ctx.scopes)
        if not readable:
            raise Forbidden("No access granted")
        targets = [account_id for account_id in account_ids if account_id in readable] if account_ids else readable
        if not targets:
            raise Forbidden("No permitted accounts in request")
        return targets

    async def sync_fleets(self, ctx: AuthContext, account_ids: list[str] | None = None) -> list[FleetSyncResult]:
        target_ids = await self._fleet_sync_account_ids(ctx, account_ids)
        accounts = await self._load_accounts(target_ids)

        async def _store_fleets(account: Account) -> int:
            credentials = account_credentials(account, key=self._key())
            remote_fleets = await self._client.list_fleets(credentials)
            async with self._session_factory() as session:
                for remote in remote_fleets:
                    fleet = await fleets_repo.upsert_fleet(
                        session,
                        account_id=account.id,
                        external_ref=remote.sid,
                        name=remote.friendly_name,
                    )
                    if ctx.is_owner:
                        await scopes_repo.grant_full_scope(
                            session, user_id=ctx.user_id, account_id=account.id, fleet_id=fleet.id
                        )
                await session.commit()
            return len(remote_fleets)

        async def _sync_account(account: Account) -> FleetSyncResult:
            try:
                count = await self._retry(lambda: _store_fleets(account))
            except Exception as exc:  # noqa: BLE001 - one account's failure must not stop the batch
                logger.warning(
                    "fleet_sync_failed account_id=%s account=%s error=%s",
                    account.id,
                    account.label,
                    exc,
                )
                return FleetSyncResult(account_id=account.id, fleets=0, error=str(exc) or exc.__class__.__name__)
            logger.info("fleet_sync_completed account=%s fleets=%s", account.label, count)
            return FleetSyncResult(account_id=account.id, fleets=count)

        return await bounded_map(accounts, _sync_account, concurrency=self._settings.sync_concurrency)

    async def _retry(self, operation: Callable[[], Awaitable[T]]) -> T:
        return await with_retry(
            operation,
            retries=self._settings.sync_item_retries,
            base_delay_ms=self._settings.sync_item_backoff_ms,
            retryable=is_transient_error,
        )

    async def _upsert_device(self, account_id: str, fleet_id: str, sim: RemoteSim) -> None:
        # One short transaction per device so a retry never replays siblings.
        async with self._session_factory() as session:
            await sims_repo.upsert_sim(
                session,
                account_id=account_id,
                fleet_id=fleet_id,
                sim_sid=sim.sid,
                iccid=sim.iccid,
                unique_name=sim.unique_name,
                status=sim.status,
                last_seen_at=parse_timestamp(sim.last_seen_at),
            )
            await session.commit()

    async def _sync_fleet_devices(
        self, account: Account, fleet: Fleet, credentials: TenantCredentials
    ) -> DeviceSyncSummary | None:
        try:
            remote_sims = await self._client.list_devices(credentials, fleet.external_ref)
        except ProviderHttpError as exc:
            if exc.status == 404:
                logger.warning(
                    "fleet_not_found_skipping account_id=%s account=%s fleet_id=%s fleet_ref=%s",
                    account.id,
                    account.label,
                    fleet.id,
                    fleet.external_ref,
                )
                return None
            raise

        for sim in remote_sims:
            async def _upsert(sim: RemoteSim = sim) -> None:
                await self._upsert_device(account.id, fleet.id, sim)

            await with_retry(
                _upsert,
                retries=self._settings.device_upsert_retries,
                base_delay_ms=self._settings.device_upsert_backoff_ms,
            )
        return DeviceSyncSummary(account_id=account.id, fleet_id=fleet.id, synced=len(remote_sims))

    async def _readable_fleets(self, ctx: AuthContext, account: Account, fleet_ids: list[str] | None) -> list[Fleet]:
        async with self._session_factory() as session:
            fleets = await fleets_repo.list_fleets_for_account(session, account.id)
        return [
            fleet
            for fleet in fleets
            if (not fleet_ids or fleet.id in fleet_ids)
            and (ctx.is_owner or has_read_access(ctx.scopes, account.id, fleet.id))
        ]

    async def sync_devices(
        self,
        ctx: AuthContext,
        account_ids: list[str] | None = None,
        fleet_ids: list[str] | None = None,
    ) -> list[DeviceSyncSummary]:
        target_ids = await self._device_sync_account_ids(ctx, account_ids)
        accounts = await self._load_accounts(target_ids)

        async def _sync_account(account: Account) -> list[DeviceSyncSummary]:
            try:
                credentials = account_credentials(account, key=self._key())
                targets = await self._retry(lambda: self._readable_fleets(ctx, account, fleet_ids))
                per_fleet = await bounded_map(
                    targets,
                    lambda fleet: self._sync_fleet_devices(account, fleet, credentials),
                    concurrency=self._settings.sync_concurrency,
                    retries=self._settings.sync_item_retries,
                    base_delay_ms=self._settings.sync_item_backoff_ms,
                    retryable=is_transient_error,
                )
            except Exception as exc:  # noqa: BLE001 - one account's failure must not stop the batch
                logger.warning(
                    "device_sync_failed account_id=%s account=%s error=%s",
                    account.id,
                    account.label,
                    exc,
                )
                return [DeviceSyncSummary(account_id=account.id, error=str(exc) or exc.__class__.__name__)]
            # Skipped fleets come back as None; the rest keep fleet order.
            return [summary for summary in per_fleet if summary is not None]

        per_account = await bounded_map(accounts, _sync_account, concurrency=self._settings.sync_concurrency)
        results = [summary for summaries in per_account for summary in summaries]
        logger.info("device_sync_completed accounts=%s fleets=%s", len(accounts), len(results))
        return results
