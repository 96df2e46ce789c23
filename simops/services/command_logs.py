from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from simops.core.config import Settings, get_settings
from simops.core.errors import NotFound
from simops.domain.models import Account, Sim
from simops.persistence.repos import accounts as accounts_repo
from simops.persistence.repos import command_logs as command_logs_repo
from simops.persistence.repos import sims as sims_repo
from simops.providers.fleet_api.base import CommandLogPage, FleetApiClient, parse_timestamp
from simops.services.authz.scopes import AuthContext, assert_readable
from simops.services.credentials import account_credentials


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconcileSummary:
    sim_id: str
    pages: int
    entries: int
    complete: bool


class CommandLogService:
    """Read and persist the provider's command history for a single device."""

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

    async def _load_device(self, ctx: AuthContext, sim_id: str, account_id: str) -> tuple[Account, Sim]:
        async with self._session_factory() as session:
            account = await accounts_repo.get_account(session, account_id)
            sim = await sims_repo.get_sim(session, sim_id)
        if account is None or sim is None or sim.account_id != account.id:
            raise NotFound("SIM not found")
        if not ctx.is_owner:
            assert_readable(ctx.scopes, account.id, sim.fleet_id)
        return account, sim

    async def list_device_logs(
        self,
        ctx: AuthContext,
        sim_id: str,
        account_id: str,
        *,
        cursor: str | None = None,
        created_after: str | None = None,
        page_size: int | None = None,
    ) -> CommandLogPage:
        account, sim = await self._load_device(ctx, sim_id, account_id)
        credentials = account_credentials(account, key=self._settings.encryption_key_bytes())
        return await self._client.list_command_logs(
            credentials,
            sim.sim_sid,
            created_after=created_after,
            cursor=cursor,
            page_size=page_size or self._settings.command_log_page_size,
        )

    async def reconcile_device_logs(
        self,
        ctx: AuthContext,
        sim_id: str,
        account_id: str,
        *,
        created_after: str | None = None,
        max_pages: int | None = None,
    ) -> ReconcileSummary:
        """Walk provider log pages and upsert each entry by its provider sid.

        At most ``max_pages`` pages are fetched; ``complete`` is False when the
        provider still had more pages. Re-running only moves entry statuses.
        """
        account, sim = await self._load_device(ctx, sim_id, account_id)
        credentials = account_credentials(account, key=self._settings.encryption_key_bytes())
        limit = max_pages or self._settings.reconcile_max_pages

        pages = 0
        entries = 0
        cursor: str | None = None
        while pages < limit:
            page = await self._client.list_command_logs(
                credentials,
                sim.sim_sid,
                created_after=created_after,
                cursor=cursor,
                page_size=self._settings.command_log_page_size,
            )
            pages += 1
            async with self._session_factory() as session:
                for entry in page.entries:
                    if not entry.sid:
                        continue
                    await command_logs_repo.upsert_provider_entry(
                        session,
                        account_id=account.id,
                        sim_id=sim.id,
                        provider_sid=entry.sid,
                        command=entry.command,
                        payload=entry.payload,
                        status=entry.status,
                        created_at=parse_timestamp(entry.created_at),
                    )
                    entries += 1
                await session.commit()
            cursor = page.next_cursor
            if not cursor:
                break

        complete = cursor is None
        if not complete:
            logger.warning(
                "command_log_reconcile_truncated account=%s sim=%s pages=%s",
                account.label,
                sim.sim_sid,
                pages,
            )
        logger.info(
            "command_log_reconciled account=%s sim=%s pages=%s entries=%s",
            account.label,
            sim.sim_sid,
            pages,
            entries,
        )
        return ReconcileSummary(sim_id=sim.id, pages=pages, entries=entries, complete=complete)
