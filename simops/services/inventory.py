from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from simops.persistence.repos import accounts as accounts_repo
from simops.persistence.repos import fleets as fleets_repo
from simops.persistence.repos import sims as sims_repo
from simops.services.authz.scopes import AuthContext, require_owner


@dataclass(frozen=True)
class AccountInventory:
    account_id: str
    label: str
    fleets: int
    sims: int


@dataclass(frozen=True)
class InventorySummary:
    accounts: list[AccountInventory]
    total_fleets: int
    total_sims: int


async def inventory_summary(
    ctx: AuthContext, session_factory: async_sessionmaker[AsyncSession]
) -> InventorySummary:
    require_owner(ctx, "Only the owner can view inventory totals")
    async with session_factory() as session:
        accounts = await accounts_repo.list_accounts(session)
        fleet_counts = await fleets_repo.count_by_account(session)
        sim_counts = await sims_repo.count_by_account(session)
    rows = [
        AccountInventory(
            account_id=account.id,
            label=account.label,
            fleets=fleet_counts.get(account.id, 0),
            sims=sim_counts.get(account.id, 0),
        )
        for account in accounts
    ]
    return InventorySummary(
        accounts=rows,
        total_fleets=sum(row.fleets for row in rows),
        total_sims=sum(row.sims for row in rows),
    )
