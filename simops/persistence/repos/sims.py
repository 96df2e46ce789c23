from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from simops.domain.models import Sim
from simops.persistence.upsert import upsert_row


async def get_sim(session: AsyncSession, sim_id: str) -> Sim | None:
    result = await session.execute(select(Sim).where(Sim.id == sim_id))
    return result.scalar_one_or_none()


async def upsert_sim(
    session: AsyncSession,
    *,
    account_id: str,
    fleet_id: str,
    sim_sid: str,
    iccid: str,
    unique_name: str | None,
    status: str,
    last_seen_at: datetime | None,
) -> None:
    # Ownership follows the fleet the device was synced under.
    mutable = {
        "account_id": account_id,
        "fleet_id": fleet_id,
        "iccid": iccid,
        "unique_name": unique_name,
        "status": status,
        "last_seen_at": last_seen_at,
    }
    await upsert_row(
        session,
        Sim,
        values={"sim_sid": sim_sid, **mutable},
        conflict_columns=["sim_sid"],
        update_values={**mutable, "updated_at": func.now()},
    )


async def resolve_targets(
    session: AsyncSession,
    account_id: str,
    *,
    sim_ids: list[str] | None = None,
    iccids: list[str] | None = None,
    unique_names: list[str] | None = None,
) -> list[Sim]:
    # Identifier kinds are OR-ed together, always within the one account.
    clauses = []
    if sim_ids:
        clauses.append(Sim.id.in_(sim_ids))
    if iccids:
        clauses.append(Sim.iccid.in_(iccids))
    if unique_names:
        clauses.append(Sim.unique_name.in_(unique_names))
    if not clauses:
        return []
    result = await session.execute(
        select(Sim)
        .where(Sim.account_id == account_id, or_(*clauses))
        .order_by(Sim.iccid, Sim.id)
    )
    return list(result.scalars().all())



async def count_by_account(session: AsyncSession) -> dict[str, int]:
    result = await session.execute(select(Sim.account_id, func.count(Sim.id)).group_by(Sim.account_id))
    return {account_id: count for account_id, count in result.all()}
