from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from simops.core.errors import DatabaseError
from simops.domain.models import Fleet
from simops.persistence.upsert import upsert_row


async def get_fleet_by_external_ref(session: AsyncSession, account_id: str, external_ref: str) -> Fleet | None:
    result = await session.execute(
        select(Fleet)
        .where(Fleet.account_id == account_id, Fleet.external_ref == external_ref)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_fleets_for_account(session: AsyncSession, account_id: str) -> list[Fleet]:
    result = await session.execute(
        select(Fleet).where(Fleet.account_id == account_id).order_by(Fleet.name, Fleet.id)
    )
    return list(result.scalars().all())


async def upsert_fleet(session: AsyncSession, *, account_id: str, external_ref: str, name: str) -> Fleet:
    await upsert_row(
        session,
        Fleet,
        values={"account_id": account_id, "external_ref": external_ref, "name": name},
        conflict_columns=["account_id", "external_ref"],
        update_values={"name": name, "updated_at": func.now()},
    )
    fleet = await get_fleet_by_external_ref(session, account_id, external_ref)
    if fleet is None:
        raise DatabaseError(f"fleet upsert failed for {account_id}/{external_ref}")
    return fleet


async def count_by_account(session: AsyncSession) -> dict[str, int]:
    result = await session.execute(select(Fleet.account_id, func.count(Fleet.id)).group_by(Fleet.account_id))
    return {account_id: count for account_id, count in result.all()}
