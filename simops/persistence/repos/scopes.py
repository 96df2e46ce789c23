from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from simops.domain.models import UserScope
from simops.services.authz.scopes import ScopeGrant


async def get_scope(
    session: AsyncSession,
    *,
    user_id: str,
    account_id: str,
    fleet_id: str | None,
) -> UserScope | None:
    # NULL never equals NULL in SQL, so account-wide rows need IS NULL.
    fleet_clause = UserScope.fleet_id.is_(None) if fleet_id is None else UserScope.fleet_id == fleet_id
    result = await session.execute(
        select(UserScope).where(
            UserScope.user_id == user_id,
            UserScope.account_id == account_id,
            fleet_clause,
        )
    )
    return result.scalars().first()


async def grant_scope(
    session: AsyncSession,
    *,
    user_id: str,
    account_id: str,
    fleet_id: str | None,
    can_read: bool,
    can_write: bool,
    can_invite: bool,
) -> UserScope:
    existing = await get_scope(session, user_id=user_id, account_id=account_id, fleet_id=fleet_id)
    if existing is not None:
        existing.can_read = can_read
        existing.can_write = can_write
        existing.can_invite = can_invite
        await session.flush()
        return existing
    scope = UserScope(
        user_id=user_id,
        account_id=account_id,
        fleet_id=fleet_id,
        can_read=can_read,
        can_write=can_write,
        can_invite=can_invite,
    )
    session.add(scope)
    await session.flush()
    return scope


async def grant_full_scope(
    session: AsyncSession, *, user_id: str, account_id: str, fleet_id: str | None = None
) -> UserScope:
    return await grant_scope(
        session,
        user_id=user_id,
        account_id=account_id,
        fleet_id=fleet_id,
        can_read=True,
        can_write=True,
        can_invite=True,
    )


async def load_user_scopes(session: AsyncSession, user_id: str) -> list[ScopeGrant]:
    # Lets callers build an AuthContext from stored grants.
    result = await session.execute(
        select(UserScope)
        .where(UserScope.user_id == user_id)
        .order_by(UserScope.account_id, UserScope.fleet_id)
    )
    return [
        ScopeGrant(
            account_id=row.account_id,
            fleet_id=row.fleet_id,
            can_read=row.can_read,
            can_write=row.can_write,
            can_invite=row.can_invite,
        )
        for row in result.scalars().all()
    ]
