from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from simops.core.errors import DatabaseError
from simops.domain.models import Account
from simops.persistence.upsert import upsert_row


async def get_account(session: AsyncSession, account_id: str) -> Account | None:
    result = await session.execute(select(Account).where(Account.id == account_id))
    return result.scalar_one_or_none()


async def get_account_by_client_id(session: AsyncSession, client_id: str) -> Account | None:
    result = await session.execute(
        select(Account)
        .where(Account.client_id == client_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_accounts(session: AsyncSession, account_ids: list[str] | None = None) -> list[Account]:
    # Stable ordering keeps batch results deterministic across runs.
    stmt = select(Account).order_by(Account.label, Account.id)
    if account_ids is not None:
        stmt = stmt.where(Account.id.in_(account_ids))
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_account_ids(session: AsyncSession) -> list[str]:
    result = await session.execute(select(Account.id).order_by(Account.label, Account.id))
    return list(result.scalars().all())


async def upsert_account(
    session: AsyncSession,
    *,
    label: str,
    client_id: str,
    client_secret_encrypted: str,
    oauth_scope: str | None,
    oauth_audience: str | None,
) -> Account:
    # is_parent is decided once at creation and left alone on update.
    await upsert_row(
        session,
        Account,
        values={
            "label": label,
            "client_id": client_id,
            "client_secret_encrypted": client_secret_encrypted,
            "oauth_scope": oauth_scope,
            "oauth_audience": oauth_audience,
            "is_parent": label.lower() == "parent",
        },
        conflict_columns=["client_id"],
        update_values={
            "label": label,
            "client_secret_encrypted": client_secret_encrypted,
            "oauth_scope": oauth_scope,
            "oauth_audience": oauth_audience,
            "updated_at": func.now(),
        },
    )
    account = await get_account_by_client_id(session, client_id)
    if account is None:
        raise DatabaseError(f"account upsert failed for client_id {client_id}")
    return account
