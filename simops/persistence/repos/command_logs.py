from __future__ import annotations

from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from simops.domain.models import CommandLog
from simops.persistence.upsert import upsert_row


DIRECTION_OUTBOUND = "outbound"
DIRECTION_PROVIDER = "provider"


async def append_outbound(
    session: AsyncSession,
    *,
    account_id: str,
    sim_id: str,
    command: str,
    payload: str,
    created_at: datetime,
) -> CommandLog:
    entry = CommandLog(
        account_id=account_id,
        sim_id=sim_id,
        command=command,
        direction=DIRECTION_OUTBOUND,
        payload=payload,
        status="queued",
        created_at=created_at,
    )
    session.add(entry)
    await session.flush()
    return entry


async def upsert_provider_entry(
    session: AsyncSession,
    *,
    account_id: str,
    sim_id: str,
    provider_sid: str,
    command: str,
    payload: str,
    status: str,
    created_at: datetime | None,
) -> None:
    # Provider sid is the natural key; only the status moves after creation.
    values = {
        "account_id": account_id,
        "sim_id": sim_id,
        "provider_sid": provider_sid,
        "command": command,
        "direction": DIRECTION_PROVIDER,
        "payload": payload,
        "status": status,
    }
    if created_at is not None:
        values["created_at"] = created_at
    await upsert_row(
        session,
        CommandLog,
        values=values,
        conflict_columns=["provider_sid"],
        update_values={"status": status},
    )
