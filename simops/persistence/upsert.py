from __future__ import annotations

from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from simops.core.errors import DatabaseError


def dialect_insert(session: AsyncSession, model: Any) -> Any:
    # ON CONFLICT is dialect-specific; Postgres in production, SQLite in tests.
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise DatabaseError(f"upsert is not supported for dialect {dialect}")


async def upsert_row(
    session: AsyncSession,
    model: Any,
    *,
    values: dict[str, Any],
    conflict_columns: list[str],
    update_values: dict[str, Any],
) -> None:
    # Single atomic statement per row so concurrent syncs stay last-write-wins.
    stmt = dialect_insert(session, model).values(**values)
    stmt = stmt.on_conflict_do_update(index_elements=conflict_columns, set_=update_values)
    await session.execute(stmt)
