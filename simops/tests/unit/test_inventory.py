from __future__ import annotations

import pytest

from simops.core.errors import Forbidden
from simops.services.authz.scopes import AuthContext
from simops.services.inventory import inventory_summary


@pytest.mark.asyncio
async def test_inventory_counts_per_account(session_factory, synced) -> None:
    summary = await inventory_summary(synced, session_factory)
    assert [(row.label, row.fleets, row.sims) for row in summary.accounts] == [("North", 1, 1), ("Parent", 2, 3)]
    assert (summary.total_fleets, summary.total_sims) == (3, 4)


@pytest.mark.asyncio
async def test_inventory_is_owner_only(session_factory, synced) -> None:
    with pytest.raises(Forbidden):
        await inventory_summary(AuthContext(user_id="agent-1"), session_factory)
