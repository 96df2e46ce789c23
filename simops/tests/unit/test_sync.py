from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import func, select

from simops.core.errors import Forbidden
from simops.domain.models import Account, Fleet, Sim, UserScope
from simops.providers.fleet_api.base import RemoteSim
from simops.services.authz.scopes import AuthContext, ScopeGrant
from simops.services.crypto.vault import decrypt_secret
from simops.services.sync import SyncOrchestrator


async def _count(session_factory, model) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


async def _sims_by_sid(session_factory) -> dict[str, Sim]:
    async with session_factory() as session:
        rows = (await session.execute(select(Sim))).scalars().all()
    return {row.sim_sid: row for row in rows}


@pytest.mark.asyncio
async def test_account_sync_encrypts_secrets_and_grants_owner(session_factory, settings, fake_client, owner, key_bytes) -> None:
    orchestrator = SyncOrchestrator(session_factory, fake_client, settings=settings)
    synced = await orchestrator.sync_accounts_from_config(owner)
    assert [account.label for account in synced] == ["Parent", "North"]

    async with session_factory() as session:
        accounts = {a.client_id: a for a in (await session.execute(select(Account))).scalars().all()}
        scopes = (await session.execute(select(UserScope))).scalars().all()
    parent = accounts["client-parent"]
    assert parent.is_parent is True
    assert accounts["client-north"].is_parent is False
    assert accounts["client-north"].oauth_scope == "fleet.read"
    assert "secret-parent" not in parent.client_secret_encrypted
    assert decrypt_secret(parent.client_secret_encrypted, key=key_bytes) == "secret-parent"
    assert len(scopes) == 2
    assert all(s.fleet_id is None and s.can_read and s.can_write and s.can_invite for s in scopes)

    # Re-running refreshes rows in place.
    await orchestrator.sync_accounts_from_config(owner)
    assert await _count(session_factory, Account) == 2
    assert await _count(session_factory, UserScope) == 2


@pytest.mark.asyncio
async def test_account_sync_is_owner_only(session_factory, settings, fake_client) -> None:
    orchestrator = SyncOrchestrator(session_factory, fake_client, settings=settings)
    with pytest.raises(Forbidden, match="Only the owner can sync accounts"):
        await orchestrator.sync_accounts_from_config(AuthContext(user_id="agent-1"))


@pytest.mark.asyncio
async def test_device_sync_is_idempotent(session_factory, settings, fake_client, synced) -> None:
    assert await _count(session_factory, Fleet) == 3
    assert await _count(session_factory, Sim) == 4
    before = await _sims_by_sid(session_factory)
    assert before["HS-1"].last_seen_at is not None
    assert before["HS-3"].status == "inactive"

    orchestrator = SyncOrchestrator(session_factory, fake_client, settings=settings)
    await orchestrator.sync_fleets(synced)
    summaries = await orchestrator.sync_devices(synced)
    assert sorted(s.synced for s in summaries) == [1, 1, 2]

    after = await _sims_by_sid(session_factory)
    assert await _count(session_factory, Fleet) == 3
    assert await _count(session_factory, Sim) == 4
    for sid, row in before.items():
        other = after[sid]
        assert (other.id, other.iccid, other.unique_name, other.status, other.fleet_id, other.account_id) == (
            row.id,
            row.iccid,
            row.unique_name,
            row.status,
            row.fleet_id,
            row.account_id,
        )


@pytest.mark.asyncio
async def test_device_sync_updates_changed_fields(session_factory, settings, fake_client, synced) -> None:
    sims = fake_client.devices[("client-parent", "FL-vans")]
    sims[0] = RemoteSim("HS-3", "8903", "van-renamed", "active", "FL-vans", "Vans", None)

    orchestrator = SyncOrchestrator(session_factory, fake_client, settings=settings)
    await orchestrator.sync_devices(synced)
    row = (await _sims_by_sid(session_factory))["HS-3"]
    assert (row.unique_name, row.status) == ("van-renamed", "active")


@pytest.mark.asyncio
async def test_fleet_sync_records_per_account_failure(session_factory, settings, fake_client, owner) -> None:
    orchestrator = SyncOrchestrator(session_factory, fake_client, settings=settings)
    await orchestrator.sync_accounts_from_config(owner)
    fake_client.failing_accounts.add("client-north")

    results = await orchestrator.sync_fleets(owner)
    by_error = {result.error is None: result for result in results}
    assert by_error[True].fleets == 2
    assert by_error[False].fleets == 0
    assert "Provider unavailable for North" in by_error[False].error
    assert fake_client.calls.count(("list_fleets", "client-north")) == settings.sync_item_retries + 1
    assert await _count(session_factory, Fleet) == 2


@pytest.mark.asyncio
async def test_device_sync_skips_missing_fleet(session_factory, settings, fake_client, synced) -> None:
    fake_client.missing_fleets.add("FL-vans")
    orchestrator = SyncOrchestrator(session_factory, fake_client, settings=settings)
    summaries = await orchestrator.sync_devices(synced)
    assert len(summaries) == 2
    assert all(summary.error is None for summary in summaries)


@pytest.mark.asyncio
async def test_non_owner_sync_requires_scopes(session_factory, settings, fake_client, synced) -> None:
    orchestrator = SyncOrchestrator(session_factory, fake_client, settings=settings)
    nobody = AuthContext(user_id="agent-1")
    with pytest.raises(Forbidden, match="Write scope required to sync fleets"):
        await orchestrator.sync_fleets(nobody)
    with pytest.raises(Forbidden, match="No access granted"):
        await orchestrator.sync_devices(nobody)

    async with session_factory() as session:
        north = (await session.execute(select(Account).where(Account.client_id == "client-north"))).scalar_one()
        parent = (await session.execute(select(Account).where(Account.client_id == "client-parent"))).scalar_one()
        trucks = (await session.execute(select(Fleet).where(Fleet.external_ref == "FL-trucks"))).scalar_one()

    reader = AuthContext(
        user_id="agent-2",
        scopes=(ScopeGrant(account_id=parent.id, fleet_id=trucks.id, can_read=True),),
    )
    with pytest.raises(Forbidden, match="No permitted accounts in request"):
        await orchestrator.sync_devices(reader, account_ids=[north.id])

    fake_client.calls.clear()
    summaries = await orchestrator.sync_devices(reader)
    assert [(s.fleet_id, s.synced) for s in summaries] == [(trucks.id, 2)]
    assert ("list_devices", "FL-vans") not in fake_client.calls


@pytest.mark.asyncio
async def test_device_sync_retries_transient_fleet_failure(session_factory, settings, fake_client, synced) -> None:
    fake_client.transient_failures["FL-trucks"] = 1
    fake_client.calls.clear()
    orchestrator = SyncOrchestrator(session_factory, fake_client, settings=settings)

    summaries = await orchestrator.sync_devices(synced)
    assert all(summary.error is None for summary in summaries)
    assert sorted(summary.synced for summary in summaries) == [1, 1, 2]
    assert fake_client.calls.count(("list_devices", "FL-trucks")) == 2


@pytest.mark.asyncio
async def test_pooled_device_sync_keeps_fleet_order(session_factory, settings, fake_client, synced, monkeypatch) -> None:
    sequential = await SyncOrchestrator(session_factory, fake_client, settings=settings).sync_devices(synced)

    list_devices = fake_client.list_devices

    async def slow_trucks(credentials, fleet_external_ref):
        if fleet_external_ref == "FL-trucks":
            await asyncio.sleep(0.05)
        return await list_devices(credentials, fleet_external_ref)

    monkeypatch.setattr(fake_client, "list_devices", slow_trucks)
    pooled_settings = settings.model_copy(update={"sync_concurrency": 4})
    pooled = await SyncOrchestrator(session_factory, fake_client, settings=pooled_settings).sync_devices(synced)

    assert None not in [summary.fleet_id for summary in pooled]
    assert [summary.fleet_id for summary in pooled] == [summary.fleet_id for summary in sequential]
    assert [summary.synced for summary in pooled] == [summary.synced for summary in sequential]
