from __future__ import annotations

import json

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from simops.core.config import Settings, get_settings
from simops.domain.models import Base, User
from simops.providers.fleet_api.base import RemoteFleet, RemoteSim
from simops.providers.fleet_api.fake import FakeFleetApiClient
from simops.providers.fleet_api.tokens import reset_token_cache
from simops.services import telemetry
from simops.services.authz.scopes import ROLE_OWNER, AuthContext
from simops.services.rate_limit import reset_rate_limiter
from simops.services.sync import SyncOrchestrator


TEST_KEY_HEX = "00" * 32

PROVIDER_ACCOUNTS = [
    {"label": "Parent", "clientId": "client-parent", "clientSecret": "secret-parent"},
    {"label": "North", "clientId": "client-north", "clientSecret": "secret-north", "scope": "fleet.read"},
]


@pytest.fixture(autouse=True)
def reset_process_state() -> None:
    # Module-level singletons must not leak between tests.
    get_settings.cache_clear()
    reset_rate_limiter()
    reset_token_cache()
    telemetry.reset_telemetry()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'simops.db'}",
        encryption_key=TEST_KEY_HEX,
        provider_accounts_json=json.dumps(PROVIDER_ACCOUNTS),
        fleet_provider="fake",
        provider_retry_backoff_ms=1,
        device_upsert_backoff_ms=1,
        sync_item_backoff_ms=1,
    )


@pytest.fixture
def key_bytes() -> bytes:
    return bytes.fromhex(TEST_KEY_HEX)


@pytest.fixture
async def session_factory(settings: Settings):
    engine = create_async_engine(settings.database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def owner(session_factory) -> AuthContext:
    async with session_factory() as session:
        session.add(User(id="owner-1", email="owner@example.com", role=ROLE_OWNER))
        await session.commit()
    return AuthContext(user_id="owner-1", role=ROLE_OWNER)


def build_fake_client() -> FakeFleetApiClient:
    return FakeFleetApiClient(
        fleets={
            "client-parent": [
                RemoteFleet(sid="FL-trucks", unique_name="trucks", friendly_name="Trucks"),
                RemoteFleet(sid="FL-vans", unique_name="vans", friendly_name="Vans"),
            ],
            "client-north": [RemoteFleet(sid="FL-north", unique_name=None, friendly_name="North")],
        },
        devices={
            ("client-parent", "FL-trucks"): [
                RemoteSim("HS-1", "8901", "truck-1", "active", "FL-trucks", "Trucks", "2026-10-01T10:00:00Z"),
                RemoteSim("HS-2", "8902", "truck-2", "active", "FL-trucks", "Trucks", None),
            ],
            ("client-parent", "FL-vans"): [
                RemoteSim("HS-3", "8903", "van-1", "inactive", "FL-vans", "Vans", None),
            ],
            ("client-north", "FL-north"): [
                RemoteSim("HS-4", "8904", None, "active", "FL-north", "North", None),
            ],
        },
    )


@pytest.fixture
def fake_client() -> FakeFleetApiClient:
    return build_fake_client()


@pytest.fixture
async def synced(session_factory, settings, fake_client, owner) -> AuthContext:
    # Accounts, fleets and SIMs mirrored locally; returns the owner context.
    orchestrator = SyncOrchestrator(session_factory, fake_client, settings=settings)
    await orchestrator.sync_accounts_from_config(owner)
    await orchestrator.sync_fleets(owner)
    await orchestrator.sync_devices(owner)
    return owner
