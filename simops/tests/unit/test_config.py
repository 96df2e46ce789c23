from __future__ import annotations

import pytest

from simops.core.config import Settings, get_settings
from simops.core.errors import ConfigError


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


def test_provider_accounts_accept_camel_case() -> None:
    settings = _settings(
        provider_accounts_json='[{"label": "Parent", "clientId": "c1", "clientSecret": "s1", "audience": "api"}]'
    )
    [account] = settings.provider_accounts()
    assert (account.label, account.client_id, account.client_secret, account.audience) == ("Parent", "c1", "s1", "api")


@pytest.mark.parametrize(
    "raw",
    ["not json", "[]", '[{"label": "x"}]', '[{"label": "", "clientId": "c", "clientSecret": "s"}]'],
)
def test_provider_accounts_reject_bad_config(raw: str) -> None:
    with pytest.raises(ConfigError, match="PROVIDER_ACCOUNTS_JSON"):
        _settings(provider_accounts_json=raw).provider_accounts()


def test_encryption_key_must_be_64_hex_chars() -> None:
    assert _settings(encryption_key="ab" * 32).encryption_key_bytes() == bytes.fromhex("ab" * 32)
    with pytest.raises(ConfigError, match="ENCRYPTION_KEY"):
        _settings(encryption_key="abc").encryption_key_bytes()


def test_fleet_provider_factory_selects_implementation(monkeypatch) -> None:
    from simops.providers.fleet_api import FakeFleetApiClient, get_fleet_api_client

    monkeypatch.setenv("FLEET_PROVIDER", "fake")
    assert isinstance(get_fleet_api_client(), FakeFleetApiClient)

    get_settings.cache_clear()
    monkeypatch.setenv("FLEET_PROVIDER", "carrier-pigeon")
    with pytest.raises(ConfigError, match="Unsupported fleet provider"):
        get_fleet_api_client()
