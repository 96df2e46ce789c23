from __future__ import annotations

from simops.domain.models import Account
from simops.providers.fleet_api.base import TenantCredentials
from simops.services.crypto.vault import decrypt_secret


def account_credentials(account: Account, *, key: bytes | None = None) -> TenantCredentials:
    # Decrypt on demand; plaintext secrets only live for the duration of a call.
    return TenantCredentials(
        label=account.label,
        client_id=account.client_id,
        client_secret=decrypt_secret(account.client_secret_encrypted, key=key),
        scope=account.oauth_scope,
        audience=account.oauth_audience,
    )
