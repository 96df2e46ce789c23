from __future__ import annotations

from typing import Any


class SimOpsError(Exception):
    """Base error for simops."""


class ConfigError(SimOpsError):
    """Missing or invalid configuration."""


class ProviderError(SimOpsError):
    """Device-management provider failure carrying the HTTP status and body."""

    def __init__(self, status: int, detail: Any = None, message: str | None = None) -> None:
        super().__init__(message or f"Provider request failed ({status})")
        self.status = status
        self.detail = detail

    @property
    def status_code(self) -> int:
        return self.status


class ProviderAuthError(ProviderError):
    """Token acquisition failed for a tenant."""


class ProviderHttpError(ProviderError):
    """Non-2xx response from a provider data endpoint."""


class VaultError(SimOpsError):
    """Secret decryption failure."""


class MalformedCiphertext(VaultError):
    """Encrypted record could not be split into nonce, ciphertext and tag."""


class AuthenticationFailure(VaultError):
    """Authentication tag did not verify."""


class Forbidden(SimOpsError):
    """Caller lacks the scope required for the operation."""


class NotFound(SimOpsError):
    """Referenced local record does not exist."""


class RateLimitExceeded(SimOpsError):
    """Caller exceeded the fixed-window budget."""

    def __init__(self, key: str, retry_after_ms: int = 0) -> None:
        super().__init__("Rate limit exceeded")
        self.key = key
        self.retry_after_ms = retry_after_ms


class ValidationError(SimOpsError):
    """Malformed or unknown command or missing required fields."""


class DatabaseError(SimOpsError):
    """Database layer failure."""
