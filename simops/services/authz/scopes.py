from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from simops.core.errors import Forbidden


ROLE_OWNER = "owner"
ROLE_AGENT = "agent"


@dataclass(frozen=True)
class ScopeGrant:
    account_id: str
    fleet_id: str | None = None
    can_read: bool = False
    can_write: bool = False
    can_invite: bool = False


@dataclass(frozen=True)
class AuthContext:
    # Supplied by the caller's session layer; identity is trusted as-is.
    user_id: str
    role: str = ROLE_AGENT
    scopes: tuple[ScopeGrant, ...] = field(default_factory=tuple)

    @property
    def is_owner(self) -> bool:
        return self.role == ROLE_OWNER


def _covers(grant: ScopeGrant, account_id: str, fleet_id: str | None) -> bool:
    if grant.account_id != account_id:
        return False
    if fleet_id is None:
        return True
    # Account-wide grants apply to every fleet under the account.
    return grant.fleet_id is None or grant.fleet_id == fleet_id


def has_read_access(scopes: Iterable[ScopeGrant], account_id: str, fleet_id: str | None = None) -> bool:
    return any(_covers(grant, account_id, fleet_id) and grant.can_read for grant in scopes)


def has_write_access(scopes: Iterable[ScopeGrant], account_id: str, fleet_id: str | None = None) -> bool:
    return any(_covers(grant, account_id, fleet_id) and grant.can_write for grant in scopes)


def allows_device(ctx: AuthContext, account_id: str, fleet_id: str | None, *, write: bool) -> bool:
    if ctx.is_owner:
        return True
    if write:
        return has_write_access(ctx.scopes, account_id, fleet_id)
    return has_read_access(ctx.scopes, account_id, fleet_id)


def readable_account_ids(scopes: Iterable[ScopeGrant]) -> list[str]:
    # dict preserves first-seen order so results stay deterministic.
    return list(dict.fromkeys(grant.account_id for grant in scopes if grant.can_read))


def writable_account_ids(scopes: Iterable[ScopeGrant]) -> list[str]:
    return list(dict.fromkeys(grant.account_id for grant in scopes if grant.can_write))


def _describe(account_id: str, fleet_id: str | None) -> str:
    return f"account {account_id}" + (f" / fleet {fleet_id}" if fleet_id else "")


def assert_readable(scopes: Iterable[ScopeGrant], account_id: str, fleet_id: str | None = None) -> None:
    if not has_read_access(scopes, account_id, fleet_id):
        raise Forbidden(f"Read scope missing for {_describe(account_id, fleet_id)}")


def require_owner(ctx: AuthContext, message: str = "Owner only") -> None:
    if not ctx.is_owner:
        raise Forbidden(message)
