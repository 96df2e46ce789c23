from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from simops.core.config import Settings, get_settings
from simops.core.errors import ValidationError, VaultError
from simops.domain.commands import CUSTOM_COMMAND, is_supported_command, is_write_command, wire_command
from simops.domain.models import Account, Sim
from simops.persistence.repos import accounts as accounts_repo
from simops.persistence.repos import command_logs as command_logs_repo
from simops.persistence.repos import sims as sims_repo
from simops.providers.fleet_api.base import FleetApiClient, TenantCredentials
from simops.services.authz.scopes import AuthContext, allows_device
from simops.services.credentials import account_credentials
from simops.services.rate_limit import FixedWindowRateLimiter, get_rate_limiter
from simops.services.resilience import SleepFn, sleep_ms
from simops.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

STATUS_QUEUED = "queued"
STATUS_FORBIDDEN = "forbidden"
STATUS_ERROR = "error"


@dataclass(frozen=True)
class TargetGroup:
    """Devices in one account, matched by any of the listed identifiers."""

    account_id: str
    sim_ids: tuple[str, ...] = ()
    iccids: tuple[str, ...] = ()
    unique_names: tuple[str, ...] = ()

    @property
    def has_identifiers(self) -> bool:
        return bool(self.sim_ids or self.iccids or self.unique_names)


@dataclass(frozen=True)
class Throttle:
    per_account_per_second: int | None = None

    def delay_ms(self) -> int:
        if not self.per_account_per_second:
            return 0
        return math.ceil(1000 / self.per_account_per_second)


@dataclass(frozen=True)
class DispatchResult:
    account_id: str
    account_label: str
    status: str
    message: str
    sim_id: str = ""
    sim_sid: str = ""
    iccid: str = ""
    command: str | None = None
    payload: str | None = None
    sent_at: str | None = None


@dataclass
class _GroupCredentials:
    # Decrypted at most once per group, and only if something is sent.
    account: Account
    key: bytes
    _credentials: TenantCredentials | None = field(default=None, repr=False)

    def get(self) -> TenantCredentials:
        if self._credentials is None:
            self._credentials = account_credentials(self.account, key=self.key)
        return self._credentials


def _group_error(target: TargetGroup, label: str, message: str) -> DispatchResult:
    return DispatchResult(account_id=target.account_id, account_label=label, status=STATUS_ERROR, message=message)


class CommandDispatcher:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        client: FleetApiClient,
        *,
        rate_limiter: FixedWindowRateLimiter | None = None,
        settings: Settings | None = None,
        sleep: SleepFn = asyncio.sleep,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._client = client
        self._rate_limiter = rate_limiter or get_rate_limiter()
        self._settings = settings or get_settings()
        self._sleep = sleep
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def validate(
        self,
        command: str,
        targets: Sequence[TargetGroup],
        *,
        text: str | None = None,
        throttle: Throttle | None = None,
    ) -> str:
        normalized = (command or "").strip()
        if not normalized:
            raise ValidationError("Command is required")
        if not is_supported_command(normalized):
            raise ValidationError(f"Unsupported command {normalized}")
        if text is not None and len(text) > self._settings.command_max_text_length:
            raise ValidationError(f"Command text exceeds {self._settings.command_max_text_length} characters")
        if normalized == CUSTOM_COMMAND and not (text or "").strip():
            raise ValidationError("Custom command text is required")
        if not targets:
            raise ValidationError("At least one target group is required")
        if any(not target.account_id for target in targets):
            raise ValidationError("Every target group needs an account id")
        if throttle is not None and throttle.per_account_per_second is not None:
            rate = throttle.per_account_per_second
            if rate < 1 or rate > self._settings.throttle_max_per_second:
                raise ValidationError(
                    f"Throttle must be between 1 and {self._settings.throttle_max_per_second} commands per second"
                )
        return normalized

    async def dispatch(
        self,
        ctx: AuthContext,
        command: str,
        targets: Sequence[TargetGroup],
        *,
        text: str | None = None,
        throttle: Throttle | None = None,
    ) -> list[DispatchResult]:
        """Send ``command`` to every device resolved from ``targets``.

        Validation and the per-caller rate limit fail the whole call before any
        storage or provider access. After that, failures are reported per group
        or per device and never stop the remaining targets. Results follow
        group order, then device order within the group.
        """
        normalized = self.validate(command, targets, text=text, throttle=throttle)
        requires_write = is_write_command(normalized)
        self._rate_limiter.enforce(
            f"command:{ctx.user_id}",
            self._settings.command_rate_limit,
            self._settings.command_rate_window_ms,
        )

        wire, payload = wire_command(normalized, text)
        delay_ms = (throttle or Throttle()).delay_ms()
        key = self._settings.encryption_key_bytes()
        results: list[DispatchResult] = []

        # Resolve every group up front so no transaction stays open across provider calls.
        plan: list[tuple[TargetGroup, Account | None, list[Sim], str | None]] = []
        async with self._session_factory() as session:
            accounts = await accounts_repo.list_accounts(
                session, list(dict.fromkeys(target.account_id for target in targets))
            )
            account_map = {account.id: account for account in accounts}

            for target in targets:
                account = account_map.get(target.account_id)
                if account is None:
                    plan.append((target, None, [], "Account not found"))
                    continue
                if not target.has_identifiers:
                    plan.append((target, account, [], "No target identifiers supplied"))
                    continue
                sims = await sims_repo.resolve_targets(
                    session,
                    account.id,
                    sim_ids=list(target.sim_ids),
                    iccids=list(target.iccids),
                    unique_names=list(target.unique_names),
                )
                plan.append((target, account, sims, None if sims else "No SIMs resolved for target"))

        for target, account, sims, problem in plan:
            if problem is not None:
                results.append(_group_error(target, account.label if account else "Unknown", problem))
                continue
            credentials = _GroupCredentials(account=account, key=key)
            for sim in sims:
                if not allows_device(ctx, account.id, sim.fleet_id, write=requires_write):
                    kind = "Write" if requires_write else "Read"
                    results.append(
                        DispatchResult(
                            account_id=account.id,
                            account_label=account.label,
                            sim_id=sim.id,
                            sim_sid=sim.sim_sid,
                            iccid=sim.iccid,
                            status=STATUS_FORBIDDEN,
                            message=f"{kind} scope missing in Account {account.label}",
                        )
                    )
                    continue
                results.append(await self._send(account, sim, credentials, wire, payload))
                await sleep_ms(delay_ms, sleep=self._sleep)

        increment_counter("commands_dispatched_total", sum(1 for r in results if r.status == STATUS_QUEUED))
        logger.info(
            "command_dispatch_completed user=%s command=%s results=%s queued=%s",
            ctx.user_id,
            normalized,
            len(results),
            sum(1 for r in results if r.status == STATUS_QUEUED),
        )
        return results

    async def _send(
        self,
        account: Account,
        sim: Sim,
        credentials: _GroupCredentials,
        wire: str,
        payload: str,
    ) -> DispatchResult:
        sent_at = self._clock()
        base = dict(
            account_id=account.id,
            account_label=account.label,
            sim_id=sim.id,
            sim_sid=sim.sim_sid,
            iccid=sim.iccid,
            command=wire,
            payload=payload,
            sent_at=sent_at.isoformat(),
        )
        try:
            await self._client.send_command(
                credentials.get(),
                command=wire,
                device_external_id=sim.sim_sid,
                text=payload or None,
            )
            # One short transaction per outbound log row.
            async with self._session_factory() as session:
                await command_logs_repo.append_outbound(
                    session,
                    account_id=account.id,
                    sim_id=sim.id,
                    command=wire,
                    payload=payload,
                    created_at=sent_at,
                )
                await session.commit()
        except VaultError as exc:
            logger.error("command_secret_unavailable account=%s sim=%s", account.label, sim.sim_sid)
            return DispatchResult(status=STATUS_ERROR, message=str(exc), **base)
        except Exception as exc:  # noqa: BLE001 - a failed device must not stop its siblings
            logger.warning(
                "command_send_failed account=%s sim=%s command=%s error=%s",
                account.label,
                sim.sim_sid,
                wire,
                exc,
            )
            return DispatchResult(status=STATUS_ERROR, message=str(exc) or "Failed to send", **base)
        return DispatchResult(status=STATUS_QUEUED, message="", **base)
