from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Sequence, TypeVar

from simops.core.config import get_settings
from simops.core.errors import ConfigError, Forbidden, ProviderError, VaultError
from simops.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

SleepFn = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class RetryPolicy:
    retries: int
    base_delay_ms: int


def default_retry_policy() -> RetryPolicy:
    settings = get_settings()
    return RetryPolicy(
        retries=settings.provider_retry_attempts,
        base_delay_ms=settings.provider_retry_backoff_ms,
    )


def is_transient_error(exc: Exception) -> bool:
    # Client-side provider rejections and local config or auth faults repeat on every attempt.
    if isinstance(exc, (ConfigError, Forbidden, VaultError)):
        return False
    if isinstance(exc, ProviderError) and 400 <= exc.status < 500:
        return exc.status in (408, 429)
    return True


def backoff_delay_ms(attempt: int, base_delay_ms: int) -> float:
    # attempt is 1-based; jitter is up to 100ms on top of the exponential step.
    return base_delay_ms * (2 ** (attempt - 1)) + random.randint(0, 99)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    retries: int = 3,
    base_delay_ms: int = 500,
    retryable: Callable[[Exception], bool] | None = None,
    sleep: SleepFn = asyncio.sleep,
) -> T:
    """Invoke ``operation``, retrying up to ``retries`` more times on failure.

    The last failure is re-raised once the budget is spent. ``retryable`` lets
    callers stop early on errors that will not improve with another attempt.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as exc:  # noqa: BLE001 - re-raised once retries are exhausted
            attempt += 1
            if attempt > retries or (retryable is not None and not retryable(exc)):
                raise
            increment_counter("retries_total")
            delay_ms = backoff_delay_ms(attempt, base_delay_ms)
            logger.debug("retry_scheduled attempt=%s delay_ms=%s error=%s", attempt, delay_ms, exc.__class__.__name__)
            await sleep(delay_ms / 1000.0)


async def sleep_ms(ms: float, *, sleep: SleepFn = asyncio.sleep) -> None:
    if ms > 0:
        await sleep(ms / 1000.0)


async def bounded_map(
    items: Sequence[T],
    handler: Callable[[T], Awaitable[R]],
    *,
    concurrency: int = 1,
    retries: int = 0,
    base_delay_ms: int = 0,
    retryable: Callable[[Exception], bool] | None = None,
) -> list[R]:
    """Run ``handler`` over ``items`` with at most ``concurrency`` in flight.

    Results are returned in input order. Each item gets its own sequential
    ``with_retry`` budget. With ``concurrency=1`` items are processed strictly
    one after another, so a failure stops the remainder exactly like a plain
    loop would. In pooled mode the first failure cancels the items still
    running and no task outlives the call.
    """

    async def _attempt(item: T) -> R:
        if retries <= 0:
            return await handler(item)
        return await with_retry(
            lambda: handler(item),
            retries=retries,
            base_delay_ms=base_delay_ms,
            retryable=retryable,
        )

    if concurrency <= 1:
        results: list[R] = []
        for item in items:
            results.append(await _attempt(item))
        return results

    semaphore = asyncio.Semaphore(concurrency)

    async def _run(item: T) -> R:
        async with semaphore:
            return await _attempt(item)

    tasks = [asyncio.ensure_future(_run(item)) for item in items]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
