from __future__ import annotations

import pytest

from simops.core.errors import RateLimitExceeded
from simops.services.rate_limit import FixedWindowRateLimiter


def test_fixed_window_blocks_then_recovers() -> None:
    now = {"t": 100.0}
    limiter = FixedWindowRateLimiter(time_source=lambda: now["t"])

    assert limiter.enforce("command:u1", 2, 1000) == 1
    assert limiter.enforce("command:u1", 2, 1000) == 0
    with pytest.raises(RateLimitExceeded) as excinfo:
        limiter.enforce("command:u1", 2, 1000)
    assert excinfo.value.retry_after_ms == 1000

    now["t"] = 101.0
    assert limiter.enforce("command:u1", 2, 1000) == 1


def test_keys_are_independent() -> None:
    limiter = FixedWindowRateLimiter(time_source=lambda: 0.0)
    limiter.enforce("command:a", 1, 1000)
    with pytest.raises(RateLimitExceeded):
        limiter.enforce("command:a", 1, 1000)
    assert limiter.enforce("command:b", 1, 1000) == 0


def test_reset_clears_window() -> None:
    limiter = FixedWindowRateLimiter(time_source=lambda: 0.0)
    limiter.enforce("command:a", 1, 1000)
    limiter.reset("command:a")
    assert limiter.enforce("command:a", 1, 1000) == 0
