from __future__ import annotations

import pytest

from clipping_pipeline.utils.ratelimit import SlidingWindowLimiter
from clipping_pipeline.utils.retry import RetryPolicy


def test_sliding_window_limits_and_recovers() -> None:
    lim = SlidingWindowLimiter(limit=2, window_s=60.0, clock=lambda: 0.0)
    assert lim.allow(0.0)
    assert lim.allow(10.0)
    assert not lim.allow(20.0)
    assert lim.retry_after(20.0) == pytest.approx(40.0)
    assert lim.allow(60.0)
    assert lim.retry_after(60.0) == pytest.approx(10.0)


def test_limiter_rejects_bad_config() -> None:
    with pytest.raises(ValueError):
        SlidingWindowLimiter(limit=0, window_s=1.0)
    with pytest.raises(ValueError):
        SlidingWindowLimiter(limit=1, window_s=0)


def test_backoff_schedule() -> None:
    pol = RetryPolicy()
    assert [pol.backoff_delay(a) for a in (1, 2, 3)] == [5.0, 10.0, 20.0]
    assert not pol.exhausted(2)
    assert pol.exhausted(3)
    assert RetryPolicy(base_delay_s=5.0, cap_s=8.0).backoff_delay(3) == 8.0
