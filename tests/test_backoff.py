from __future__ import annotations

import pytest

from steam_prices.clients.backoff import with_backoff
from steam_prices.clients.errors import UpstreamError, UpstreamStatusError

from conftest import SleepRecorder


class _Flaky:
    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise UpstreamStatusError(503, "https://example.test")
        return "ok"


@pytest.mark.asyncio
@pytest.mark.parametrize("failures", [0, 1, 3])
async def test_succeeds_after_k_failures(failures: int, sleeper: SleepRecorder) -> None:
    op = _Flaky(failures)
    res = await with_backoff(op, label="t", max_retries=3, base_delay=5.0, sleep=sleeper)
    assert res == "ok"
    assert op.calls == failures + 1
    assert sleeper.calls == [5.0 * 2**i for i in range(failures)]


@pytest.mark.asyncio
async def test_always_failing_exhausts_retries(sleeper: SleepRecorder) -> None:
    op = _Flaky(failures=100)
    with pytest.raises(UpstreamStatusError):
        await with_backoff(op, label="t", max_retries=3, base_delay=1.0, sleep=sleeper)
    assert op.calls == 4
    assert sleeper.calls == [1.0, 2.0, 4.0]


@pytest.mark.asyncio
async def test_zero_retries_means_single_attempt(sleeper: SleepRecorder) -> None:
    op = _Flaky(failures=1)
    with pytest.raises(UpstreamError):
        await with_backoff(op, label="t", max_retries=0, base_delay=1.0, sleep=sleeper)
    assert op.calls == 1
    assert sleeper.calls == []


@pytest.mark.asyncio
async def test_non_retryable_error_propagates_immediately(sleeper: SleepRecorder) -> None:
    calls = 0

    async def _boom() -> None:
        nonlocal calls
        calls += 1
        raise KeyError("bug")

    with pytest.raises(KeyError):
        await with_backoff(_boom, label="t", max_retries=3, base_delay=1.0, sleep=sleeper)
    assert calls == 1
    assert sleeper.calls == []
