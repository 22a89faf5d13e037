import pytest

from intentflow.utils.retry import compute_backoff, retry_async


def test_compute_backoff_doubles_per_attempt():
    assert compute_backoff(1, base=2.0, jitter=0) == 2.0
    assert compute_backoff(2, base=2.0, jitter=0) == 4.0
    assert compute_backoff(3, base=2.0, jitter=0) == 8.0


def test_compute_backoff_is_capped_before_jitter():
    assert compute_backoff(10, base=2.0, jitter=0, cap=45.0) == 45.0
    delay = compute_backoff(10, base=2.0, jitter=0.5, cap=45.0)
    assert 45.0 <= delay <= 45.5


@pytest.mark.asyncio
async def test_retry_async_returns_first_success():
    calls = []
    delays = []

    async def sleeper(delay):
        delays.append(delay)

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise ConnectionError("down")
        return "ok"

    assert await retry_async(flaky, attempts=3, base=0.1, jitter=0, sleeper=sleeper) == "ok"
    assert len(calls) == 3
    assert delays == [0.1, 0.2]


@pytest.mark.asyncio
async def test_retry_async_reraises_after_last_attempt():
    async def sleeper(delay):
        pass

    async def broken():
        raise ConnectionError("still down")

    with pytest.raises(ConnectionError, match="still down"):
        await retry_async(broken, attempts=2, sleeper=sleeper)
