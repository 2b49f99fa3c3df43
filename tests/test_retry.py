import asyncio

import httpx
import pytest

from politecrawl.errors import (
    ConfigurationError,
    FatalFetchError,
    FetchError,
    InvalidUrlError,
    RetryableFetchError,
    RetryError,
)
from politecrawl.retry import RetryCoordinator, is_retryable, is_retryable_status, run_with_retry


class FakeSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


def flaky(failures, error_factory, value="ok"):
    calls = {"count": 0}

    async def unit_of_work():
        calls["count"] += 1
        if calls["count"] <= failures:
            raise error_factory()
        return value

    return unit_of_work, calls


@pytest.mark.asyncio
async def test_succeeds_after_transient_failures():
    sleep = FakeSleep()
    work, calls = flaky(2, lambda: FetchError.from_status(503))
    coordinator = RetryCoordinator(max_retries=3, base_delay_ms=100, sleep=sleep)

    result = await coordinator.run(work)

    assert result.value == "ok"
    assert result.attempts == 3
    assert result.retries == 2
    assert calls["count"] == 3
    assert sleep.delays == [0.1, 0.2]


@pytest.mark.asyncio
async def test_gives_up_after_max_retries_with_exponential_delays():
    sleep = FakeSleep()
    work, calls = flaky(10, lambda: FetchError.from_status(503))
    coordinator = RetryCoordinator(max_retries=3, base_delay_ms=2000, backoff_multiplier=2.0, sleep=sleep)

    with pytest.raises(RetryError) as exc_info:
        await coordinator.run(work, label="https://example.com/flaky")

    assert exc_info.value.attempts == 4
    assert exc_info.value.retries == 3
    assert exc_info.value.last_error.status_code == 503
    assert calls["count"] == 4
    assert sleep.delays == [2.0, 4.0, 8.0]


@pytest.mark.asyncio
async def test_zero_retries_means_single_attempt():
    sleep = FakeSleep()
    work, calls = flaky(1, lambda: httpx.ReadTimeout("slow"))

    with pytest.raises(RetryError) as exc_info:
        await RetryCoordinator(max_retries=0, sleep=sleep).run(work)

    assert exc_info.value.attempts == 1
    assert calls["count"] == 1
    assert sleep.delays == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error_factory",
    [
        lambda: FetchError.from_status(404),
        lambda: FetchError.from_status(403),
        lambda: FatalFetchError("bad content", status_code=503),
        lambda: InvalidUrlError("nope"),
        lambda: ValueError("parse failure"),
    ],
)
async def test_fatal_errors_are_not_retried(error_factory):
    sleep = FakeSleep()
    work, calls = flaky(5, error_factory)

    with pytest.raises(RetryError) as exc_info:
        await RetryCoordinator(max_retries=3, sleep=sleep).run(work)

    assert exc_info.value.attempts == 1
    assert calls["count"] == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_on_attempt_sees_every_attempt_index():
    seen = []
    work, _ = flaky(2, lambda: ConnectionError("reset"))

    await RetryCoordinator(max_retries=5, base_delay_ms=0, sleep=FakeSleep()).run(
        work, on_attempt=seen.append
    )

    assert seen == [0, 1, 2]


@pytest.mark.asyncio
async def test_cancellation_is_not_swallowed():
    async def slow():
        await asyncio.sleep(10)

    task = asyncio.create_task(RetryCoordinator(max_retries=3).run(slow))
    await asyncio.sleep(0)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task


@pytest.mark.asyncio
async def test_run_with_retry_helper():
    sleep = FakeSleep()
    work, _ = flaky(1, lambda: RetryableFetchError("flaky"))

    result = await run_with_retry(work, 2, 50, 3.0, sleep=sleep)

    assert result.value == "ok"
    assert result.retries == 1
    assert sleep.delays == [0.05]


def test_backoff_with_jitter_stays_within_bounds():
    coordinator = RetryCoordinator(base_delay_ms=1000, backoff_multiplier=2.0, jitter=True)

    for attempt in range(4):
        delay = coordinator.backoff_ms(attempt)
        assert 0 <= delay <= 1000 * 2 ** attempt


def test_backoff_without_jitter_is_deterministic():
    coordinator = RetryCoordinator(base_delay_ms=2000, backoff_multiplier=2.0)

    assert [coordinator.backoff_ms(n) for n in range(3)] == [2000, 4000, 8000]


@pytest.mark.parametrize(
    "kwargs",
    [{"max_retries": -1}, {"base_delay_ms": -1}, {"backoff_multiplier": 0.5}],
)
def test_invalid_settings_rejected(kwargs):
    with pytest.raises(ConfigurationError):
        RetryCoordinator(**kwargs)


@pytest.mark.parametrize(
    "status,expected",
    [(None, False), (200, False), (404, False), (429, True), (500, True), (503, True)],
)
def test_is_retryable_status(status, expected):
    assert is_retryable_status(status) is expected


def test_is_retryable_classification():
    request = httpx.Request("GET", "https://example.com")

    assert is_retryable(httpx.ConnectError("refused", request=request))
    assert is_retryable(httpx.ReadTimeout("slow", request=request))
    assert is_retryable(asyncio.TimeoutError())
    assert is_retryable(FetchError.from_status(429))
    assert not is_retryable(httpx.UnsupportedProtocol("ftp", request=request))
    assert not is_retryable(FetchError("no status"))
    assert not is_retryable(KeyError("x"))

    response = httpx.Response(502, request=request)
    assert is_retryable(httpx.HTTPStatusError("bad gateway", request=request, response=response))
