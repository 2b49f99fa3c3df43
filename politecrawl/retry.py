from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

import httpx
from loguru import logger

from politecrawl.errors import (
    ConfigurationError,
    FatalFetchError,
    FetchError,
    InvalidUrlError,
    RetryableFetchError,
    RetryError,
)
from politecrawl.monitoring.metrics_server import FETCH_RETRIES


T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY_MS = 2000
DEFAULT_BACKOFF_MULTIPLIER = 2.0


def is_retryable_status(status_code: Optional[int]) -> bool:
    return status_code is not None and (status_code == 429 or status_code >= 500)


def is_retryable(exc: BaseException) -> bool:
    """Timeouts, connection failures, HTTP 429 and 5xx are worth another attempt."""
    if isinstance(exc, (FatalFetchError, InvalidUrlError)):
        return False
    if isinstance(exc, RetryableFetchError):
        return True
    if isinstance(exc, FetchError):
        return is_retryable_status(exc.status_code)
    if isinstance(exc, httpx.HTTPStatusError):
        return is_retryable_status(exc.response.status_code)
    if isinstance(exc, httpx.UnsupportedProtocol):
        return False
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
        return True
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return True
    return False


@dataclass(frozen=True)
class RetryResult(Generic[T]):
    value: T
    attempts: int

    @property
    def retries(self) -> int:
        return self.attempts - 1


class RetryCoordinator:
    """Run an async unit of work with bounded exponential backoff.

    The delay before retry ``n`` (0-indexed attempt that failed) is
    ``base_delay_ms * backoff_multiplier ** n``. With ``jitter`` enabled the
    delay is drawn uniformly from ``[0, delay]`` instead.
    """

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay_ms: float = DEFAULT_BASE_DELAY_MS,
        backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
        *,
        jitter: bool = False,
        classify: Callable[[BaseException], bool] = is_retryable,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if max_retries < 0:
            raise ConfigurationError(f"max_retries must be >= 0, got {max_retries}")
        if base_delay_ms < 0:
            raise ConfigurationError(f"base_delay_ms must be >= 0, got {base_delay_ms}")
        if backoff_multiplier < 1:
            raise ConfigurationError(f"backoff_multiplier must be >= 1, got {backoff_multiplier}")

        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.backoff_multiplier = backoff_multiplier
        self.jitter = jitter
        self.classify = classify
        self._sleep = sleep

    def backoff_ms(self, attempt: int) -> float:
        delay = self.base_delay_ms * (self.backoff_multiplier ** attempt)
        if self.jitter:
            return random.uniform(0, delay)
        return delay

    async def run(
        self,
        unit_of_work: Callable[[], Awaitable[T]],
        *,
        label: str = "",
        on_attempt: Optional[Callable[[int], None]] = None,
    ) -> RetryResult[T]:
        attempt = 0
        while True:
            if on_attempt is not None:
                on_attempt(attempt)
            try:
                value = await unit_of_work()
                return RetryResult(value=value, attempts=attempt + 1)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                if not self.classify(exc):
                    logger.debug(f"Fatal error for {label or 'unit of work'}: {exc!r}")
                    raise RetryError(exc, attempts=attempt + 1) from exc
                if attempt >= self.max_retries:
                    logger.warning(
                        f"Giving up on {label or 'unit of work'} after {attempt + 1} attempts: {exc!r}"
                    )
                    raise RetryError(exc, attempts=attempt + 1) from exc

                delay_ms = self.backoff_ms(attempt)
                FETCH_RETRIES.inc()
                logger.warning(
                    f"Retry {attempt + 1}/{self.max_retries} for {label or 'unit of work'} "
                    f"after {delay_ms:.0f}ms: {exc!r}"
                )
                await self._sleep(delay_ms / 1000)
                attempt += 1


async def run_with_retry(
    unit_of_work: Callable[[], Awaitable[T]],
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay_ms: float = DEFAULT_BASE_DELAY_MS,
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
    **kwargs: Any,
) -> RetryResult[T]:
    """One-shot form of :meth:`RetryCoordinator.run`."""
    coordinator = RetryCoordinator(max_retries, base_delay_ms, backoff_multiplier, **kwargs)
    return await coordinator.run(unit_of_work)
