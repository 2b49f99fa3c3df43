import asyncio
import time
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from loguru import logger

from politecrawl.errors import FetchError, InvalidUrlError, RetryError, RunCancelledError
from politecrawl.models import RunSummary, SchedulerConfig, SchedulerStats, WorkOutcome
from politecrawl.monitoring.metrics_server import FETCH_ATTEMPTS, URLS_PROCESSED
from politecrawl.retry import RetryCoordinator
from politecrawl.throttle import DomainThrottle
from politecrawl.utils.logger import log_outcome
from politecrawl.utils.robots import OriginPolicyCache
from politecrawl.utils.url_utils import get_origin


PerformFetch = Callable[[str], Awaitable[Any]]


class CrawlScheduler:
    """Run a batch of URLs through policy check, throttle and retry.

    Every URL gets its own task; the throttle decides how many actually fetch
    at once. Outcomes come back in input order.
    """

    def __init__(
        self,
        perform_fetch: PerformFetch,
        config: SchedulerConfig,
        *,
        policy_cache: OriginPolicyCache,
        throttle: Optional[DomainThrottle] = None,
        retry: Optional[RetryCoordinator] = None,
        agent_token: Optional[str] = None,
        respect_crawl_delay: bool = True,
    ):
        self.perform_fetch = perform_fetch
        self.config = config
        self.policy_cache = policy_cache
        self.throttle = throttle or DomainThrottle(
            config.global_concurrency,
            config.per_origin_concurrency,
            config.min_spacing_ms,
        )
        self.retry = retry or RetryCoordinator(
            config.max_retries,
            config.backoff_base_ms,
            config.backoff_multiplier,
        )
        self.agent_token = agent_token
        self.respect_crawl_delay = respect_crawl_delay

    # --------------------------
    #  Batch
    # --------------------------
    async def schedule_all(
        self,
        urls: Sequence[str],
        *,
        timeout: Optional[float] = None,
    ) -> List[WorkOutcome]:
        """Process every URL and return one outcome per URL, in input order.

        When ``timeout`` (seconds) expires, URLs still waiting or fetching are
        abandoned and reported as failures; their throttle slots are released.
        """
        logger.info(f"Starting batch of {len(urls)} URLs")
        started = time.perf_counter()

        results: List[Optional[WorkOutcome]] = [None] * len(urls)
        attempts: List[int] = [0] * len(urls)
        tasks = [
            asyncio.create_task(self._run_one(index, url, results, attempts))
            for index, url in enumerate(urls)
        ]

        pending = set(tasks)
        try:
            if tasks:
                _, pending = await asyncio.wait(tasks, timeout=timeout)
            if pending:
                logger.warning(
                    f"Run timeout of {timeout}s reached; abandoning {len(pending)} URL(s)"
                )
        finally:
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        outcomes: List[WorkOutcome] = []
        for index, url in enumerate(urls):
            outcome = results[index]
            if outcome is None:
                outcome = WorkOutcome.failure(
                    url,
                    RunCancelledError(f"Run timed out before {url} completed"),
                    attempts[index],
                )
                self._record(outcome)
            outcomes.append(outcome)

        duration_ms = (time.perf_counter() - started) * 1000
        logger.info(f"Batch completed in {duration_ms:.0f}ms ({duration_ms / 1000:.2f}s)")
        return outcomes

    async def _run_one(
        self,
        index: int,
        url: str,
        results: List[Optional[WorkOutcome]],
        attempts: List[int],
    ) -> None:
        def on_attempt(attempt: int) -> None:
            attempts[index] = attempt + 1

        try:
            outcome = await self.process_url(url, on_attempt=on_attempt)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception(f"Unexpected error processing {url}")
            outcome = WorkOutcome.failure(url, exc, attempts[index])
            self._record(outcome)
        results[index] = outcome

    # --------------------------
    #  Single URL
    # --------------------------
    async def process_url(
        self,
        url: str,
        *,
        on_attempt: Optional[Callable[[int], None]] = None,
    ) -> WorkOutcome:
        try:
            origin = get_origin(url)
        except InvalidUrlError as exc:
            return self._record(WorkOutcome.failure(url, exc, 0))

        check = await self.policy_cache.check_url(url, self.agent_token)
        if not check.allowed:
            return self._record(WorkOutcome.denied(url, check.reason))

        crawl_delay_ms = None
        if self.respect_crawl_delay:
            crawl_delay_ms = await self.policy_cache.crawl_delay_ms(origin, self.agent_token)

        async def attempt() -> Any:
            async with self.throttle.slot(origin, crawl_delay_ms):
                FETCH_ATTEMPTS.inc()
                logger.debug(f"Fetching {url}")
                result = await self.perform_fetch(url)
            status_code = getattr(result, "status_code", None)
            if isinstance(status_code, int) and status_code >= 400:
                raise FetchError.from_status(status_code, url)
            return result

        try:
            result = await self.retry.run(attempt, label=url, on_attempt=on_attempt)
        except RetryError as exc:
            return self._record(WorkOutcome.failure(url, exc.last_error, exc.attempts))

        return self._record(WorkOutcome.success(url, result.value, result.attempts))

    def _record(self, outcome: WorkOutcome) -> WorkOutcome:
        URLS_PROCESSED.labels(status=outcome.status.value).inc()
        log_outcome(outcome)
        return outcome

    # --------------------------
    #  Introspection
    # --------------------------
    def get_stats(self) -> SchedulerStats:
        global_active, per_origin = self.throttle.snapshot()
        return SchedulerStats(
            global_active=global_active,
            per_origin_active=dict(per_origin),
            cached_origin_count=len(self.policy_cache),
        )

    def clear_policy_cache(self) -> None:
        self.policy_cache.clear_cache()


def summarize(outcomes: Sequence[WorkOutcome], duration_ms: float = 0.0) -> RunSummary:
    return RunSummary.from_outcomes(outcomes, duration_ms)

