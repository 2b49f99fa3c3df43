import asyncio
import signal
import sys
import time
from typing import List, Optional

import httpx
from loguru import logger

# -------------------------------
# UVLOOP (used when installed)
# -------------------------------
try:
    import uvloop
    uvloop.install()
except ImportError:
    logger.warning("uvloop not available, using default asyncio loop.")

# -------------------------------
# INTERNAL IMPORTS
# -------------------------------
from politecrawl.fetcher import HttpPageFetcher
from politecrawl.models import WorkOutcome
from politecrawl.monitoring.metrics_server import start_metrics_server
from politecrawl.retry import RetryCoordinator
from politecrawl.scheduler import CrawlScheduler, summarize
from politecrawl.utils.config_loader import Config, load_config
from politecrawl.utils.logger import log_summary, setup_logger
from politecrawl.utils.robots import OriginPolicyCache
from politecrawl.utils.url_utils import load_urls


# -------------------------------
# RUN
# -------------------------------
async def run(urls: List[str], config: Config) -> List[WorkOutcome]:
    timeout = httpx.Timeout(timeout=config.request_timeout)

    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
        policy_cache = OriginPolicyCache(
            client,
            config.crawler_user_agent,
            timeout=config.robots_timeout,
        )
        scheduler_config = config.scheduler_config()
        scheduler = CrawlScheduler(
            HttpPageFetcher(client, config.crawler_user_agent),
            scheduler_config,
            policy_cache=policy_cache,
            retry=RetryCoordinator(
                scheduler_config.max_retries,
                scheduler_config.backoff_base_ms,
                scheduler_config.backoff_multiplier,
                jitter=config.backoff_jitter,
            ),
        )
        try:
            return await scheduler.schedule_all(urls, timeout=config.run_timeout)
        finally:
            stats = scheduler.get_stats()
            logger.info(
                f"Final stats: global_active={stats.global_active}, "
                f"cached_origins={stats.cached_origin_count}"
            )
            scheduler.clear_policy_cache()


# -------------------------------
# MAIN APPLICATION
# -------------------------------
async def main(argv: Optional[List[str]] = None) -> int:
    config = load_config()
    setup_logger(config.log_level, config.log_path)

    logger.info("Starting polite crawl...")

    args = sys.argv[1:] if argv is None else argv
    urls_file = args[0] if args else config.urls_file
    if not urls_file:
        logger.error("No input file given (pass a path or set URLS_FILE)")
        return 2

    urls = load_urls(urls_file)
    logger.info(f"Loaded {len(urls)} URLs from {urls_file}")

    metrics_runner, _ = await start_metrics_server(port=config.metrics_port)

    started = time.perf_counter()
    crawl_task = asyncio.create_task(run(urls, config))

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, crawl_task.cancel)

    try:
        outcomes = await crawl_task
    except asyncio.CancelledError:
        logger.warning("Crawl interrupted; in-flight requests abandoned.")
        return 130
    finally:
        await metrics_runner.shutdown()
        await metrics_runner.cleanup()

    log_summary(summarize(outcomes, (time.perf_counter() - started) * 1000))
    return 0


# -------------------------------
# ENTRYPOINT
# -------------------------------
if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
