from datetime import datetime
from loguru import logger
import os

from politecrawl.models import OutcomeStatus, RunSummary, WorkOutcome

_logger_initialized = False

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level} | run={extra[run_id]} | {message}"


def default_run_id() -> str:
    return datetime.now().strftime("%Y%m%dT%H%M%S")


def setup_logger(log_level: str = "INFO", log_path: str = "data/logs/politecrawl.log", run_id: str | None = None):
    global _logger_initialized

    resolved_run_id = run_id or os.getenv("RUN_ID") or default_run_id()

    if not _logger_initialized:
        log_dir = os.path.dirname(log_path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

        logger.remove()  # drop loguru's default stderr sink
        logger.configure(extra={"run_id": resolved_run_id})

        logger.add(
            log_path,
            rotation="10 MB",
            retention="7 days",
            level=log_level,
            format=LOG_FORMAT,
        )
        logger.add(
            lambda msg: print(msg, end=""),
            colorize=True,
            level=log_level,
            format=LOG_FORMAT,
        )

        _logger_initialized = True

    return logger.bind(run_id=resolved_run_id)


def log_url_status(url: str, status: str, **data) -> None:
    details = ", ".join(f"{k}={v}" for k, v in data.items() if v not in (None, ""))
    suffix = f" ({details})" if details else ""

    if status == OutcomeStatus.SUCCESS.value:
        logger.info(f"✓ {url}{suffix}")
    elif status == OutcomeStatus.FAILURE.value:
        logger.error(f"✗ {url}{suffix}")
    else:
        logger.warning(f"⊘ {url}{suffix}")


def log_outcome(outcome: WorkOutcome) -> None:
    log_url_status(
        outcome.url,
        outcome.status.value,
        attempts=outcome.attempts or None,
        reason=outcome.reason,
    )


def log_summary(summary: RunSummary) -> None:
    logger.info("=" * 60)
    logger.info("CRAWL SUMMARY")
    logger.info("=" * 60)
    logger.info(f"Total URLs: {summary.total}")
    logger.info(f"Successes: {summary.successes}")
    logger.info(f"Failures: {summary.failures}")
    logger.info(f"Denied: {summary.denied}")
    for reason, count in summary.denied_reasons.items():
        logger.info(f"  {reason}: {count}")
    logger.info(f"Duration: {summary.duration_ms:.0f}ms ({summary.duration_ms / 1000:.2f}s)")
    logger.info("=" * 60)
