from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional

from politecrawl.errors import ConfigurationError


DENIED_REASON = "Disallowed by policy"


@dataclass(frozen=True)
class SchedulerConfig:
    global_concurrency: int = 3
    per_origin_concurrency: int = 1
    min_spacing_ms: int = 2000
    max_retries: int = 3
    backoff_base_ms: int = 2000
    backoff_multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.global_concurrency <= 0:
            raise ConfigurationError(f"global_concurrency must be > 0, got {self.global_concurrency}")
        if self.per_origin_concurrency <= 0:
            raise ConfigurationError(
                f"per_origin_concurrency must be > 0, got {self.per_origin_concurrency}"
            )
        if self.min_spacing_ms < 0:
            raise ConfigurationError(f"min_spacing_ms must be >= 0, got {self.min_spacing_ms}")
        if self.max_retries < 0:
            raise ConfigurationError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.backoff_base_ms < 0:
            raise ConfigurationError(f"backoff_base_ms must be >= 0, got {self.backoff_base_ms}")
        if self.backoff_multiplier < 1:
            raise ConfigurationError(
                f"backoff_multiplier must be >= 1, got {self.backoff_multiplier}"
            )


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    DENIED = "denied"


@dataclass(frozen=True)
class WorkOutcome:
    """Terminal result for one input URL."""

    url: str
    status: OutcomeStatus
    payload: Any = None
    error: Optional[BaseException] = None
    attempts: int = 0
    reason: str = ""

    @classmethod
    def success(cls, url: str, payload: Any, attempts: int) -> "WorkOutcome":
        return cls(url=url, status=OutcomeStatus.SUCCESS, payload=payload, attempts=attempts)

    @classmethod
    def failure(cls, url: str, error: BaseException, attempts: int) -> "WorkOutcome":
        return cls(
            url=url,
            status=OutcomeStatus.FAILURE,
            error=error,
            attempts=attempts,
            reason=str(error),
        )

    @classmethod
    def denied(cls, url: str, reason: str = DENIED_REASON) -> "WorkOutcome":
        return cls(url=url, status=OutcomeStatus.DENIED, reason=reason)

    @property
    def allowed(self) -> bool:
        return self.status is not OutcomeStatus.DENIED

    @property
    def ok(self) -> bool:
        return self.status is OutcomeStatus.SUCCESS


@dataclass(frozen=True)
class PolicyCheck:
    allowed: bool
    reason: str = ""


@dataclass(frozen=True)
class SchedulerStats:
    global_active: int
    per_origin_active: Mapping[str, int]
    cached_origin_count: int


@dataclass
class RunSummary:
    total: int = 0
    successes: int = 0
    failures: int = 0
    denied: int = 0
    duration_ms: float = 0.0
    denied_reasons: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_outcomes(cls, outcomes: Iterable[WorkOutcome], duration_ms: float = 0.0) -> "RunSummary":
        summary = cls(duration_ms=duration_ms)
        for outcome in outcomes:
            summary.total += 1
            if outcome.status is OutcomeStatus.SUCCESS:
                summary.successes += 1
            elif outcome.status is OutcomeStatus.FAILURE:
                summary.failures += 1
            else:
                summary.denied += 1
                reason = outcome.reason or "Unknown"
                summary.denied_reasons[reason] = summary.denied_reasons.get(reason, 0) + 1
        return summary
