from __future__ import annotations

from typing import Optional


class PoliteCrawlError(Exception):
    """Base class for every error raised by the scheduling core."""


class ConfigurationError(PoliteCrawlError, ValueError):
    """Invalid limits or settings; raised at construction, never per URL."""


class ThrottleError(PoliteCrawlError):
    pass


class InvalidUrlError(PoliteCrawlError):
    def __init__(self, url: str, message: str = "Invalid URL") -> None:
        super().__init__(f"{message}: {url!r}")
        self.url = url


class FetchError(PoliteCrawlError):
    """A page fetch failed, optionally with the HTTP status that caused it."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, url: Optional[str] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.url = url

    @classmethod
    def from_status(cls, status_code: int, url: Optional[str] = None) -> "FetchError":
        return cls(f"HTTP {status_code}", status_code=status_code, url=url)


class RetryableFetchError(FetchError):
    pass


class FatalFetchError(FetchError):
    pass


class RetryError(PoliteCrawlError):
    """Retries ended (fatal error or budget exhausted); wraps the final error."""

    def __init__(self, last_error: BaseException, attempts: int) -> None:
        super().__init__(f"{last_error} (after {attempts} attempt{'s' if attempts != 1 else ''})")
        self.last_error = last_error
        self.attempts = attempts

    @property
    def retries(self) -> int:
        return max(0, self.attempts - 1)


class RunCancelledError(PoliteCrawlError):
    pass
