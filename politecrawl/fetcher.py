import os
import time
from dataclasses import dataclass
from typing import Optional

import httpx
from loguru import logger

from politecrawl.errors import FetchError
from politecrawl.monitoring.metrics_server import FETCH_LATENCY
from politecrawl.parsing.html_extractor import extract_page


MAX_DOWNLOAD_BYTES = int(os.getenv("MAX_DOWNLOAD_BYTES", 2_000_000))
MAX_REDIRECTS = 10


@dataclass
class FetchResult:
    status_code: int
    content: str
    content_type: str
    skipped: bool
    title: str = ""
    text: str = ""
    redirect_count: int = 0
    skip_reason: Optional[str] = None


class HttpPageFetcher:
    """Default page fetch collaborator for the scheduler.

    Calling the fetcher with a URL performs one GET. Responses with status
    >= 400 raise :class:`FetchError` so the retry layer can classify them;
    everything else comes back as a :class:`FetchResult`.
    """

    def __init__(self, client: httpx.AsyncClient, user_agent: str):
        self.client = client
        self.user_agent = user_agent

    async def __call__(self, url: str) -> FetchResult:
        return await self.fetch(url)

    async def fetch(self, url: str) -> FetchResult:
        start = time.perf_counter()
        try:
            resp = await self.client.get(
                url,
                headers={
                    "User-Agent": self.user_agent,
                    "Accept": (
                        "text/html,application/xhtml+xml,application/xml;q=0.9,"
                        "*/*;q=0.8"
                    ),
                    "Accept-Language": "en-US,en;q=0.9",
                },
            )
        finally:
            FETCH_LATENCY.observe(time.perf_counter() - start)

        if resp.status_code >= 400:
            raise FetchError.from_status(resp.status_code, url)

        content_type = (resp.headers.get("Content-Type") or "").lower()
        body = resp.content or b""
        redirect_count = len(resp.history)

        if redirect_count > MAX_REDIRECTS:
            return self._skipped(resp.status_code, content_type, redirect_count, "redirect_loop")

        if len(body) > MAX_DOWNLOAD_BYTES:
            return self._skipped(resp.status_code, content_type, redirect_count, "body_too_large")

        if "text/html" not in content_type:
            return self._skipped(resp.status_code, content_type, redirect_count, "non_html_content")

        html = resp.text or ""
        page = extract_page(html)
        return FetchResult(
            status_code=resp.status_code,
            content=html,
            content_type=content_type,
            skipped=False,
            title=page.title,
            text=page.text,
            redirect_count=redirect_count,
        )

    @staticmethod
    def _skipped(status_code: int, content_type: str, redirect_count: int, reason: str) -> FetchResult:
        logger.info(f"Skipping body ({reason}), status={status_code}, content-type={content_type!r}")
        return FetchResult(
            status_code=status_code,
            content="",
            content_type=content_type,
            skipped=True,
            redirect_count=redirect_count,
            skip_reason=reason,
        )
