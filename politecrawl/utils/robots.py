import asyncio
from typing import Dict, List, Optional

from loguru import logger

from politecrawl.models import DENIED_REASON, PolicyCheck
from politecrawl.monitoring.metrics_server import POLICY_CACHE_SIZE, POLICY_DENIED, POLICY_FETCHES
from politecrawl.utils.robots_parser import (
    SOURCE_DEGRADED,
    SOURCE_NOT_FOUND,
    SOURCE_UNPARSEABLE,
    WILDCARD_AGENT,
    OriginPolicy,
    parse_robots,
)
from politecrawl.utils.url_utils import get_origin, get_request_path, robots_url


DEFAULT_POLICY_TIMEOUT = 5.0


class OriginPolicyCache:
    """Fetch, parse and cache robots.txt policies per origin for one run.

    ``client`` is any object with an httpx-style ``async get(url, headers=..., timeout=...)``.
    A fetch failure never blocks crawling: the origin degrades to allow-all.
    """

    def __init__(
        self,
        client,
        user_agent: str,
        *,
        timeout: float = DEFAULT_POLICY_TIMEOUT,
    ):
        self.client = client
        self.user_agent = user_agent
        self.timeout = timeout
        self._policies: Dict[str, OriginPolicy] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    # -------------------------------------------------------
    async def policy_for(self, origin: str) -> OriginPolicy:
        policy = self._policies.get(origin)
        if policy is not None:
            return policy

        lock = self._locks.setdefault(origin, asyncio.Lock())
        async with lock:
            # another task may have filled the entry while we waited
            policy = self._policies.get(origin)
            if policy is None:
                policy = await self._fetch_policy(origin)
                self._policies[origin] = policy
                POLICY_CACHE_SIZE.set(len(self._policies))
        return policy

    # -------------------------------------------------------
    async def is_allowed(self, url: str, agent_token: Optional[str] = None) -> bool:
        origin = get_origin(url)
        policy = await self.policy_for(origin)
        allowed = policy.is_allowed(get_request_path(url), agent_token or self.user_agent)
        if not allowed:
            logger.info(f"robots.txt disallows: {url}")
        return allowed

    async def check_url(self, url: str, agent_token: Optional[str] = None) -> PolicyCheck:
        allowed = await self.is_allowed(url, agent_token)
        if not allowed:
            POLICY_DENIED.inc()
            return PolicyCheck(allowed=False, reason=DENIED_REASON)
        return PolicyCheck(allowed=True, reason="")

    async def crawl_delay_ms(self, origin: str, agent_token: Optional[str] = None) -> float:
        policy = await self.policy_for(origin)
        delay = policy.crawl_delay(agent_token or self.user_agent)
        return delay * 1000 if delay else 0.0

    # -------------------------------------------------------
    def clear_cache(self) -> None:
        self._policies.clear()
        self._locks.clear()
        POLICY_CACHE_SIZE.set(0)
        logger.debug("robots.txt cache cleared")

    def cached_origins(self) -> List[str]:
        return list(self._policies)

    def cache_stats(self) -> Dict[str, object]:
        return {
            "cached_origins": len(self._policies),
            "origins": self.cached_origins(),
        }

    def __len__(self) -> int:
        return len(self._policies)

    # -------------------------------------------------------
    async def _fetch_policy(self, origin: str) -> OriginPolicy:
        url = robots_url(origin)
        logger.debug(f"Fetching robots.txt from {url}")

        try:
            response = await self.client.get(
                url,
                headers={"User-Agent": self.user_agent},
                timeout=self.timeout,
            )
        except Exception as exc:
            POLICY_FETCHES.labels(result=SOURCE_DEGRADED).inc()
            logger.warning(f"Error fetching robots.txt from {url}: {exc!r}; allowing all")
            return OriginPolicy.allow_all(origin, SOURCE_DEGRADED)

        status = response.status_code
        if 400 <= status < 500:
            POLICY_FETCHES.labels(result=SOURCE_NOT_FOUND).inc()
            logger.debug(f"No robots.txt at {url} (status: {status})")
            return OriginPolicy.allow_all(origin, SOURCE_NOT_FOUND)

        if status != 200:
            POLICY_FETCHES.labels(result=SOURCE_DEGRADED).inc()
            logger.warning(f"Unexpected status {status} for {url}; allowing all")
            return OriginPolicy.allow_all(origin, SOURCE_DEGRADED)

        try:
            text = response.text or ""
            policy = parse_robots(origin, text)
        except Exception as exc:
            POLICY_FETCHES.labels(result=SOURCE_UNPARSEABLE).inc()
            logger.warning(f"Unparseable robots.txt at {url}: {exc!r}; allowing all")
            return OriginPolicy.allow_all(origin, SOURCE_UNPARSEABLE)

        POLICY_FETCHES.labels(result=policy.source).inc()
        logger.debug(
            f"Parsed robots.txt for {origin}: {len(policy.groups)} group(s), "
            f"crawl-delay={policy.crawl_delay(self.user_agent) or policy.crawl_delay(WILDCARD_AGENT)}"
        )
        return policy
