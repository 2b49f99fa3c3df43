"""robots.txt parsing and rule evaluation.

Supports ``User-agent``, ``Allow``, ``Disallow``, ``Crawl-delay`` and ``Sitemap``.
Groups are runs of consecutive ``User-agent`` lines followed by their directives;
groups naming the same agent are merged. Rules are matched against the URL path
(plus query) with ``*`` wildcards and a trailing ``$`` anchor, and the longest
matching rule wins, ``Allow`` winning ties.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote, unquote


SOURCE_PARSED = "parsed"
SOURCE_NOT_FOUND = "not_found"
SOURCE_DEGRADED = "degraded"
SOURCE_UNPARSEABLE = "unparseable"

WILDCARD_AGENT = "*"

_PATH_SAFE_CHARS = "/:@!$&'()*+,;=?~-._"


@dataclass(frozen=True)
class Rule:
    allow: bool
    pattern: str

    @property
    def specificity(self) -> int:
        return len(self.pattern)

    def matches(self, path: str) -> bool:
        return _compile(self.pattern).match(path) is not None


@dataclass(frozen=True)
class AgentGroup:
    agents: Tuple[str, ...]
    rules: Tuple[Rule, ...] = ()
    crawl_delay: Optional[float] = None  # seconds


@dataclass(frozen=True)
class OriginPolicy:
    """Parsed crawl permissions for one origin. Never mutated once built."""

    origin: str
    groups: Tuple[AgentGroup, ...] = ()
    sitemaps: Tuple[str, ...] = ()
    source: str = SOURCE_PARSED

    @classmethod
    def allow_all(cls, origin: str, source: str) -> "OriginPolicy":
        return cls(origin=origin, source=source)

    @property
    def is_empty(self) -> bool:
        return not self.groups

    def group_for(self, agent_token: str) -> Optional[AgentGroup]:
        token = agent_product_token(agent_token)
        fallback = None
        for group in self.groups:
            if token in group.agents:
                return group
            if WILDCARD_AGENT in group.agents:
                fallback = group
        return fallback

    def allow_rules(self, agent_token: str = WILDCARD_AGENT) -> Tuple[Rule, ...]:
        group = self.group_for(agent_token)
        return tuple(r for r in group.rules if r.allow) if group else ()

    def deny_rules(self, agent_token: str = WILDCARD_AGENT) -> Tuple[Rule, ...]:
        group = self.group_for(agent_token)
        return tuple(r for r in group.rules if not r.allow) if group else ()

    def crawl_delay(self, agent_token: str = WILDCARD_AGENT) -> Optional[float]:
        group = self.group_for(agent_token)
        return group.crawl_delay if group else None

    def is_allowed(self, path: str, agent_token: str = WILDCARD_AGENT) -> bool:
        path = normalize_path(path)
        if path == "/robots.txt":
            return True

        group = self.group_for(agent_token)
        if group is None:
            return True

        best: Optional[Rule] = None
        for rule in group.rules:
            if not rule.matches(path):
                continue
            if (
                best is None
                or rule.specificity > best.specificity
                or (rule.specificity == best.specificity and rule.allow and not best.allow)
            ):
                best = rule

        return True if best is None else best.allow


def agent_product_token(agent: str) -> str:
    """``"MyBot/1.2 (+https://x)"`` -> ``"mybot"``."""
    token = (agent or "").strip().split("/", 1)[0].split(" ", 1)[0]
    return token.lower() or WILDCARD_AGENT


def normalize_path(path: str) -> str:
    if not path:
        return "/"
    if not path.startswith("/"):
        path = f"/{path}"
    return quote(unquote(path), safe=_PATH_SAFE_CHARS + "%")


_PATTERN_CACHE: Dict[str, "re.Pattern[str]"] = {}


def _compile(pattern: str) -> "re.Pattern[str]":
    compiled = _PATTERN_CACHE.get(pattern)
    if compiled is None:
        anchored = pattern.endswith("$")
        body = pattern[:-1] if anchored else pattern
        regex = ".*".join(re.escape(part) for part in body.split("*"))
        compiled = re.compile(regex + ("$" if anchored else ""), re.DOTALL)
        _PATTERN_CACHE[pattern] = compiled
    return compiled


@dataclass
class _GroupBuilder:
    agents: List[str] = field(default_factory=list)
    rules: List[Rule] = field(default_factory=list)
    crawl_delay: Optional[float] = None


def _strip_comment(line: str) -> str:
    idx = line.find("#")
    return line if idx < 0 else line[:idx]


def _split_kv(line: str) -> Optional[Tuple[str, str]]:
    if ":" not in line:
        return None
    key, value = line.split(":", 1)
    return key.strip().lower(), value.strip()


def parse_robots(origin: str, text: str) -> OriginPolicy:
    """Build an :class:`OriginPolicy` from robots.txt content.

    Unknown directives and malformed lines are skipped; rules that appear
    before any ``User-agent`` line are ignored.
    """
    builders: List[_GroupBuilder] = []
    sitemaps: List[str] = []
    current: Optional[_GroupBuilder] = None
    in_directives = False

    for raw in text.lstrip("\ufeff").splitlines():
        line = _strip_comment(raw).strip()
        if not line:
            continue
        kv = _split_kv(line)
        if kv is None:
            continue
        key, value = kv

        if key == "user-agent":
            if current is None or in_directives:
                current = _GroupBuilder()
                builders.append(current)
                in_directives = False
            current.agents.append(agent_product_token(value))
            continue

        if key == "sitemap":
            if value:
                sitemaps.append(value)
            continue

        if current is None:
            continue
        in_directives = True

        if key in ("allow", "disallow"):
            # empty values are no-ops
            if value:
                current.rules.append(Rule(allow=key == "allow", pattern=normalize_path(value)))
        elif key == "crawl-delay":
            try:
                delay = float(value)
            except ValueError:
                continue
            if math.isfinite(delay) and delay >= 0:
                current.crawl_delay = delay

    return OriginPolicy(
        origin=origin,
        groups=_merge_groups(builders),
        sitemaps=tuple(sitemaps),
        source=SOURCE_PARSED,
    )


def _merge_groups(builders: List[_GroupBuilder]) -> Tuple[AgentGroup, ...]:
    merged: Dict[str, _GroupBuilder] = {}
    order: List[str] = []
    for builder in builders:
        for agent in builder.agents:
            target = merged.get(agent)
            if target is None:
                target = merged[agent] = _GroupBuilder(agents=[agent])
                order.append(agent)
            target.rules.extend(builder.rules)
            if builder.crawl_delay is not None:
                target.crawl_delay = builder.crawl_delay

    return tuple(
        AgentGroup(
            agents=(agent,),
            rules=tuple(merged[agent].rules),
            crawl_delay=merged[agent].crawl_delay,
        )
        for agent in order
    )
