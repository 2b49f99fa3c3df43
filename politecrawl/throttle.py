"""Per-origin and global admission control for outgoing requests.

A request is admitted when the global active count is below the global limit,
the origin's active count is below the per-origin limit, and the origin's last
request started at least ``spacing`` ago. The spacing is the configured minimum,
raised to the origin's crawl-delay when that is longer.

Waiters sleep on an event that is swapped on every release, with a timeout
equal to the remaining spacing window, so nobody spins.
"""

from __future__ import annotations

import asyncio
import itertools
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Dict, Optional, Set, Tuple

from loguru import logger

from politecrawl.errors import ConfigurationError, ThrottleError
from politecrawl.monitoring.metrics_server import (
    ADMISSION_WAIT,
    THROTTLE_GLOBAL_ACTIVE,
    THROTTLE_ORIGIN_ACTIVE,
)


DEFAULT_POLL_INTERVAL = 0.1


@dataclass
class ThrottleState:
    active: int = 0
    last_request_at: Optional[float] = None


@dataclass(frozen=True)
class ThrottleTicket:
    id: int
    origin: str
    admitted_at: float


class DomainThrottle:
    def __init__(
        self,
        global_concurrency: int,
        per_origin_concurrency: int,
        min_spacing_ms: float = 0,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        if global_concurrency <= 0:
            raise ConfigurationError(f"global_concurrency must be > 0, got {global_concurrency}")
        if per_origin_concurrency <= 0:
            raise ConfigurationError(
                f"per_origin_concurrency must be > 0, got {per_origin_concurrency}"
            )
        if min_spacing_ms < 0:
            raise ConfigurationError(f"min_spacing_ms must be >= 0, got {min_spacing_ms}")
        if poll_interval <= 0:
            raise ConfigurationError(f"poll_interval must be > 0, got {poll_interval}")

        self.global_concurrency = global_concurrency
        self.per_origin_concurrency = per_origin_concurrency
        self.min_spacing = min_spacing_ms / 1000
        self.poll_interval = poll_interval
        self._clock = clock

        self._global_active = 0
        self._states: Dict[str, ThrottleState] = {}
        self._outstanding: Set[int] = set()
        self._ids = itertools.count(1)
        self._changed = asyncio.Event()

    # --------------------------
    #  Admission
    # --------------------------
    def _spacing_for(self, crawl_delay_ms: Optional[float]) -> float:
        if crawl_delay_ms and crawl_delay_ms / 1000 > self.min_spacing:
            return crawl_delay_ms / 1000
        return self.min_spacing

    def _blocked_for(self, state: ThrottleState, spacing: float, now: float) -> Optional[float]:
        """None when admissible, else seconds to wait (0 means wait for a release)."""
        if self._global_active >= self.global_concurrency:
            return 0.0
        if state.active >= self.per_origin_concurrency:
            return 0.0
        if state.last_request_at is not None:
            remaining = spacing - (now - state.last_request_at)
            if remaining > 0:
                return remaining
        return None

    def try_admit(self, origin: str, crawl_delay_ms: Optional[float] = None) -> Optional[ThrottleTicket]:
        """Admit immediately if every condition holds, without waiting."""
        state = self._states.setdefault(origin, ThrottleState())
        now = self._clock()
        if self._blocked_for(state, self._spacing_for(crawl_delay_ms), now) is not None:
            return None
        return self._grant(origin, state, now)

    async def admit(self, origin: str, crawl_delay_ms: Optional[float] = None) -> ThrottleTicket:
        spacing = self._spacing_for(crawl_delay_ms)
        state = self._states.setdefault(origin, ThrottleState())
        started = self._clock()

        while True:
            # check and grant run without an await in between, so concurrent
            # admissions cannot both pass the same check
            changed = self._changed
            now = self._clock()
            wait = self._blocked_for(state, spacing, now)
            if wait is None:
                ticket = self._grant(origin, state, now)
                ADMISSION_WAIT.observe(max(0.0, now - started))
                return ticket

            timeout = wait if wait > 0 else self.poll_interval
            try:
                await asyncio.wait_for(changed.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                pass
            # the state may have been dropped by reset() while we slept
            state = self._states.setdefault(origin, state)

    def _grant(self, origin: str, state: ThrottleState, now: float) -> ThrottleTicket:
        self._global_active += 1
        state.active += 1
        state.last_request_at = now

        ticket = ThrottleTicket(id=next(self._ids), origin=origin, admitted_at=now)
        self._outstanding.add(ticket.id)

        THROTTLE_GLOBAL_ACTIVE.set(self._global_active)
        THROTTLE_ORIGIN_ACTIVE.labels(origin=origin).set(state.active)
        logger.debug(
            f"Admitted {origin} (origin active={state.active}, global active={self._global_active})"
        )
        return ticket

    # --------------------------
    #  Release
    # --------------------------
    def release(self, ticket: ThrottleTicket) -> None:
        """Give back a slot. Synchronous so it is safe in ``finally`` during cancellation."""
        if ticket.id not in self._outstanding:
            raise ThrottleError(f"Ticket {ticket.id} for {ticket.origin} was already released")
        self._outstanding.discard(ticket.id)

        state = self._states.setdefault(ticket.origin, ThrottleState())
        state.active = max(0, state.active - 1)
        self._global_active = max(0, self._global_active - 1)

        THROTTLE_GLOBAL_ACTIVE.set(self._global_active)
        THROTTLE_ORIGIN_ACTIVE.labels(origin=ticket.origin).set(state.active)
        self._notify()

    def _notify(self) -> None:
        changed, self._changed = self._changed, asyncio.Event()
        changed.set()

    @asynccontextmanager
    async def slot(self, origin: str, crawl_delay_ms: Optional[float] = None) -> AsyncIterator[ThrottleTicket]:
        ticket = await self.admit(origin, crawl_delay_ms)
        try:
            yield ticket
        finally:
            self.release(ticket)

    # --------------------------
    #  Introspection
    # --------------------------
    @property
    def global_active(self) -> int:
        return self._global_active

    def active_for(self, origin: str) -> int:
        state = self._states.get(origin)
        return state.active if state else 0

    def last_request_at(self, origin: str) -> Optional[float]:
        state = self._states.get(origin)
        return state.last_request_at if state else None

    def snapshot(self) -> Tuple[int, Dict[str, int]]:
        return self._global_active, {origin: s.active for origin, s in self._states.items()}

    def reset(self) -> None:
        """Forget idle origins between runs; origins with slots in use are kept."""
        self._states = {origin: s for origin, s in self._states.items() if s.active > 0}
        self._notify()
