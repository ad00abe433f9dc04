"""Per-key, per-route rate limiting.

Each (key, route) pair gets a fixed window (default 60s) with a ceiling and a
shorter burst sub-window (default 10s) with its own ceiling. A request is
admitted only when both have room; denied requests are not counted.

Counters live in process memory. Expired windows are recomputed lazily on
access, so correctness never depends on the periodic sweep; the sweep only
bounds memory.
"""

from __future__ import annotations

import asyncio
import logging
import math
import re
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from crawlgate.domain.models import UNLIMITED, RateLimiterStats, RateLimitResult, RateLimitRule
from crawlgate.observability.metrics import RATE_LIMIT_DECISIONS

logger = logging.getLogger(__name__)

DEFAULT_ROUTE = "*default*"


@dataclass
class RateLimitWindow:
    window_start: float
    burst_start: float
    count: int = 0
    burst_count: int = 0
    blocked: bool = False


def _compile_route(pattern: str) -> re.Pattern[str]:
    # '*' stands for one or more whole path segments
    parts = [re.escape(part) for part in pattern.split("*")]
    return re.compile("^" + r"[^/]+(?:/[^/]+)*".join(parts) + "$")


class RateLimiter:
    """Fixed-window limiter with a burst sub-window."""

    def __init__(
        self,
        *,
        rules: Iterable[RateLimitRule] = (),
        default_limit: int = 100,
        default_burst_limit: int = 30,
        window_seconds: float = 60.0,
        burst_window_seconds: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if burst_window_seconds > window_seconds:
            raise ValueError("burst window must not be longer than the main window")
        self._rules = [(rule, _compile_route(rule.route)) for rule in rules]
        self._default_rule = RateLimitRule(
            route=DEFAULT_ROUTE, limit=default_limit, burst_limit=default_burst_limit
        )
        self.window_seconds = window_seconds
        self.burst_window_seconds = burst_window_seconds
        self._clock = clock
        self._entries: dict[tuple[str, str], RateLimitWindow] = {}
        self._sweeper: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def resolve_rule(self, route: str) -> RateLimitRule:
        """Exact match first, then the most specific wildcard pattern."""
        for rule, _ in self._rules:
            if rule.route == route:
                return rule
        matches = [rule for rule, regex in self._rules if "*" in rule.route and regex.match(route)]
        if matches:
            return max(matches, key=lambda rule: len(rule.route))
        return self._default_rule

    def _ceilings(
        self, rule: RateLimitRule, limit: int | None, burst_limit: int | None
    ) -> tuple[int, int]:
        # An unlimited plan ceiling defers to the route rule
        if limit is None or limit == UNLIMITED:
            return rule.limit, burst_limit or rule.burst_limit
        if burst_limit is None:
            # Keep the rule's burst-to-window proportion for overridden ceilings
            burst_limit = max(1, math.ceil(limit * rule.burst_limit / rule.limit))
        return limit, burst_limit

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def check_rate_limit(
        self,
        key: str,
        route: str,
        limit: int | None = None,
        burst_limit: int | None = None,
    ) -> RateLimitResult:
        """Count one request for ``key`` on ``route`` if both windows allow it.

        ``limit`` overrides the route's window ceiling (used for a tenant
        plan's ``rate_limit_per_minute``); ``UNLIMITED`` keeps the route's own.
        """
        rule = self.resolve_rule(route)
        ceiling, burst_ceiling = self._ceilings(rule, limit, burst_limit)
        now = self._clock()
        window = self._current_window((key, route), now)

        window_reset_in = window.window_start + self.window_seconds - now
        if window.count >= ceiling or window.burst_count >= burst_ceiling:
            window.blocked = True
            if window.count >= ceiling:
                reason = "window"
                retry_after = window_reset_in
            else:
                reason = "burst"
                retry_after = window.burst_start + self.burst_window_seconds - now
            RATE_LIMIT_DECISIONS.labels(route=rule.route, result="denied").inc()
            logger.info("Rate limit exceeded for %s on %s (%s ceiling)", key, route, reason)
            return RateLimitResult(
                key=key,
                route=route,
                allowed=False,
                limit=ceiling,
                remaining=0,
                reset_time=self._wall_time(retry_after),
                retry_after_seconds=max(0.0, retry_after),
                reason=reason,
            )

        window.count += 1
        window.burst_count += 1
        window.blocked = False
        RATE_LIMIT_DECISIONS.labels(route=rule.route, result="allowed").inc()
        return RateLimitResult(
            key=key,
            route=route,
            allowed=True,
            limit=ceiling,
            remaining=min(ceiling - window.count, burst_ceiling - window.burst_count),
            reset_time=self._wall_time(window_reset_in),
        )

    def get_status(self, key: str, route: str, limit: int | None = None) -> RateLimitResult | None:
        """Current standing for ``key`` on ``route`` without counting a request."""
        entry = self._entries.get((key, route))
        if entry is None:
            return None
        rule = self.resolve_rule(route)
        ceiling, burst_ceiling = self._ceilings(rule, limit, None)
        now = self._clock()
        window = self._current_window((key, route), now)
        return RateLimitResult(
            key=key,
            route=route,
            allowed=window.count < ceiling and window.burst_count < burst_ceiling,
            limit=ceiling,
            remaining=max(0, min(ceiling - window.count, burst_ceiling - window.burst_count)),
            reset_time=self._wall_time(window.window_start + self.window_seconds - now),
        )

    def _current_window(self, entry_key: tuple[str, str], now: float) -> RateLimitWindow:
        window = self._entries.get(entry_key)
        if window is None or now >= window.window_start + self.window_seconds:
            window = RateLimitWindow(window_start=now, burst_start=now)
            self._entries[entry_key] = window
        elif now >= window.burst_start + self.burst_window_seconds:
            window.burst_start = now
            window.burst_count = 0
        return window

    @staticmethod
    def _wall_time(seconds_from_now: float) -> datetime:
        return datetime.now(UTC) + timedelta(seconds=max(0.0, seconds_from_now))

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def reset(self, key: str, route: str) -> None:
        self._entries.pop((key, route), None)

    def clear(self) -> None:
        self._entries.clear()

    def sweep(self) -> int:
        """Evict entries whose main window has expired. Returns the count removed."""
        now = self._clock()
        expired = [
            entry_key
            for entry_key, window in self._entries.items()
            if now >= window.window_start + self.window_seconds
        ]
        for entry_key in expired:
            del self._entries[entry_key]
        return len(expired)

    def get_stats(self) -> RateLimiterStats:
        now = self._clock()
        active = [
            window
            for window in self._entries.values()
            if now < window.window_start + self.window_seconds
        ]
        return RateLimiterStats(
            total_entries=len(self._entries),
            active_entries=len(active),
            blocked_entries=sum(1 for window in active if window.blocked),
        )

    def start_sweeper(self, interval_seconds: float) -> None:
        if self._sweeper and not self._sweeper.done():
            return
        self._sweeper = asyncio.create_task(self._sweep_loop(interval_seconds))

    async def stop_sweeper(self) -> None:
        if self._sweeper and not self._sweeper.done():
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
        self._sweeper = None

    async def _sweep_loop(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            removed = self.sweep()
            if removed:
                logger.debug("Rate limiter sweep evicted %s entries", removed)
