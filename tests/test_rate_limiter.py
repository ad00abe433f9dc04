"""Tests for the fixed-window + burst rate limiter."""

from __future__ import annotations

import pytest
from support import FakeClock

from crawlgate.config import default_rate_limit_rules
from crawlgate.domain.models import UNLIMITED, RateLimitRule
from crawlgate.services.rate_limiter import DEFAULT_ROUTE, RateLimiter

ROUTE = "/api/scrape/start"


def _limiter(clock: FakeClock, *, limit: int, burst_limit: int) -> RateLimiter:
    return RateLimiter(
        rules=[RateLimitRule(route=ROUTE, limit=limit, burst_limit=burst_limit)],
        window_seconds=60,
        burst_window_seconds=10,
        clock=clock,
    )


def test_ceiling_requests_pass_then_deny_until_window_elapses(clock: FakeClock) -> None:
    limiter = _limiter(clock, limit=5, burst_limit=5)

    results = [limiter.check_rate_limit("tenant-1", ROUTE) for _ in range(5)]
    assert all(r.allowed for r in results)
    assert [r.remaining for r in results] == [4, 3, 2, 1, 0]

    denied = limiter.check_rate_limit("tenant-1", ROUTE)
    assert denied.allowed is False
    assert denied.reason == "window"
    assert denied.retry_after_seconds == pytest.approx(60)

    clock.advance(60)
    assert limiter.check_rate_limit("tenant-1", ROUTE).allowed is True


def test_burst_ceiling_denies_before_window_ceiling(clock: FakeClock) -> None:
    limiter = _limiter(clock, limit=5, burst_limit=3)

    assert all(limiter.check_rate_limit("tenant-1", ROUTE).allowed for _ in range(3))
    denied = limiter.check_rate_limit("tenant-1", ROUTE)
    assert denied.allowed is False
    assert denied.reason == "burst"
    assert denied.retry_after_seconds == pytest.approx(10)

    # A new burst window opens, but the main window still caps the total at 5
    clock.advance(10)
    assert limiter.check_rate_limit("tenant-1", ROUTE).allowed is True
    assert limiter.check_rate_limit("tenant-1", ROUTE).allowed is True
    assert limiter.check_rate_limit("tenant-1", ROUTE).reason == "window"


def test_denied_requests_are_not_counted(clock: FakeClock) -> None:
    limiter = _limiter(clock, limit=2, burst_limit=2)
    limiter.check_rate_limit("tenant-1", ROUTE)
    limiter.check_rate_limit("tenant-1", ROUTE)
    for _ in range(5):
        assert limiter.check_rate_limit("tenant-1", ROUTE).allowed is False

    status = limiter.get_status("tenant-1", ROUTE)
    assert status is not None
    assert status.remaining == 0
    assert limiter.get_stats().blocked_entries == 1

    clock.advance(60)
    assert limiter.check_rate_limit("tenant-1", ROUTE).remaining == 1


def test_keys_and_routes_are_independent(clock: FakeClock) -> None:
    limiter = _limiter(clock, limit=1, burst_limit=1)
    assert limiter.check_rate_limit("tenant-1", ROUTE).allowed is True
    assert limiter.check_rate_limit("tenant-1", ROUTE).allowed is False
    assert limiter.check_rate_limit("tenant-2", ROUTE).allowed is True
    assert limiter.check_rate_limit("tenant-1", "/api/other").allowed is True


def test_rule_resolution_with_wildcards() -> None:
    limiter = RateLimiter(rules=default_rate_limit_rules())

    assert limiter.resolve_rule("/api/scrape/start").limit == 10
    assert limiter.resolve_rule("/api/audit-projects").limit == 100
    assert limiter.resolve_rule("/api/audit-projects/p-1/analyze").limit == 50
    assert limiter.resolve_rule("/api/admin/users").limit == 200
    assert limiter.resolve_rule("/api/admin/users/u-1/plans").limit == 200
    # '*' needs at least one segment
    assert limiter.resolve_rule("/api/admin/").route == DEFAULT_ROUTE
    assert limiter.resolve_rule("/api/unknown").route == DEFAULT_ROUTE


def test_plan_override_scales_burst_ceiling(clock: FakeClock) -> None:
    limiter = _limiter(clock, limit=10, burst_limit=5)

    result = limiter.check_rate_limit("tenant-1", ROUTE, limit=100)

    assert result.limit == 100
    # burst ceiling becomes ceil(100 * 5 / 10) = 50
    assert result.remaining == 49


def test_unlimited_plan_ceiling_falls_back_to_route_rule(clock: FakeClock) -> None:
    limiter = _limiter(clock, limit=10, burst_limit=5)

    results = [
        limiter.check_rate_limit("tenant-1", ROUTE, limit=UNLIMITED) for _ in range(6)
    ]

    assert [r.allowed for r in results] == [True] * 5 + [False]
    assert results[0].limit == 10
    assert results[-1].reason == "burst"


def test_reset_and_sweep(clock: FakeClock) -> None:
    limiter = _limiter(clock, limit=1, burst_limit=1)
    limiter.check_rate_limit("tenant-1", ROUTE)
    limiter.check_rate_limit("tenant-2", ROUTE)

    limiter.reset("tenant-1", ROUTE)
    assert limiter.get_status("tenant-1", ROUTE) is None
    assert limiter.check_rate_limit("tenant-1", ROUTE).allowed is True

    clock.advance(61)
    assert limiter.sweep() == 2
    assert limiter.get_stats().total_entries == 0


def test_burst_window_longer_than_main_window_is_rejected() -> None:
    with pytest.raises(ValueError):
        RateLimiter(window_seconds=10, burst_window_seconds=60)
