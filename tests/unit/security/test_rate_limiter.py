"""Unit tests — DeletionRateLimiter (rate_limiter.py).

Tests cover:
  - the (max+1)-th action in a window is refused
  - counters reset exactly at window_reset_time
  - categories are independent
  - failed attempts trip the global lock, which expires on its own
  - check_or_raise raises the typed errors
"""

from __future__ import annotations

import pytest

from deletion_guard.config import RateLimitConfig
from deletion_guard.exceptions import LockedOutError, RateLimitExceededError
from deletion_guard.security.models import RateLimitCategory
from deletion_guard.security.rate_limiter import DeletionRateLimiter

pytestmark = pytest.mark.unit


@pytest.fixture
def limiter(clock) -> DeletionRateLimiter:
    return DeletionRateLimiter.from_config(RateLimitConfig(), clock)


def _use(limiter: DeletionRateLimiter, category: RateLimitCategory, n: int) -> None:
    for _ in range(n):
        assert limiter.check_rate_limit(category)
        limiter.record_usage(category)


class TestWindows:
    def test_single_allows_five_then_refuses(self, limiter) -> None:
        _use(limiter, RateLimitCategory.SINGLE, 5)
        assert limiter.check_rate_limit(RateLimitCategory.SINGLE) is False

    def test_check_does_not_consume(self, limiter) -> None:
        for _ in range(20):
            assert limiter.check_rate_limit("single") is True

    def test_window_resets_exactly_at_reset_time(self, limiter, clock) -> None:
        _use(limiter, RateLimitCategory.SINGLE, 5)
        clock.advance(59.999)
        assert limiter.check_rate_limit(RateLimitCategory.SINGLE) is False
        clock.advance(0.001)
        assert limiter.check_rate_limit(RateLimitCategory.SINGLE) is True
        assert limiter.snapshot()["counters"]["single"]["count"] == 0

    def test_new_window_starts_from_reset_moment(self, limiter, clock) -> None:
        _use(limiter, RateLimitCategory.BULK, 1)
        clock.advance(300)
        _use(limiter, RateLimitCategory.BULK, 1)
        assert limiter.snapshot()["counters"]["bulk"]["window_reset_time"] == clock.now + 300

    def test_bulk_allows_one_per_five_minutes(self, limiter, clock) -> None:
        _use(limiter, RateLimitCategory.BULK, 1)
        assert limiter.check_rate_limit(RateLimitCategory.BULK) is False
        clock.advance(299)
        assert limiter.check_rate_limit(RateLimitCategory.BULK) is False
        clock.advance(1)
        assert limiter.check_rate_limit(RateLimitCategory.BULK) is True

    def test_categories_are_independent(self, limiter) -> None:
        _use(limiter, RateLimitCategory.CLEANUP, 1)
        assert limiter.check_rate_limit(RateLimitCategory.CLEANUP) is False
        assert limiter.check_rate_limit(RateLimitCategory.SINGLE) is True
        assert limiter.check_rate_limit(RateLimitCategory.BULK) is True

    def test_record_usage_after_expiry_starts_fresh_window(self, limiter, clock) -> None:
        _use(limiter, RateLimitCategory.SINGLE, 5)
        clock.advance(120)
        limiter.record_usage(RateLimitCategory.SINGLE)
        assert limiter.snapshot()["counters"]["single"]["count"] == 1


class TestLockout:
    def test_three_failures_lock_every_category(self, limiter) -> None:
        assert limiter.record_failed_attempt() is False
        assert limiter.record_failed_attempt() is False
        assert limiter.record_failed_attempt() is True
        assert limiter.is_locked()
        for category in RateLimitCategory:
            assert limiter.check_rate_limit(category) is False

    def test_lock_expires_after_fifteen_minutes(self, limiter, clock) -> None:
        for _ in range(3):
            limiter.record_failed_attempt()
        clock.advance(899)
        assert limiter.check_rate_limit(RateLimitCategory.SINGLE) is False
        clock.advance(1)
        assert limiter.check_rate_limit(RateLimitCategory.SINGLE) is True
        assert limiter.is_locked() is False
        assert limiter.lock_expires is None

    def test_lock_resets_failed_attempts(self, limiter) -> None:
        for _ in range(3):
            limiter.record_failed_attempt()
        assert limiter.failed_attempts == 0

    def test_manual_lock_with_duration(self, limiter, clock) -> None:
        expires = limiter.lock(30)
        assert expires == clock.now + 30
        assert limiter.is_locked()

    def test_reset_clears_lock_and_counters(self, limiter) -> None:
        _use(limiter, RateLimitCategory.SINGLE, 5)
        limiter.lock()
        limiter.reset()
        assert not limiter.is_locked()
        assert limiter.check_rate_limit(RateLimitCategory.SINGLE)


class TestCheckOrRaise:
    def test_raises_rate_limited(self, limiter) -> None:
        _use(limiter, RateLimitCategory.BULK, 1)
        with pytest.raises(RateLimitExceededError) as exc_info:
            limiter.check_or_raise(RateLimitCategory.BULK)
        assert exc_info.value.code == "RATE_LIMITED"
        assert exc_info.value.limit == 1
        assert exc_info.value.window_seconds == 300

    def test_raises_locked_out(self, limiter, clock) -> None:
        limiter.lock()
        with pytest.raises(LockedOutError) as exc_info:
            limiter.check_or_raise(RateLimitCategory.SINGLE)
        assert exc_info.value.lock_expires == clock.now + 900

    def test_passes_under_limit(self, limiter) -> None:
        limiter.check_or_raise(RateLimitCategory.SINGLE)
