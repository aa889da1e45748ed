"""Security layer — Per-category deletion rate limiter.

One fixed window per category (single / bulk / cleanup).  A counter resets
to zero exactly when ``now >= window_reset_time``; the window then restarts
from that moment.  Repeated failed attempts trip a global lock that blocks
every category until it expires.

Checking and recording are separate so callers can ask without committing::

    limiter = DeletionRateLimiter.from_config(settings.rate_limits)
    if limiter.check_rate_limit(RateLimitCategory.SINGLE):
        ...  # perform the deletion
        limiter.record_usage(RateLimitCategory.SINGLE)
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable

from deletion_guard.config import RateLimitConfig
from deletion_guard.exceptions import LockedOutError, RateLimitExceededError
from deletion_guard.logging import get_logger
from deletion_guard.security.models import RateLimitCategory

log = get_logger(__name__)


@dataclass
class RateLimitCounter:
    count: int
    window_reset_time: float


@dataclass(frozen=True)
class CategoryPolicy:
    max: int
    window_seconds: float


class DeletionRateLimiter:
    """Fixed-window counters with a shared lockout."""

    def __init__(
        self,
        policies: dict[RateLimitCategory, CategoryPolicy],
        *,
        failed_attempts_threshold: int = 3,
        lockout_seconds: float = 900.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._policies = policies
        self._failed_threshold = failed_attempts_threshold
        self._lockout_seconds = lockout_seconds
        self._clock = clock
        self._counters: dict[RateLimitCategory, RateLimitCounter] = {}
        self._failed_attempts = 0
        self._is_locked = False
        self._lock_expires: float | None = None
        self.reset()

    @classmethod
    def from_config(
        cls, config: RateLimitConfig, clock: Callable[[], float] = time.time
    ) -> "DeletionRateLimiter":
        policies = {
            RateLimitCategory.SINGLE: CategoryPolicy(config.single.max, config.single.window_seconds),
            RateLimitCategory.BULK: CategoryPolicy(config.bulk.max, config.bulk.window_seconds),
            RateLimitCategory.CLEANUP: CategoryPolicy(
                config.cleanup.max, config.cleanup.window_seconds
            ),
        }
        return cls(
            policies,
            failed_attempts_threshold=config.failed_attempts_threshold,
            lockout_seconds=config.lockout_seconds,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def check_rate_limit(self, category: RateLimitCategory | str) -> bool:
        """Return True if one more action of *category* is allowed now."""
        category = RateLimitCategory(category)
        now = self._clock()
        if self._locked_at(now):
            return False
        counter = self._counters[category]
        if now >= counter.window_reset_time:
            self._roll_window(category, now)
            return True
        return counter.count < self._policies[category].max

    def check_or_raise(self, category: RateLimitCategory | str) -> None:
        """Check *category*; raise :class:`LockedOutError` or :class:`RateLimitExceededError`."""
        category = RateLimitCategory(category)
        if self.check_rate_limit(category):
            return
        if self._is_locked:
            raise LockedOutError(self._lock_expires)
        policy = self._policies[category]
        raise RateLimitExceededError(category.value, policy.max, policy.window_seconds)

    def is_locked(self) -> bool:
        return self._locked_at(self._clock())

    def policy(self, category: RateLimitCategory | str) -> CategoryPolicy:
        return self._policies[RateLimitCategory(category)]

    @property
    def lock_expires(self) -> float | None:
        return self._lock_expires

    @property
    def failed_attempts(self) -> int:
        return self._failed_attempts

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def record_usage(self, category: RateLimitCategory | str) -> None:
        """Count one performed action of *category*."""
        category = RateLimitCategory(category)
        now = self._clock()
        if now >= self._counters[category].window_reset_time:
            self._roll_window(category, now)
        self._counters[category].count += 1

    def record_failed_attempt(self) -> bool:
        """Count a failed attempt.  Returns True if this attempt tripped the lock."""
        self._failed_attempts += 1
        log.info("failed_attempt_recorded", count=self._failed_attempts)
        if self._failed_attempts >= self._failed_threshold:
            self.lock()
            return True
        return False

    def reset_failed_attempts(self) -> None:
        self._failed_attempts = 0

    def lock(self, duration_seconds: float | None = None) -> float:
        """Lock every category.  Returns the lock expiry timestamp."""
        duration = self._lockout_seconds if duration_seconds is None else duration_seconds
        self._is_locked = True
        self._lock_expires = self._clock() + duration
        self._failed_attempts = 0
        log.warning("deletion_lock_engaged", lock_expires=self._lock_expires)
        return self._lock_expires

    def reset(self) -> None:
        """Clear all counters and the lock."""
        now = self._clock()
        self._counters = {
            category: RateLimitCounter(0, now + policy.window_seconds)
            for category, policy in self._policies.items()
        }
        self._failed_attempts = 0
        self._is_locked = False
        self._lock_expires = None

    def snapshot(self) -> dict[str, Any]:
        return {
            "counters": {
                category.value: {
                    "count": counter.count,
                    "window_reset_time": counter.window_reset_time,
                    "max": self._policies[category].max,
                }
                for category, counter in self._counters.items()
            },
            "is_locked": self._is_locked,
            "lock_expires": self._lock_expires,
            "failed_attempts": self._failed_attempts,
        }

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _locked_at(self, now: float) -> bool:
        if not self._is_locked:
            return False
        if self._lock_expires is not None and now < self._lock_expires:
            return True
        self._is_locked = False
        self._lock_expires = None
        log.info("deletion_lock_expired")
        return False

    def _roll_window(self, category: RateLimitCategory, now: float) -> None:
        self._counters[category] = RateLimitCounter(
            0, now + self._policies[category].window_seconds
        )
