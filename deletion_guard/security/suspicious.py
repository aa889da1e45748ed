"""Security layer — Suspicious activity heuristics.

Scans the recent activity window for three abuse patterns:

    rapid_deletions   many deletion-tagged records
    failed_attempts   many failed/denied records (credential probing)
    after_hours_bulk  bulk or cascade activity during unusual hours

The detector is advisory: it only reports.  The authorizer decides what a
positive result means for the current request.
"""

from __future__ import annotations

import time
from datetime import datetime
from typing import Callable, Iterable

from deletion_guard.config import SuspiciousActivityConfig
from deletion_guard.security.models import ActivityRecord

PATTERN_RAPID_DELETIONS = "rapid_deletions"
PATTERN_FAILED_ATTEMPTS = "failed_attempts"
PATTERN_AFTER_HOURS_BULK = "after_hours_bulk"

_DELETION_MARKERS = ("deletion", "delete")
_FAILURE_MARKERS = ("failed", "denied")
_BULK_MARKERS = ("bulk", "cascade")
_BULK_SCOPES = frozenset({"bulk", "cascade"})


class SuspiciousActivityDetector:
    def __init__(
        self,
        config: SuspiciousActivityConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config or SuspiciousActivityConfig()
        self._clock = clock

    @property
    def window_seconds(self) -> float:
        return self._config.window_seconds

    def detect(self, records: Iterable[ActivityRecord]) -> bool:
        return bool(self.matched_patterns(records))

    def matched_patterns(self, records: Iterable[ActivityRecord]) -> list[str]:
        """Return the names of every pattern the recent records match."""
        cfg = self._config
        now = self._clock()
        cutoff = now - cfg.window_seconds
        recent = [r for r in records if r.timestamp > cutoff]

        matched: list[str] = []

        deletions = sum(1 for r in recent if _tag_contains(r.action, _DELETION_MARKERS))
        if deletions >= cfg.rapid_deletion_threshold:
            matched.append(PATTERN_RAPID_DELETIONS)

        failures = sum(1 for r in recent if _tag_contains(r.action, _FAILURE_MARKERS))
        if failures >= cfg.failed_attempt_threshold:
            matched.append(PATTERN_FAILED_ATTEMPTS)

        if self.is_unusual_hour(now):
            bulk = sum(1 for r in recent if _is_bulk_activity(r))
            if bulk >= cfg.after_hours_bulk_threshold:
                matched.append(PATTERN_AFTER_HOURS_BULK)

        return matched

    def is_unusual_hour(self, timestamp: float | None = None) -> bool:
        hour = datetime.fromtimestamp(self._clock() if timestamp is None else timestamp).hour
        return hour >= self._config.unusual_hours_start or hour <= self._config.unusual_hours_end


def _tag_contains(action: str, markers: tuple[str, ...]) -> bool:
    return any(m in action for m in markers)


def _is_bulk_activity(record: ActivityRecord) -> bool:
    if _tag_contains(record.action, _BULK_MARKERS):
        return True
    return record.metadata.get("scope") in _BULK_SCOPES
