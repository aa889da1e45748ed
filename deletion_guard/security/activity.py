"""Security layer — Activity recorder.

Append-only, bounded, in-memory log of security-relevant events.  The last
``capacity`` records are kept in a ``deque``; older ones fall off the left.
Every record is also forwarded to the audit collaborator.

Usage::

    recorder = ActivityRecorder(audit=AuditLogger(bus=bus), capacity=100)
    await recorder.record(AuditEvent.PERMISSION_CHECK, entity_id="stu-1", scope="single")
    recent = recorder.recent(600)
"""

from __future__ import annotations

import time
from collections import deque
from typing import Any, Callable, Iterator

from deletion_guard.logging import get_logger
from deletion_guard.security.audit import AuditEvent, AuditLogger
from deletion_guard.security.models import ActivityRecord

log = get_logger(__name__)


class ActivityRecorder:
    """Fixed-capacity ring of :class:`ActivityRecord` entries."""

    def __init__(
        self,
        audit: AuditLogger | None = None,
        *,
        capacity: int = 100,
        device_fingerprint: str | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._audit = audit or AuditLogger()
        self._records: deque[ActivityRecord] = deque(maxlen=capacity)
        self._device_fingerprint = device_fingerprint
        self._clock = clock
        self._actor_id: str | None = None
        self._last_activity: float | None = None

    @property
    def capacity(self) -> int:
        return self._records.maxlen or 0

    @property
    def actor_id(self) -> str | None:
        return self._actor_id

    @property
    def last_activity(self) -> float | None:
        return self._last_activity

    def bind_actor(self, actor_id: str | None) -> None:
        """Attribute subsequent records to *actor_id*."""
        self._actor_id = actor_id

    async def record(self, action: AuditEvent | str, /, **metadata: Any) -> ActivityRecord:
        """Append a record and forward it to the audit collaborator."""
        tag = action.value if isinstance(action, AuditEvent) else action
        entry = ActivityRecord(
            action=tag,
            timestamp=self._clock(),
            actor_id=self._actor_id,
            metadata=metadata,
            device_fingerprint=self._device_fingerprint,
        )
        self._records.append(entry)
        self._last_activity = entry.timestamp
        await self._audit.forward(entry)
        return entry

    def recent(self, window_seconds: float | None = None) -> list[ActivityRecord]:
        """Return records newer than *window_seconds* (all if None), oldest first."""
        if window_seconds is None:
            return list(self._records)
        cutoff = self._clock() - window_seconds
        return [r for r in self._records if r.timestamp > cutoff]

    def clear(self) -> None:
        self._records.clear()
        self._last_activity = None

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[ActivityRecord]:
        return iter(list(self._records))
