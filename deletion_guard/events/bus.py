"""Event streaming infrastructure — EventBus protocol and implementations.

The EventBus is the transport between the safety engine and the external
audit collaborator.  Every security-relevant occurrence (permission checks,
token issuance, verification attempts, batch outcomes, rollback failures) is
emitted as a structured dict to a topic.

Swap the backend by injecting a different EventBus implementation:
  - NullEventBus    → default (no-op)
  - LogEventBus     → NDJSON append-only file
  - FanoutEventBus  → several backends at once

Standard topic names:
  TOPIC_DELETION_SECURITY = "deletion.security"  — authorizer / tokens / verification
  TOPIC_DELETION_OPS      = "deletion.operations" — execute / cancel / batch outcomes
  TOPIC_DELETION_CRITICAL = "deletion.critical"   — failures needing manual intervention
"""

from __future__ import annotations

import asyncio
import json
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from deletion_guard.logging import get_logger

log = get_logger(__name__)

# ---------------------------------------------------------------------------
# Standard topic constants
# ---------------------------------------------------------------------------

TOPIC_DELETION_SECURITY = "deletion.security"
TOPIC_DELETION_OPS = "deletion.operations"
TOPIC_DELETION_CRITICAL = "deletion.critical"


# ---------------------------------------------------------------------------
# Abstract interface
# ---------------------------------------------------------------------------


class EventBus(ABC):
    """Abstract event bus.  All implementations must be safe for concurrent async use.

    An event is a plain dict.  The bus adds a ``_topic`` key and a
    ``_timestamp`` (Unix epoch float) before forwarding to the backend.
    """

    @abstractmethod
    async def emit(self, topic: str, event: dict[str, Any]) -> None:
        """Publish *event* to *topic*.

        This method must not raise.  Failures are logged and swallowed.
        """

    def _stamp(self, topic: str, event: dict[str, Any]) -> dict[str, Any]:
        """Add metadata fields to *event* in-place and return it."""
        event.setdefault("_topic", topic)
        event.setdefault("_timestamp", time.time())
        return event


class NullEventBus(EventBus):
    """Discards all events.  Used when no audit backend is configured."""

    async def emit(self, topic: str, event: dict[str, Any]) -> None:
        pass


class LogEventBus(EventBus):
    """Writes events as NDJSON to a file, one line per event, append-only.

    Usage::

        bus = LogEventBus(Path("~/.deletion-guard/audit.ndjson"))
        await bus.emit(TOPIC_DELETION_SECURITY, {"action": "permission_check"})
    """

    def __init__(self, log_file: Path | None = None) -> None:
        self._file = log_file.expanduser() if log_file else None
        self._lock = asyncio.Lock()

    async def emit(self, topic: str, event: dict[str, Any]) -> None:
        self._stamp(topic, event)
        log.debug("event_bus_emit", topic=topic, action=event.get("action"))
        if self._file is None:
            return
        line = json.dumps(event, default=str) + "\n"
        async with self._lock:
            try:
                self._file.parent.mkdir(parents=True, exist_ok=True)
                with self._file.open("a", encoding="utf-8") as f:
                    f.write(line)
            except OSError as exc:
                log.error("event_bus_write_failed", topic=topic, error=str(exc))


class FanoutEventBus(EventBus):
    """Routes each event to multiple EventBus backends in parallel."""

    def __init__(self, backends: list[EventBus]) -> None:
        self._backends = backends

    async def emit(self, topic: str, event: dict[str, Any]) -> None:
        self._stamp(topic, event)
        await asyncio.gather(
            *(b.emit(topic, dict(event)) for b in self._backends),
            return_exceptions=True,
        )


class MemoryEventBus(EventBus):
    """Keeps emitted events in a list.  Handy for embedding and for tests."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    async def emit(self, topic: str, event: dict[str, Any]) -> None:
        self._stamp(topic, event)
        self.events.append((topic, event))

    def topic(self, topic: str) -> list[dict[str, Any]]:
        return [e for t, e in self.events if t == topic]
