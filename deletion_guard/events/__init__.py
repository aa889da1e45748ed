"""Event streaming layer — audit transport for the safety engine.

Quick start::

    from deletion_guard.events import LogEventBus, TOPIC_DELETION_SECURITY

    bus = LogEventBus(Path("~/.deletion-guard/audit.ndjson"))
    await bus.emit(TOPIC_DELETION_SECURITY, {"action": "permission_check"})
"""

from deletion_guard.events.bus import (
    TOPIC_DELETION_CRITICAL,
    TOPIC_DELETION_OPS,
    TOPIC_DELETION_SECURITY,
    EventBus,
    FanoutEventBus,
    LogEventBus,
    MemoryEventBus,
    NullEventBus,
)

__all__ = [
    "EventBus",
    "NullEventBus",
    "LogEventBus",
    "FanoutEventBus",
    "MemoryEventBus",
    "TOPIC_DELETION_SECURITY",
    "TOPIC_DELETION_OPS",
    "TOPIC_DELETION_CRITICAL",
]
