"""Security layer — Audit logger.

Forwards every activity record to the external audit collaborator through
the EventBus.  The payload shape is fixed by the collaborator::

    {"action": ..., "actorId": ..., "details": {...},
     "timestamp": ..., "category": "deletion_security"}

Swapping the audit backend is done entirely at the EventBus level:

    logger = AuditLogger(audit_file=Path("~/.deletion-guard/audit.ndjson"))
    logger = AuditLogger(bus=FanoutEventBus([LogEventBus(...), remote_bus]))
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

from deletion_guard.events.bus import (
    TOPIC_DELETION_CRITICAL,
    TOPIC_DELETION_OPS,
    TOPIC_DELETION_SECURITY,
    EventBus,
    LogEventBus,
    NullEventBus,
)
from deletion_guard.logging import get_logger
from deletion_guard.security.models import ActivityRecord

log = get_logger(__name__)

AUDIT_CATEGORY = "deletion_security"


class AuditEvent(str, Enum):
    # Authorization
    PERMISSION_CHECK = "permission_check"
    PERMISSION_CHECK_FAILED = "permission_check_failed"
    PERMISSION_DENIED = "permission_denied"
    PERMISSION_GRANTED = "permission_granted"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    LOCKED_OUT_DENIED = "account_locked_denied"
    SUSPICIOUS_ACTIVITY_DETECTED = "suspicious_activity_detected"
    SUSPICIOUS_FLAG_CLEARED = "suspicious_flag_cleared"
    # Tokens
    TOKEN_GENERATED = "security_token_generated"
    TOKEN_VALIDATED = "security_token_validated"
    TOKEN_VALIDATION_FAILED = "security_token_validation_failed"
    TOKEN_REVOKED = "security_token_revoked"
    # Step-up verification
    VERIFICATION_INITIATED = "verification_initiated"
    VERIFICATION_ATTEMPT = "verification_attempt"
    VERIFICATION_COMPLETED = "verification_completed"
    VERIFICATION_FAILED = "verification_failed"
    SESSION_REFRESH_ATTEMPT = "session_refresh_attempt"
    SESSION_REFRESHED = "session_refreshed"
    SESSION_REFRESH_FAILED = "session_refresh_failed"
    # Emergency controls
    ACCOUNT_LOCKED = "account_locked"
    SECURITY_STATE_CLEARED = "security_state_cleared"
    # Operations
    DELETION_EXECUTED = "deletion_executed"
    DELETION_FAILED = "deletion_failed"
    OPERATION_CANCELLED = "operation_cancelled"
    BULK_DELETION_STARTED = "bulk_deletion_started"
    BULK_DELETION_COMPLETED = "bulk_deletion_completed"
    ROLLBACK_ATTEMPTED = "rollback_attempted"
    ROLLBACK_FAILED = "rollback_failed"


_EVENT_TOPIC: dict[AuditEvent, str] = {
    AuditEvent.DELETION_EXECUTED: TOPIC_DELETION_OPS,
    AuditEvent.DELETION_FAILED: TOPIC_DELETION_OPS,
    AuditEvent.OPERATION_CANCELLED: TOPIC_DELETION_OPS,
    AuditEvent.BULK_DELETION_STARTED: TOPIC_DELETION_OPS,
    AuditEvent.BULK_DELETION_COMPLETED: TOPIC_DELETION_OPS,
    AuditEvent.ROLLBACK_ATTEMPTED: TOPIC_DELETION_OPS,
    AuditEvent.ROLLBACK_FAILED: TOPIC_DELETION_CRITICAL,
}


def topic_for(action: str) -> str:
    """Return the bus topic for an action tag (unknown tags go to security)."""
    try:
        return _EVENT_TOPIC.get(AuditEvent(action), TOPIC_DELETION_SECURITY)
    except ValueError:
        return TOPIC_DELETION_SECURITY


class AuditLogger:
    """Async audit forwarder backed by an EventBus.

    If both ``audit_file`` and ``bus`` are provided, ``bus`` takes precedence.
    If neither is provided, a ``NullEventBus`` is used (no output).
    """

    def __init__(
        self,
        audit_file: Path | None = None,
        bus: EventBus | None = None,
    ) -> None:
        if bus is not None:
            self._bus: EventBus = bus
        elif audit_file is not None:
            self._bus = LogEventBus(audit_file)
        else:
            self._bus = NullEventBus()

    @property
    def bus(self) -> EventBus:
        return self._bus

    async def forward(self, record: ActivityRecord) -> None:
        """Publish *record* to the topic its action maps to."""
        payload = self.build_payload(record)
        topic = topic_for(record.action)
        log.debug("audit_event", action=record.action, topic=topic)
        try:
            await self._bus.emit(topic, payload)
        except Exception as exc:
            log.error("audit_forward_failed", action=record.action, error=str(exc))

    @staticmethod
    def build_payload(record: ActivityRecord) -> dict[str, Any]:
        return {
            "action": record.action,
            "actorId": record.actor_id,
            "details": dict(record.metadata),
            "timestamp": record.timestamp,
            "category": AUDIT_CATEGORY,
        }
