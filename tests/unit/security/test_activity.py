"""Unit tests — ActivityRecorder and AuditLogger forwarding."""

from __future__ import annotations

from pathlib import Path

import pytest

from deletion_guard.events.bus import (
    TOPIC_DELETION_CRITICAL,
    TOPIC_DELETION_OPS,
    TOPIC_DELETION_SECURITY,
    EventBus,
    LogEventBus,
    MemoryEventBus,
)
from deletion_guard.security.activity import ActivityRecorder
from deletion_guard.security.audit import AUDIT_CATEGORY, AuditEvent, AuditLogger, topic_for

pytestmark = pytest.mark.unit


class TestActivityRecorder:
    async def test_record_stamps_actor_and_device(self, recorder, clock) -> None:
        entry = await recorder.record(AuditEvent.PERMISSION_CHECK, entity_id="stu-1")
        assert entry.action == "permission_check"
        assert entry.actor_id == "admin-1"
        assert entry.device_fingerprint == "test-device"
        assert entry.timestamp == clock.now
        assert entry.metadata == {"entity_id": "stu-1"}
        assert recorder.last_activity == clock.now

    async def test_action_is_a_valid_metadata_key(self, recorder) -> None:
        entry = await recorder.record("rate_limit_exceeded", action="legacy_tag")
        assert entry.action == "rate_limit_exceeded"
        assert entry.metadata == {"action": "legacy_tag"}

    async def test_ring_keeps_last_capacity_records(self, audit, clock) -> None:
        recorder = ActivityRecorder(audit, capacity=10, clock=clock)
        for i in range(25):
            await recorder.record("custom_event", seq=i)
        assert len(recorder) == 10
        assert [r.metadata["seq"] for r in recorder] == list(range(15, 25))

    async def test_recent_filters_by_window(self, recorder, clock) -> None:
        await recorder.record("old_event")
        clock.advance(700)
        await recorder.record("new_event")
        assert [r.action for r in recorder.recent(600)] == ["new_event"]
        assert len(recorder.recent()) == 2

    async def test_clear(self, recorder) -> None:
        await recorder.record("x")
        recorder.clear()
        assert len(recorder) == 0
        assert recorder.last_activity is None

    async def test_records_are_forwarded(self, recorder, bus: MemoryEventBus, clock) -> None:
        await recorder.record(AuditEvent.PERMISSION_GRANTED, entity_id="stu-9")
        [(topic, event)] = bus.events
        assert topic == TOPIC_DELETION_SECURITY
        assert event["action"] == "permission_granted"
        assert event["actorId"] == "admin-1"
        assert event["details"] == {"entity_id": "stu-9"}
        assert event["timestamp"] == clock.now
        assert event["category"] == AUDIT_CATEGORY


class TestAuditLogger:
    def test_topic_routing(self) -> None:
        assert topic_for("deletion_executed") == TOPIC_DELETION_OPS
        assert topic_for("rollback_failed") == TOPIC_DELETION_CRITICAL
        assert topic_for("permission_check") == TOPIC_DELETION_SECURITY
        assert topic_for("something_custom") == TOPIC_DELETION_SECURITY

    async def test_forward_never_raises(self, clock) -> None:
        class BrokenBus(EventBus):
            async def emit(self, topic, event) -> None:
                raise RuntimeError("bus down")

        recorder = ActivityRecorder(AuditLogger(bus=BrokenBus()), clock=clock)
        entry = await recorder.record("permission_check")
        assert entry in list(recorder)

    async def test_audit_file_writes_ndjson(self, tmp_path: Path, clock) -> None:
        path = tmp_path / "audit.ndjson"
        logger = AuditLogger(audit_file=path)
        assert isinstance(logger.bus, LogEventBus)
        recorder = ActivityRecorder(logger, clock=clock)
        await recorder.record(AuditEvent.ACCOUNT_LOCKED, reason="manual")
        lines = path.read_text().strip().splitlines()
        assert len(lines) == 1
        assert '"account_locked"' in lines[0]
