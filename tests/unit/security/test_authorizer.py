"""Unit tests — DeletionAuthorizer (authorizer.py).

Tests cover:
  - no scope → permission_check_failed
  - capability and entity restriction denials
  - rate-limit vs lockout classification
  - suspicious activity denial sets a sticky flag
  - every grant is recorded
  - authorize_or_raise maps denials onto the typed errors
"""

from __future__ import annotations

from datetime import datetime

import pytest

from deletion_guard.config import RateLimitConfig
from deletion_guard.exceptions import (
    LockedOutError,
    PermissionDeniedError,
    RateLimitExceededError,
    SuspiciousActivityError,
)
from deletion_guard.security.authorizer import DeletionAuthorizer
from deletion_guard.security.models import (
    DeletionScope,
    DenialReason,
    PermissionScope,
    RateLimitCategory,
    SecurityState,
)
from deletion_guard.security.profiles import PermissionScopeResolver
from deletion_guard.security.rate_limiter import DeletionRateLimiter
from deletion_guard.security.suspicious import SuspiciousActivityDetector

pytestmark = pytest.mark.unit


class Harness:
    def __init__(self, recorder, clock, scope: PermissionScope | None) -> None:
        self.scope = scope
        self.limiter = DeletionRateLimiter.from_config(RateLimitConfig(), clock)
        self.state = SecurityState()
        self.recorder = recorder
        self.authorizer = DeletionAuthorizer(
            lambda: self.scope,
            self.limiter,
            SuspiciousActivityDetector(clock=clock),
            recorder,
            self.state,
        )

    def actions(self) -> list[str]:
        return [r.action for r in self.recorder]


@pytest.fixture
def admin(recorder, clock, admin_identity) -> Harness:
    return Harness(recorder, clock, PermissionScopeResolver().resolve(admin_identity))


@pytest.fixture
def standard(recorder, clock, standard_identity) -> Harness:
    return Harness(recorder, clock, PermissionScopeResolver().resolve(standard_identity))


@pytest.fixture
def super_admin(recorder, clock, super_admin_identity) -> Harness:
    return Harness(recorder, clock, PermissionScopeResolver().resolve(super_admin_identity))


class TestPermissionChecks:
    async def test_no_scope_denied(self, recorder, clock) -> None:
        h = Harness(recorder, clock, None)
        decision = await h.authorizer.authorize("stu-1", "single")
        assert not decision
        assert decision.reason is DenialReason.NO_SCOPE
        assert h.actions() == ["permission_check_failed"]
        assert recorder.recent()[-1].metadata["reason"] == "no_scope"

    async def test_grant_records_check_and_grant(self, admin) -> None:
        decision = await admin.authorizer.authorize("stu-1", DeletionScope.SINGLE)
        assert decision
        assert decision.granted is True
        assert admin.actions() == ["permission_check", "permission_granted"]

    async def test_missing_capability(self, admin) -> None:
        decision = await admin.authorizer.authorize("stu-1", DeletionScope.CASCADE)
        assert decision.reason is DenialReason.CAPABILITY
        assert admin.actions() == ["permission_check", "permission_denied"]

    async def test_standard_within_restrictions(self, standard) -> None:
        assert await standard.authorizer.authorize("stu-1", "single")

    async def test_standard_outside_restrictions(self, standard) -> None:
        decision = await standard.authorizer.authorize("stu-99", "single")
        assert decision.reason is DenialReason.ENTITY_RESTRICTION
        assert standard.recorder.recent()[-1].metadata["reason"] == "entity_restriction"

    async def test_standard_cannot_bulk(self, standard) -> None:
        decision = await standard.authorizer.authorize("stu-1", "bulk")
        assert decision.reason is DenialReason.CAPABILITY


class TestRateLimits:
    async def test_rate_limited_after_five(self, admin) -> None:
        for _ in range(5):
            admin.limiter.record_usage(RateLimitCategory.SINGLE)
        decision = await admin.authorizer.authorize("stu-1", "single")
        assert decision.reason is DenialReason.RATE_LIMITED
        assert admin.actions()[-1] == "rate_limit_exceeded"

    async def test_rate_limited_records_category(self, admin) -> None:
        for _ in range(5):
            admin.limiter.record_usage(RateLimitCategory.SINGLE)
        await admin.authorizer.authorize("stu-1", "single")
        last = admin.recorder.recent()[-1]
        assert last.action == "rate_limit_exceeded"
        assert last.metadata["category"] == "single"
        assert last.metadata["entity_id"] == "stu-1"

    async def test_bulk_uses_bulk_counter(self, admin) -> None:
        admin.limiter.record_usage(RateLimitCategory.BULK)
        assert (await admin.authorizer.authorize("batch", "bulk")).reason is DenialReason.RATE_LIMITED
        assert await admin.authorizer.authorize("stu-1", "single")

    async def test_locked_out(self, admin, clock) -> None:
        admin.limiter.lock()
        decision = await admin.authorizer.authorize("stu-1", "single")
        assert decision.reason is DenialReason.LOCKED_OUT
        assert admin.actions()[-1] == "account_locked_denied"
        clock.advance(900)
        assert await admin.authorizer.authorize("stu-1", "single")


class TestSuspiciousActivity:
    async def test_rapid_deletions_deny_and_flag(self, admin) -> None:
        for i in range(10):
            await admin.recorder.record("deletion_executed", entity_id=f"stu-{i}")
        decision = await admin.authorizer.authorize("stu-1", "single")
        assert decision.reason is DenialReason.SUSPICIOUS_ACTIVITY
        assert "rapid_deletions" in decision.patterns
        assert admin.state.suspicious_activity_detected is True
        assert admin.actions()[-1] == "suspicious_activity_detected"

    async def test_flag_is_sticky(self, admin, clock) -> None:
        admin.state.suspicious_activity_detected = True
        clock.advance(3600)
        decision = await admin.authorizer.authorize("stu-1", "single")
        assert decision.reason is DenialReason.SUSPICIOUS_ACTIVITY
        admin.state.suspicious_activity_detected = False
        assert await admin.authorizer.authorize("stu-1", "single")

    async def test_deterministic_denials_come_first(self, standard) -> None:
        standard.state.suspicious_activity_detected = True
        decision = await standard.authorizer.authorize("stu-99", "single")
        assert decision.reason is DenialReason.ENTITY_RESTRICTION


class TestAfterHours:
    @pytest.fixture(autouse=True)
    def late_evening(self, clock) -> None:
        clock.now = datetime(2026, 3, 10, 22, 30).timestamp()

    async def test_first_bulk_request_is_not_flagged_by_itself(self, admin) -> None:
        decision = await admin.authorizer.authorize("batch", "bulk")
        assert decision
        assert admin.state.suspicious_activity_detected is False

    async def test_first_cascade_request_is_granted(self, super_admin) -> None:
        assert await super_admin.authorizer.authorize("stu-1", "cascade")

    async def test_earlier_bulk_activity_is_flagged(self, admin) -> None:
        assert await admin.authorizer.authorize("batch", "bulk")
        decision = await admin.authorizer.authorize("stu-1", "single")
        assert decision.reason is DenialReason.SUSPICIOUS_ACTIVITY
        assert decision.patterns == ("after_hours_bulk",)


class TestAuthorizeOrRaise:
    async def test_permission_denied(self, standard) -> None:
        with pytest.raises(PermissionDeniedError) as exc_info:
            await standard.authorizer.authorize_or_raise("stu-99", "single")
        assert exc_info.value.code == "PERMISSION_DENIED"
        assert exc_info.value.reason == "entity_restriction"

    async def test_rate_limited(self, admin) -> None:
        admin.limiter.record_usage(RateLimitCategory.BULK)
        with pytest.raises(RateLimitExceededError) as exc_info:
            await admin.authorizer.authorize_or_raise("batch", "bulk")
        assert exc_info.value.window_seconds == 300

    async def test_locked_out(self, admin) -> None:
        admin.limiter.lock()
        with pytest.raises(LockedOutError):
            await admin.authorizer.authorize_or_raise("stu-1", "single")

    async def test_suspicious(self, admin) -> None:
        admin.state.suspicious_activity_detected = True
        with pytest.raises(SuspiciousActivityError) as exc_info:
            await admin.authorizer.authorize_or_raise("stu-1", "single")
        assert exc_info.value.code == "SUSPICIOUS_ACTIVITY_BLOCKED"

    async def test_grant_returns_decision(self, admin) -> None:
        decision = await admin.authorizer.authorize_or_raise("stu-1", "single")
        assert decision.entity_id == "stu-1"
        assert decision.scope is DeletionScope.SINGLE
