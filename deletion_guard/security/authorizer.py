"""Security layer — Deletion authorizer.

The DeletionAuthorizer is the single decision point for destructive
requests.  It composes the permission scope, rate limiter and abuse
heuristics, recording every step through the ActivityRecorder.

Checks performed (in order):
  0. A permission scope exists (caller is authenticated)
  1. ``permission_check`` is recorded
  2. The scope grants the requested capability
  3. Entity restriction (restricted callers only)
  4. Rate limit for the mapped category (lockout first)
  5. Suspicious activity (sticky flag, then a scan of the records that
     precede this request)
  6. ``permission_granted`` is recorded

Deterministic checks run before the heuristic scan so that an ordinary
denial is logged as such rather than as abuse.
"""

from __future__ import annotations

from typing import Callable

from deletion_guard.exceptions import (
    LockedOutError,
    PermissionDeniedError,
    RateLimitExceededError,
    SecurityError,
    SuspiciousActivityError,
)
from deletion_guard.logging import get_logger
from deletion_guard.security.activity import ActivityRecorder
from deletion_guard.security.audit import AuditEvent
from deletion_guard.security.models import (
    AuthorizationDecision,
    DeletionScope,
    DenialReason,
    PermissionScope,
    RateLimitCategory,
    SecurityState,
)
from deletion_guard.security.rate_limiter import DeletionRateLimiter
from deletion_guard.security.suspicious import SuspiciousActivityDetector

log = get_logger(__name__)


class DeletionAuthorizer:
    """Decides whether one deletion request may proceed.

    Usage::

        authorizer = DeletionAuthorizer(lambda: scope, limiter, detector, recorder, state)
        decision = await authorizer.authorize("stu-1", "single")
        if decision:
            ...
    """

    def __init__(
        self,
        scope_provider: Callable[[], PermissionScope | None],
        rate_limiter: DeletionRateLimiter,
        detector: SuspiciousActivityDetector,
        recorder: ActivityRecorder,
        state: SecurityState | None = None,
    ) -> None:
        self._scope_provider = scope_provider
        self._rate_limiter = rate_limiter
        self._detector = detector
        self._recorder = recorder
        self._state = state or SecurityState()

    @property
    def state(self) -> SecurityState:
        return self._state

    async def authorize(
        self, entity_id: str, scope: DeletionScope | str
    ) -> AuthorizationDecision:
        scope = DeletionScope(scope)
        permission_scope = self._scope_provider()

        if permission_scope is None:
            await self._recorder.record(
                AuditEvent.PERMISSION_CHECK_FAILED,
                reason=DenialReason.NO_SCOPE.value,
                entity_id=entity_id,
                scope=scope.value,
            )
            return self._deny(entity_id, scope, DenialReason.NO_SCOPE)

        check = await self._recorder.record(
            AuditEvent.PERMISSION_CHECK, entity_id=entity_id, scope=scope.value
        )

        if not permission_scope.allows(scope):
            await self._recorder.record(
                AuditEvent.PERMISSION_DENIED,
                reason=DenialReason.CAPABILITY.value,
                entity_id=entity_id,
                scope=scope.value,
            )
            return self._deny(entity_id, scope, DenialReason.CAPABILITY)

        if not permission_scope.can_target(entity_id):
            await self._recorder.record(
                AuditEvent.PERMISSION_DENIED,
                reason=DenialReason.ENTITY_RESTRICTION.value,
                entity_id=entity_id,
                scope=scope.value,
            )
            return self._deny(entity_id, scope, DenialReason.ENTITY_RESTRICTION)

        category = RateLimitCategory.for_scope(scope)
        if not self._rate_limiter.check_rate_limit(category):
            if self._rate_limiter.is_locked():
                await self._recorder.record(
                    AuditEvent.LOCKED_OUT_DENIED,
                    entity_id=entity_id,
                    lock_expires=self._rate_limiter.lock_expires,
                )
                return self._deny(entity_id, scope, DenialReason.LOCKED_OUT)
            await self._recorder.record(
                AuditEvent.RATE_LIMIT_EXCEEDED, category=category.value, entity_id=entity_id
            )
            return self._deny(entity_id, scope, DenialReason.RATE_LIMITED)

        prior = [
            r for r in self._recorder.recent(self._detector.window_seconds) if r is not check
        ]
        patterns = self._detector.matched_patterns(prior)
        if patterns or self._state.suspicious_activity_detected:
            self._state.suspicious_activity_detected = True
            await self._recorder.record(
                AuditEvent.SUSPICIOUS_ACTIVITY_DETECTED,
                entity_id=entity_id,
                scope=scope.value,
                patterns=patterns,
            )
            return self._deny(
                entity_id, scope, DenialReason.SUSPICIOUS_ACTIVITY, tuple(patterns)
            )

        await self._recorder.record(
            AuditEvent.PERMISSION_GRANTED, entity_id=entity_id, scope=scope.value
        )
        log.info("deletion_authorized", entity_id=entity_id, scope=scope.value)
        return AuthorizationDecision(granted=True, entity_id=entity_id, scope=scope)

    async def authorize_or_raise(
        self, entity_id: str, scope: DeletionScope | str
    ) -> AuthorizationDecision:
        """Authorize; raise the typed :class:`SecurityError` for any denial."""
        decision = await self.authorize(entity_id, scope)
        if not decision:
            raise self.error_for(decision)
        return decision

    def error_for(self, decision: AuthorizationDecision) -> SecurityError:
        reason = decision.reason
        if reason is DenialReason.LOCKED_OUT:
            return LockedOutError(self._rate_limiter.lock_expires)
        if reason is DenialReason.RATE_LIMITED:
            category = RateLimitCategory.for_scope(decision.scope)
            policy = self._rate_limiter.policy(category)
            return RateLimitExceededError(category.value, policy.max, policy.window_seconds)
        if reason is DenialReason.SUSPICIOUS_ACTIVITY:
            return SuspiciousActivityError(decision.entity_id, list(decision.patterns))
        return PermissionDeniedError(
            decision.entity_id,
            decision.scope.value,
            reason.value if reason else "unknown",
        )

    def _deny(
        self,
        entity_id: str,
        scope: DeletionScope,
        reason: DenialReason,
        patterns: tuple[str, ...] = (),
    ) -> AuthorizationDecision:
        log.info(
            "deletion_denied", entity_id=entity_id, scope=scope.value, reason=reason.value
        )
        return AuthorizationDecision(
            granted=False,
            entity_id=entity_id,
            scope=scope,
            reason=reason,
            patterns=patterns,
        )
