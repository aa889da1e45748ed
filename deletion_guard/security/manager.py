"""Security layer — DeletionSecurityService aggregate.

Single object owning one instance of every safety component:

    - ``recorder``      — ActivityRecorder (bounded ring + audit forwarding)
    - ``rate_limiter``  — per-category fixed windows and the failure lockout
    - ``detector``      — SuspiciousActivityDetector heuristics
    - ``tokens``        — SecurityTokenIssuer
    - ``verification``  — VerificationStateMachine
    - ``authorizer``    — DeletionAuthorizer
    - ``client``        — CascadeDeletionClient
    - ``orchestrator``  — BatchOrchestrator

Construct it explicitly, inject the identity collaborator, and drive its
lifecycle with ``start()`` / ``stop()`` or ``async with``.

Usage::

    async with DeletionSecurityService(identity=provider, settings=settings) as service:
        request = await service.request_deletion("student", "stu-1")
        await service.execute_deletion(request.token.token, request.operation_id,
                                       entity_id="stu-1")
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable

import httpx

from deletion_guard.cascade.client import CascadeDeletionClient
from deletion_guard.cascade.models import DeletionImpact, PreviewResponse, RiskLevel
from deletion_guard.config import Settings
from deletion_guard.exceptions import (
    CascadeDeletionError,
    PermissionDeniedError,
    TokenInvalidError,
)
from deletion_guard.logging import bind_deletion_context, clear_deletion_context, get_logger
from deletion_guard.orchestration.batch import (
    BatchCandidate,
    BatchOrchestrator,
    BatchReport,
    ProgressCallback,
)
from deletion_guard.orchestration.rollback import CancelRollbackHandler, RollbackHandler
from deletion_guard.security.activity import ActivityRecorder
from deletion_guard.security.audit import AuditEvent, AuditLogger
from deletion_guard.security.authorizer import DeletionAuthorizer
from deletion_guard.security.identity import CallerIdentity, IdentityProvider
from deletion_guard.security.models import (
    ActivityRecord,
    AuthorizationDecision,
    DeletionScope,
    PermissionScope,
    RateLimitCategory,
    SecurityState,
    SecurityToken,
    VerificationData,
    VerificationLevel,
)
from deletion_guard.security.profiles import PermissionScopeResolver
from deletion_guard.security.rate_limiter import DeletionRateLimiter
from deletion_guard.security.suspicious import SuspiciousActivityDetector
from deletion_guard.security.tokens import SecurityTokenIssuer
from deletion_guard.security.verification import (
    IdentityVerificationBackend,
    VerificationBackend,
    VerificationStateMachine,
)

log = get_logger(__name__)

BULK_OPERATION = "bulk_delete"
_BATCH_TARGET = "batch"


@dataclass(frozen=True)
class DeletionRequest:
    """An authorized, previewed deletion awaiting execution."""

    entity_type: str
    entity_id: str
    scope: DeletionScope
    preview: PreviewResponse
    token: SecurityToken
    requires_verification: bool

    @property
    def operation_id(self) -> str:
        return self.preview.operation_id

    @property
    def impact(self) -> DeletionImpact:
        return self.preview.impact


@dataclass(frozen=True)
class BatchPlan:
    """Candidates for a batch run plus the bulk token that authorizes it."""

    candidates: list[BatchCandidate]
    token: SecurityToken

    @property
    def eligible(self) -> int:
        return sum(1 for c in self.candidates if c.can_proceed)


class DeletionSecurityService:
    """Lifecycle facade over the deletion safety components."""

    def __init__(
        self,
        *,
        identity: IdentityProvider | None = None,
        settings: Settings | None = None,
        audit: AuditLogger | None = None,
        client: CascadeDeletionClient | None = None,
        verification_backend: VerificationBackend | None = None,
        rollback: RollbackHandler | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings or Settings()
        self._identity = identity
        self._clock = clock
        cfg = self._settings

        self._recorder = ActivityRecorder(
            audit or AuditLogger(audit_file=cfg.logging.audit_file),
            capacity=cfg.activity.capacity,
            device_fingerprint=cfg.activity.device_fingerprint,
            clock=clock,
        )
        self._rate_limiter = DeletionRateLimiter.from_config(cfg.rate_limits, clock)
        self._detector = SuspiciousActivityDetector(cfg.suspicious, clock)
        self._resolver = PermissionScopeResolver()
        self._tokens = SecurityTokenIssuer(
            self._recorder,
            ttl_seconds=cfg.tokens.ttl_seconds,
            entropy_bytes=cfg.tokens.entropy_bytes,
            clock=clock,
        )
        self._verification = VerificationStateMachine(
            self._recorder,
            verification_backend
            or IdentityVerificationBackend(identity, cfg.verification.confirmation_phrase),
            session_seconds=cfg.verification.session_seconds,
            refresh_threshold_seconds=cfg.verification.refresh_threshold_seconds,
            clock=clock,
        )
        self._state = SecurityState()
        self._current_identity: CallerIdentity | None = None
        self._scope: PermissionScope | None = None
        self._authorizer = DeletionAuthorizer(
            lambda: self._scope,
            self._rate_limiter,
            self._detector,
            self._recorder,
            self._state,
        )
        self._client = client or CascadeDeletionClient.from_config(
            cfg.api, self._bearer_token, transport=transport, clock=clock
        )
        self._orchestrator = BatchOrchestrator(
            self._client,
            self._recorder,
            rollback or CancelRollbackHandler(self._client, self._recorder),
            progress_delay=cfg.batch.progress_delay_seconds,
        )
        self._verified_tokens: set[str] = set()
        self._watchdog: asyncio.Task[None] | None = None

        self.on_identity_changed(identity.current_identity() if identity else None)

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def recorder(self) -> ActivityRecorder:
        return self._recorder

    @property
    def rate_limiter(self) -> DeletionRateLimiter:
        return self._rate_limiter

    @property
    def detector(self) -> SuspiciousActivityDetector:
        return self._detector

    @property
    def tokens(self) -> SecurityTokenIssuer:
        return self._tokens

    @property
    def verification(self) -> VerificationStateMachine:
        return self._verification

    @property
    def authorizer(self) -> DeletionAuthorizer:
        return self._authorizer

    @property
    def client(self) -> CascadeDeletionClient:
        return self._client

    @property
    def orchestrator(self) -> BatchOrchestrator:
        return self._orchestrator

    @property
    def state(self) -> SecurityState:
        return self._state

    @property
    def scope(self) -> PermissionScope | None:
        return self._scope

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the session refresh watchdog."""
        if self._watchdog is None or self._watchdog.done():
            self._watchdog = asyncio.create_task(
                self._watchdog_loop(), name="deletion_session_watchdog"
            )
        log.debug("deletion_security_started")

    async def stop(self) -> None:
        """Stop the watchdog, cancel token timers and close the HTTP client."""
        if self._watchdog and not self._watchdog.done():
            self._watchdog.cancel()
            try:
                await self._watchdog
            except asyncio.CancelledError:
                pass
        self._watchdog = None
        self._tokens.close()
        await self._client.close()
        log.debug("deletion_security_stopped")

    async def __aenter__(self) -> "DeletionSecurityService":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    def on_identity_changed(self, identity: CallerIdentity | None) -> None:
        """Recompute the permission scope for a new (or absent) caller."""
        self._current_identity = identity
        self._scope = self._resolver.resolve(identity)
        actor_id = identity.user_id if identity else None
        self._recorder.bind_actor(actor_id)
        if actor_id is not None:
            bind_deletion_context(actor_id=actor_id)
        log.info(
            "permission_scope_resolved",
            actor_id=actor_id,
            granted=self._scope is not None,
        )

    # ------------------------------------------------------------------
    # Component pass-throughs
    # ------------------------------------------------------------------

    async def authorize(
        self, entity_id: str, scope: DeletionScope | str = DeletionScope.SINGLE
    ) -> AuthorizationDecision:
        return await self._authorizer.authorize(entity_id, scope)

    def check_rate_limit(self, category: RateLimitCategory | str) -> bool:
        return self._rate_limiter.check_rate_limit(category)

    def record_usage(self, category: RateLimitCategory | str) -> None:
        self._rate_limiter.record_usage(category)

    async def issue_token(
        self,
        operation: str,
        entity_id: str | None = None,
        scope: DeletionScope | str = DeletionScope.SINGLE,
    ) -> SecurityToken:
        return await self._tokens.issue(operation, entity_id=entity_id, scope=scope)

    async def validate_token(
        self,
        token: str,
        *,
        scope: DeletionScope | str | None = None,
        operation: str | None = None,
        entity_id: str | None = None,
    ) -> bool:
        """Validate *token*; an invalid presentation counts as a failed attempt."""
        valid = await self._tokens.validate(
            token, scope=scope, operation=operation, entity_id=entity_id
        )
        if not valid:
            await self._register_failed_attempt("token")
        return valid

    async def initiate_verification(self, level: VerificationLevel | str) -> bool:
        return await self._verification.initiate(level)

    async def complete_verification(self, data: VerificationData) -> bool:
        verified = await self._verification.complete(data)
        if verified:
            self._rate_limiter.reset_failed_attempts()
        else:
            await self._register_failed_attempt("verification")
        return verified

    async def refresh_session(self) -> bool:
        if self._current_identity is None or not self._current_identity.is_authenticated:
            return False
        return await self._verification.refresh(self._identity)

    def is_session_valid(self) -> bool:
        return self._verification.is_session_valid()

    async def record_activity(
        self, action: AuditEvent | str, /, **metadata: Any
    ) -> ActivityRecord:
        return await self._recorder.record(action, **metadata)

    def detect_suspicious_pattern(self) -> bool:
        return self._detector.detect(self._recorder.recent(self._detector.window_seconds))

    # ------------------------------------------------------------------
    # Emergency controls
    # ------------------------------------------------------------------

    async def lock_user_account(self, reason: str) -> float:
        """Lock every destructive operation and raise the suspicious flag."""
        expires = self._rate_limiter.lock()
        self._state.suspicious_activity_detected = True
        await self._recorder.record(AuditEvent.ACCOUNT_LOCKED, reason=reason, lock_expires=expires)
        log.warning("deletion_account_locked", reason=reason, lock_expires=expires)
        return expires

    async def clear_suspicious_flag(self) -> None:
        self._state.suspicious_activity_detected = False
        await self._recorder.record(AuditEvent.SUSPICIOUS_FLAG_CLEARED)

    async def clear_security_state(self) -> None:
        """Reset counters, lock, flags, tokens, verification and the activity ring."""
        self._rate_limiter.reset()
        self._state.suspicious_activity_detected = False
        self._state.has_active_deletion = False
        self._tokens.clear()
        self._verified_tokens.clear()
        self._verification.invalidate()
        self._recorder.clear()
        self._client.clear_cache()
        clear_deletion_context()
        await self._recorder.record(AuditEvent.SECURITY_STATE_CLEARED)

    def snapshot(self) -> dict[str, Any]:
        return {
            "actor_id": self._recorder.actor_id,
            "scope": self._scope.to_dict() if self._scope else None,
            "rate_limits": self._rate_limiter.snapshot(),
            "suspicious_activity_detected": self._state.suspicious_activity_detected,
            "has_active_deletion": self._state.has_active_deletion,
            "verification_level": self._verification.level.value,
            "session_valid_until": self._verification.valid_until,
            "active_tokens": self._tokens.active_count,
            "activity_records": len(self._recorder),
            "last_activity": self._recorder.last_activity,
        }

    # ------------------------------------------------------------------
    # Single-entity flow
    # ------------------------------------------------------------------

    async def request_deletion(
        self,
        entity_type: str,
        entity_id: str,
        scope: DeletionScope | str = DeletionScope.SINGLE,
        options: dict[str, Any] | None = None,
    ) -> DeletionRequest:
        """Authorize, preview and mint a token bound to the previewed operation."""
        scope = DeletionScope(scope)
        if not self._client.validate_entity_for_deletion(entity_type, entity_id):
            raise CascadeDeletionError(
                f"Unsupported entity for deletion: {entity_type}:{entity_id}",
                code="INVALID_ENTITY",
            )

        await self._authorizer.authorize_or_raise(entity_id, scope)
        preview = await self._client.preview(entity_type, entity_id, options)
        token = await self._tokens.issue(
            preview.operation_id, entity_id=entity_id, scope=scope
        )
        requires_verification = self._requires_verification(scope, preview.impact)
        if requires_verification:
            self._verified_tokens.add(token.token)
        return DeletionRequest(
            entity_type=entity_type,
            entity_id=entity_id,
            scope=scope,
            preview=preview,
            token=token,
            requires_verification=requires_verification,
        )

    async def execute_deletion(
        self,
        token: str,
        operation_id: str,
        scope: DeletionScope | str = DeletionScope.SINGLE,
        entity_id: str | None = None,
        options: dict[str, Any] | None = None,
    ) -> str:
        """Execute a previewed operation.  Returns the remote operation id.

        The token must be live and bound to this operation and scope.  It is
        consumed on success.  The lock and the category's rate limit are
        checked again at execute time.
        """
        scope = DeletionScope(scope)
        if not await self.validate_token(
            token, scope=scope, operation=operation_id, entity_id=entity_id
        ):
            raise TokenInvalidError(scope.value)
        if token in self._verified_tokens and not self._verification.is_session_valid():
            raise PermissionDeniedError(entity_id or operation_id, scope.value, "verification_required")
        self._rate_limiter.check_or_raise(RateLimitCategory.for_scope(scope))

        bind_deletion_context(operation_id=operation_id)
        self._state.has_active_deletion = True
        try:
            remote_id = await self._client.execute_deletion(operation_id, options, token)
        except Exception as exc:
            await self._recorder.record(
                AuditEvent.DELETION_FAILED,
                entity_id=entity_id,
                operation_id=operation_id,
                scope=scope.value,
                error=str(exc),
            )
            raise
        finally:
            self._state.has_active_deletion = False

        self._rate_limiter.record_usage(RateLimitCategory.for_scope(scope))
        self._verified_tokens.discard(token)
        await self._tokens.revoke(token)
        await self._recorder.record(
            AuditEvent.DELETION_EXECUTED,
            entity_id=entity_id,
            operation_id=remote_id,
            scope=scope.value,
        )
        return remote_id

    async def cancel_operation(self, operation_id: str) -> bool:
        cancelled = await self._client.cancel_operation(operation_id)
        if cancelled:
            await self._recorder.record(AuditEvent.OPERATION_CANCELLED, operation_id=operation_id)
        return cancelled

    # ------------------------------------------------------------------
    # Batch flow
    # ------------------------------------------------------------------

    async def prepare_batch(
        self,
        entities: list[tuple[str, str]],
        options: dict[str, Any] | None = None,
    ) -> BatchPlan:
        """Authorize one bulk operation and preview every ``(entity_type, entity_id)``."""
        await self._authorizer.authorize_or_raise(_BATCH_TARGET, DeletionScope.BULK)
        candidates: list[BatchCandidate] = []
        for entity_type, entity_id in entities:
            preview = await self._client.preview(entity_type, entity_id, options)
            candidates.append(
                BatchCandidate(
                    entity_id=entity_id,
                    operation_id=preview.operation_id,
                    impact=preview.impact,
                    entity_type=entity_type,
                    entity_name=preview.impact.entity_name,
                )
            )
        token = await self._tokens.issue(BULK_OPERATION, scope=DeletionScope.BULK)
        return BatchPlan(candidates=candidates, token=token)

    async def execute_batch(
        self,
        plan: BatchPlan,
        options: dict[str, Any] | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> BatchReport:
        """Run a prepared plan.  Items needing step-up verification require a live session."""
        token = plan.token.token
        if not await self.validate_token(
            token, scope=DeletionScope.BULK, operation=BULK_OPERATION
        ):
            raise TokenInvalidError(DeletionScope.BULK.value)
        self._rate_limiter.check_or_raise(RateLimitCategory.BULK)
        gated = [
            c for c in plan.candidates
            if c.can_proceed and self._requires_verification(DeletionScope.BULK, c.impact)
        ]
        if gated and not self._verification.is_session_valid():
            raise PermissionDeniedError(
                gated[0].entity_id, DeletionScope.BULK.value, "verification_required"
            )

        self._state.has_active_deletion = True
        try:
            report = await self._orchestrator.run(
                plan.candidates, options, on_progress, confirmation_token=token
            )
        finally:
            self._state.has_active_deletion = False

        self._rate_limiter.record_usage(RateLimitCategory.BULK)
        await self._tokens.revoke(token)
        return report

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _bearer_token(self) -> str | None:
        if self._identity is not None:
            return self._identity.get_bearer_token()
        return self._settings.api.token

    def _requires_verification(self, scope: DeletionScope, impact: DeletionImpact) -> bool:
        if scope in (DeletionScope.CASCADE, DeletionScope.CLEANUP):
            return True
        return impact.risk_level is RiskLevel.HIGH or impact.requires_confirmation

    async def _register_failed_attempt(self, kind: str) -> None:
        if self._rate_limiter.record_failed_attempt():
            await self._recorder.record(
                AuditEvent.ACCOUNT_LOCKED,
                reason=f"repeated_{kind}_failures",
                lock_expires=self._rate_limiter.lock_expires,
            )

    async def _watchdog_loop(self) -> None:
        interval = self._settings.verification.refresh_check_interval_seconds
        while True:
            await asyncio.sleep(interval)
            try:
                if self._verification.needs_refresh():
                    await self.refresh_session()
            except Exception as exc:
                log.error("session_watchdog_error", error=str(exc))
