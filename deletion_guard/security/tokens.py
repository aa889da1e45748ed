"""Security layer — Short-lived capability tokens.

A token authorizes exactly one destructive operation of one scope.  Tokens
expire after a fixed TTL; removal is scheduled on the running event loop but
expiry is also checked on every access, so correctness never depends on the
timer firing.

Usage::

    issuer = SecurityTokenIssuer(recorder, ttl_seconds=300)
    token = await issuer.issue("delete_student", entity_id="stu-1", scope="single")
    ok = await issuer.validate(token.token, scope="single", entity_id="stu-1")
"""

from __future__ import annotations

import asyncio
import secrets
import time
from typing import Callable

from deletion_guard.logging import get_logger
from deletion_guard.security.activity import ActivityRecorder
from deletion_guard.security.audit import AuditEvent
from deletion_guard.security.models import DeletionScope, SecurityToken

log = get_logger(__name__)


def _short(token: str) -> str:
    return token[:8]


class SecurityTokenIssuer:
    def __init__(
        self,
        recorder: ActivityRecorder,
        *,
        ttl_seconds: float = 300.0,
        entropy_bytes: int = 32,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._recorder = recorder
        self._ttl = ttl_seconds
        self._entropy = entropy_bytes
        self._clock = clock
        self._tokens: dict[str, SecurityToken] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}

    @property
    def active_count(self) -> int:
        return len(self._tokens)

    async def issue(
        self,
        operation: str,
        entity_id: str | None = None,
        scope: DeletionScope | str = DeletionScope.SINGLE,
    ) -> SecurityToken:
        scope = DeletionScope(scope)
        value = secrets.token_urlsafe(self._entropy)
        token = SecurityToken(
            token=value,
            operation=operation,
            expires_at=self._clock() + self._ttl,
            scope=scope,
            target_entity_id=entity_id,
        )
        self._tokens[value] = token
        self._schedule_removal(value)
        await self._recorder.record(
            AuditEvent.TOKEN_GENERATED,
            operation=operation,
            entity_id=entity_id,
            scope=scope.value,
            token=_short(value),
        )
        return token

    async def validate(
        self,
        token: str,
        *,
        scope: DeletionScope | str | None = None,
        operation: str | None = None,
        entity_id: str | None = None,
    ) -> bool:
        """Return True iff *token* is known, unexpired, and bound to the request.

        When *scope*, *operation* or *entity_id* are given they must match the
        values the token was minted for.
        """
        record = self._tokens.get(token)
        reason: str | None = None
        if record is None:
            reason = "unknown"
        elif record.is_expired(self._clock()):
            reason = "expired"
            self._drop(token)
        elif scope is not None and record.scope is not DeletionScope(scope):
            reason = "scope_mismatch"
        elif operation is not None and record.operation != operation:
            reason = "operation_mismatch"
        elif (
            entity_id is not None
            and record.target_entity_id is not None
            and record.target_entity_id != entity_id
        ):
            reason = "entity_mismatch"

        if reason is None:
            await self._recorder.record(AuditEvent.TOKEN_VALIDATED, token=_short(token))
            return True

        await self._recorder.record(
            AuditEvent.TOKEN_VALIDATION_FAILED, token=_short(token), reason=reason
        )
        return False

    def get(self, token: str) -> SecurityToken | None:
        record = self._tokens.get(token)
        if record is not None and record.is_expired(self._clock()):
            self._drop(token)
            return None
        return record

    async def revoke(self, token: str) -> bool:
        if token not in self._tokens:
            return False
        self._drop(token)
        await self._recorder.record(AuditEvent.TOKEN_REVOKED, token=_short(token))
        return True

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [t for t, rec in self._tokens.items() if rec.is_expired(now)]
        for t in expired:
            self._drop(t)
        return len(expired)

    def clear(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        self._tokens.clear()

    def close(self) -> None:
        self.clear()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _schedule_removal(self, token: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._timers[token] = loop.call_later(self._ttl, self._expire, token)

    def _expire(self, token: str) -> None:
        self._timers.pop(token, None)
        if self._tokens.pop(token, None) is not None:
            log.debug("security_token_expired", token=_short(token))

    def _drop(self, token: str) -> None:
        self._tokens.pop(token, None)
        handle = self._timers.pop(token, None)
        if handle is not None:
            handle.cancel()
