"""Security layer — Step-up verification sessions.

States, weakest to strongest::

    none → basic → advanced → biometric

``initiate(level)`` always opens a fresh session at the requested level.
A successful ``complete()`` raises the level to at least ``advanced`` (a
session never loses level) and extends validity from now.  A failed attempt
leaves the session untouched.  Sessions lapse once ``now >= valid_until``;
``refresh()`` extends a live session when the identity service still
vouches for the caller.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Protocol

from deletion_guard.logging import get_logger
from deletion_guard.security.activity import ActivityRecorder
from deletion_guard.security.audit import AuditEvent
from deletion_guard.security.identity import IdentityProvider
from deletion_guard.security.models import VerificationData, VerificationLevel

log = get_logger(__name__)


@dataclass
class VerificationSession:
    level: VerificationLevel
    valid_until: float


class VerificationBackend(Protocol):
    async def verify(self, data: VerificationData, level: VerificationLevel) -> bool: ...


class IdentityVerificationBackend:
    """Accepts any one sufficient proof.

    - a typed confirmation equal to the configured phrase
    - a non-empty impact acknowledgment list with every item ticked
    - a password the identity service confirms
    - a biometric payload the identity service confirms
    """

    def __init__(self, identity: IdentityProvider | None, confirmation_phrase: str) -> None:
        self._identity = identity
        self._phrase = confirmation_phrase

    async def verify(self, data: VerificationData, level: VerificationLevel) -> bool:
        if data.typed_confirmation is not None and data.typed_confirmation.strip() == self._phrase:
            return True
        if data.impact_acknowledgment and all(data.impact_acknowledgment):
            return True
        if self._identity is None:
            return False
        if data.password and await self._identity.verify_password(data.password):
            return True
        if data.biometric_data is not None and await self._identity.verify_biometric(
            data.biometric_data
        ):
            return True
        return False


class VerificationStateMachine:
    def __init__(
        self,
        recorder: ActivityRecorder,
        backend: VerificationBackend,
        *,
        session_seconds: float = 1800.0,
        refresh_threshold_seconds: float = 300.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._recorder = recorder
        self._backend = backend
        self._session_seconds = session_seconds
        self._refresh_threshold = refresh_threshold_seconds
        self._clock = clock
        self._session: VerificationSession | None = None

    @property
    def session(self) -> VerificationSession | None:
        return self._session

    @property
    def level(self) -> VerificationLevel:
        if self._session is None:
            return VerificationLevel.NONE
        return self._session.level

    @property
    def valid_until(self) -> float | None:
        return self._session.valid_until if self._session else None

    async def initiate(self, level: VerificationLevel | str) -> bool:
        level = VerificationLevel(level)
        await self._recorder.record(AuditEvent.VERIFICATION_INITIATED, level=level.value)
        self._session = VerificationSession(level, self._clock() + self._session_seconds)
        return True

    async def complete(self, data: VerificationData) -> bool:
        current = self.level
        await self._recorder.record(
            AuditEvent.VERIFICATION_ATTEMPT,
            has_password=bool(data.password),
            has_confirmation=data.typed_confirmation is not None,
            has_biometric=data.biometric_data is not None,
        )

        try:
            verified = await self._backend.verify(data, current)
        except Exception as exc:
            log.error("verification_backend_error", error=str(exc))
            verified = False

        if not verified:
            await self._recorder.record(AuditEvent.VERIFICATION_FAILED, level=current.value)
            return False

        promoted = current
        if current.rank < VerificationLevel.ADVANCED.rank:
            promoted = VerificationLevel.ADVANCED
        self._session = VerificationSession(promoted, self._clock() + self._session_seconds)
        await self._recorder.record(AuditEvent.VERIFICATION_COMPLETED, level=promoted.value)
        return True

    def is_session_valid(self) -> bool:
        if self._session is None:
            return False
        return self._clock() < self._session.valid_until

    def remaining_seconds(self) -> float:
        if self._session is None:
            return 0.0
        return max(0.0, self._session.valid_until - self._clock())

    def needs_refresh(self) -> bool:
        remaining = self.remaining_seconds()
        return 0 < remaining < self._refresh_threshold

    async def refresh(self, identity: IdentityProvider | None) -> bool:
        """Extend the live session if the identity service confirms it.

        A failed refresh is recorded; the session keeps its current
        ``valid_until`` and lapses naturally.
        """
        if identity is None or not self.is_session_valid():
            return False
        assert self._session is not None
        await self._recorder.record(AuditEvent.SESSION_REFRESH_ATTEMPT)
        try:
            ok = await identity.validate_session()
        except Exception as exc:
            log.warning("session_refresh_error", error=str(exc))
            ok = False

        if not ok:
            await self._recorder.record(AuditEvent.SESSION_REFRESH_FAILED)
            return False

        self._session = VerificationSession(
            self._session.level, self._clock() + self._session_seconds
        )
        await self._recorder.record(AuditEvent.SESSION_REFRESHED)
        return True

    def invalidate(self) -> None:
        self._session = None
