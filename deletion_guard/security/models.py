"""Security layer — Core types of the deletion safety engine.

Defines:
  - ``DeletionScope``       — SINGLE / BULK / CASCADE / CLEANUP
  - ``RateLimitCategory``   — SINGLE / BULK / CLEANUP counters
  - ``VerificationLevel``   — NONE < BASIC < ADVANCED < BIOMETRIC
  - ``ActivityRecord``      — frozen entry in the activity ring
  - ``PermissionScope``     — frozen capability set derived from a role
  - ``SecurityToken``       — short-lived capability token
  - ``VerificationData``    — proof supplied for step-up verification
  - ``SecurityState``       — mutable process-wide flags
  - ``DenialReason`` / ``AuthorizationDecision`` — authorizer output
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class DeletionScope(str, Enum):
    SINGLE = "single"
    BULK = "bulk"
    CASCADE = "cascade"
    CLEANUP = "cleanup"


class RateLimitCategory(str, Enum):
    SINGLE = "single"
    BULK = "bulk"
    CLEANUP = "cleanup"

    @classmethod
    def for_scope(cls, scope: DeletionScope | str) -> "RateLimitCategory":
        """Map an authorization scope onto the counter it consumes."""
        scope = DeletionScope(scope)
        if scope is DeletionScope.BULK:
            return cls.BULK
        if scope in (DeletionScope.CASCADE, DeletionScope.CLEANUP):
            return cls.CLEANUP
        return cls.SINGLE


class VerificationLevel(str, Enum):
    NONE = "none"
    BASIC = "basic"
    ADVANCED = "advanced"
    BIOMETRIC = "biometric"

    @property
    def rank(self) -> int:
        return _LEVEL_RANK[self]


_LEVEL_RANK: dict[VerificationLevel, int] = {
    VerificationLevel.NONE: 0,
    VerificationLevel.BASIC: 1,
    VerificationLevel.ADVANCED: 2,
    VerificationLevel.BIOMETRIC: 3,
}


class DenialReason(str, Enum):
    NO_SCOPE = "no_scope"
    CAPABILITY = "capability"
    ENTITY_RESTRICTION = "entity_restriction"
    RATE_LIMITED = "rate_limited"
    LOCKED_OUT = "locked_out"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ActivityRecord:
    """Immutable security-relevant event."""

    action: str
    timestamp: float
    actor_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    device_fingerprint: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "timestamp": self.timestamp,
            "actor_id": self.actor_id,
            "metadata": dict(self.metadata),
            "device_fingerprint": self.device_fingerprint,
        }


@dataclass(frozen=True)
class PermissionScope:
    """Capability set of the current caller.  Replaced, never mutated."""

    can_delete_own: bool = False
    can_delete_any: bool = False
    can_bulk_delete: bool = False
    can_cascade_delete: bool = False
    can_cleanup_orphans: bool = False
    entity_restrictions: frozenset[str] = field(default_factory=frozenset)
    max_deletions_per_minute: int = 0

    def allows(self, scope: DeletionScope | str) -> bool:
        scope = DeletionScope(scope)
        if scope is DeletionScope.BULK:
            return self.can_bulk_delete
        if scope is DeletionScope.CASCADE:
            return self.can_cascade_delete
        if scope is DeletionScope.CLEANUP:
            return self.can_cleanup_orphans
        return self.can_delete_own

    def can_target(self, entity_id: str) -> bool:
        if not self.entity_restrictions or self.can_delete_any:
            return True
        return entity_id in self.entity_restrictions

    def to_dict(self) -> dict[str, Any]:
        return {
            "can_delete_own": self.can_delete_own,
            "can_delete_any": self.can_delete_any,
            "can_bulk_delete": self.can_bulk_delete,
            "can_cascade_delete": self.can_cascade_delete,
            "can_cleanup_orphans": self.can_cleanup_orphans,
            "entity_restrictions": sorted(self.entity_restrictions),
            "max_deletions_per_minute": self.max_deletions_per_minute,
        }


@dataclass(frozen=True)
class SecurityToken:
    token: str
    operation: str
    expires_at: float
    scope: DeletionScope = DeletionScope.SINGLE
    target_entity_id: str | None = None

    def is_expired(self, now: float | None = None) -> bool:
        return (time.time() if now is None else now) >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "token": self.token,
            "operation": self.operation,
            "expires_at": self.expires_at,
            "scope": self.scope.value,
            "target_entity_id": self.target_entity_id,
        }


@dataclass
class VerificationData:
    """Proof supplied by the user for step-up verification."""

    password: str | None = None
    typed_confirmation: str | None = None
    biometric_data: Any = None
    impact_acknowledgment: list[bool] = field(default_factory=list)
    time_spent: float | None = None


@dataclass
class SecurityState:
    """Process-wide flags shared by the authorizer and the service."""

    suspicious_activity_detected: bool = False
    has_active_deletion: bool = False


@dataclass(frozen=True)
class AuthorizationDecision:
    """Outcome of ``DeletionAuthorizer.authorize``.  Truthy iff granted."""

    granted: bool
    entity_id: str
    scope: DeletionScope
    reason: DenialReason | None = None
    patterns: tuple[str, ...] = ()

    def __bool__(self) -> bool:
        return self.granted
