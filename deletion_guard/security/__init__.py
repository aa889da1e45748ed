"""Security layer — Permission scopes, rate limits, abuse heuristics, tokens, step-up verification, audit trail."""

from deletion_guard.security.activity import ActivityRecorder
from deletion_guard.security.audit import AuditEvent, AuditLogger
from deletion_guard.security.authorizer import DeletionAuthorizer
from deletion_guard.security.identity import (
    CallerIdentity,
    IdentityProvider,
    StaticIdentityProvider,
)
from deletion_guard.security.models import (
    ActivityRecord,
    AuthorizationDecision,
    DeletionScope,
    DenialReason,
    PermissionScope,
    RateLimitCategory,
    SecurityState,
    SecurityToken,
    VerificationData,
    VerificationLevel,
)
from deletion_guard.security.profiles import PermissionScopeResolver, RoleTier
from deletion_guard.security.rate_limiter import DeletionRateLimiter
from deletion_guard.security.suspicious import SuspiciousActivityDetector
from deletion_guard.security.tokens import SecurityTokenIssuer
from deletion_guard.security.verification import (
    IdentityVerificationBackend,
    VerificationStateMachine,
)

__all__ = [
    # Records and enums
    "ActivityRecord",
    "AuthorizationDecision",
    "DeletionScope",
    "DenialReason",
    "PermissionScope",
    "RateLimitCategory",
    "SecurityState",
    "SecurityToken",
    "VerificationData",
    "VerificationLevel",
    # Components
    "ActivityRecorder",
    "AuditEvent",
    "AuditLogger",
    "DeletionAuthorizer",
    "DeletionRateLimiter",
    "PermissionScopeResolver",
    "RoleTier",
    "SecurityTokenIssuer",
    "SuspiciousActivityDetector",
    "VerificationStateMachine",
    "IdentityVerificationBackend",
    # Identity collaborator
    "CallerIdentity",
    "IdentityProvider",
    "StaticIdentityProvider",
]
