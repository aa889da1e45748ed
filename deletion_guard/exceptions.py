"""Deletion Guard — Exception hierarchy.

All exceptions raised by the engine inherit from DeletionGuardError so that
callers can catch the full family with a single except clause when needed.
Every class carries a stable ``code`` string that UI layers map to messages.

Hierarchy:
    DeletionGuardError
    ├── SecurityError
    │   ├── PermissionDeniedError        PERMISSION_DENIED
    │   ├── RateLimitExceededError       RATE_LIMITED
    │   ├── LockedOutError               LOCKED_OUT
    │   ├── SuspiciousActivityError      SUSPICIOUS_ACTIVITY_BLOCKED
    │   ├── TokenInvalidError            TOKEN_INVALID_OR_EXPIRED
    │   └── MissingCredentialError       MISSING_CREDENTIAL
    └── CascadeDeletionError             (server-provided or local code)
        ├── CascadeTimeoutError          TIMEOUT
        ├── ExecutionFailedError         EXECUTION_FAILED
        ├── CancelFailedError            CANCEL_FAILED
        ├── BatchPreviewFailedError      BATCH_PREVIEW_FAILED
        └── OperationNotFoundError       OPERATION_NOT_FOUND
"""

from __future__ import annotations

from typing import Any


class DeletionGuardError(Exception):
    """Base exception for all Deletion Guard errors."""

    code: str = "DELETION_GUARD_ERROR"

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = context or {}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context})"


# ---------------------------------------------------------------------------
# Security layer
# ---------------------------------------------------------------------------


class SecurityError(DeletionGuardError):
    """Base for all security-related errors."""

    code = "SECURITY_ERROR"


class PermissionDeniedError(SecurityError):
    """The caller's permission scope does not allow this deletion."""

    code = "PERMISSION_DENIED"

    def __init__(self, entity_id: str, scope: str, reason: str) -> None:
        super().__init__(
            f"Permission denied: {scope} deletion of '{entity_id}' is not allowed ({reason})",
            context={"entity_id": entity_id, "scope": scope, "reason": reason},
        )
        self.entity_id = entity_id
        self.scope = scope
        self.reason = reason


class RateLimitExceededError(SecurityError):
    """A deletion category has exhausted its window."""

    code = "RATE_LIMITED"

    def __init__(self, category: str, limit: int, window_seconds: float) -> None:
        super().__init__(
            f"Rate limit exceeded for '{category}': max {limit} per {window_seconds:g}s",
            context={"category": category, "limit": limit, "window_seconds": window_seconds},
        )
        self.category = category
        self.limit = limit
        self.window_seconds = window_seconds


class LockedOutError(SecurityError):
    """All destructive operations are locked until ``lock_expires``."""

    code = "LOCKED_OUT"

    def __init__(self, lock_expires: float | None) -> None:
        super().__init__(
            "Destructive operations are locked after repeated failures",
            context={"lock_expires": lock_expires},
        )
        self.lock_expires = lock_expires


class SuspiciousActivityError(SecurityError):
    """The abuse heuristics flagged recent activity; manual clearing required."""

    code = "SUSPICIOUS_ACTIVITY_BLOCKED"

    def __init__(self, entity_id: str, patterns: list[str] | None = None) -> None:
        super().__init__(
            f"Deletion of '{entity_id}' blocked: suspicious activity detected",
            context={"entity_id": entity_id, "patterns": patterns or []},
        )
        self.entity_id = entity_id
        self.patterns = patterns or []


class TokenInvalidError(SecurityError):
    """A security token is unknown, expired, or bound to another operation."""

    code = "TOKEN_INVALID_OR_EXPIRED"

    def __init__(self, scope: str | None = None) -> None:
        super().__init__(
            "Security token is invalid or expired; re-authorize the operation",
            context={"scope": scope},
        )
        self.scope = scope


class MissingCredentialError(SecurityError):
    """No bearer credential is available from the identity provider."""

    code = "MISSING_CREDENTIAL"

    def __init__(self) -> None:
        super().__init__("No bearer credential available for the remote operation engine")


# ---------------------------------------------------------------------------
# Remote operation engine
# ---------------------------------------------------------------------------


class CascadeDeletionError(DeletionGuardError):
    """An error reported by (or while talking to) the remote operation engine."""

    code = "CASCADE_DELETION_ERROR"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        operation_id: str | None = None,
        phase: str | None = None,
        recoverable: bool = False,
    ) -> None:
        super().__init__(
            message,
            context={
                "code": code or self.code,
                "operation_id": operation_id,
                "phase": phase,
                "recoverable": recoverable,
            },
        )
        if code is not None:
            self.code = code
        self.operation_id = operation_id
        self.phase = phase
        self.recoverable = recoverable


class CascadeTimeoutError(CascadeDeletionError):
    code = "TIMEOUT"

    def __init__(self, message: str = "Request timed out", operation_id: str | None = None) -> None:
        super().__init__(message, operation_id=operation_id, recoverable=True)


class ExecutionFailedError(CascadeDeletionError):
    code = "EXECUTION_FAILED"


class CancelFailedError(CascadeDeletionError):
    code = "CANCEL_FAILED"


class BatchPreviewFailedError(CascadeDeletionError):
    code = "BATCH_PREVIEW_FAILED"


class OperationNotFoundError(CascadeDeletionError):
    code = "OPERATION_NOT_FOUND"
