"""Orchestration layer — Rollback handler.

When one item of a batch fails, the orchestrator hands it to a rollback
handler before moving on.  The default handler asks the remote engine to
cancel the failed operation so no partial work keeps running.

A rollback never raises.  If it fails, a critical ``rollback_failed``
record is sent to the audit collaborator for manual intervention.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from deletion_guard.cascade.client import CascadeDeletionClient
from deletion_guard.logging import get_logger
from deletion_guard.security.activity import ActivityRecorder
from deletion_guard.security.audit import AuditEvent

if TYPE_CHECKING:
    from deletion_guard.orchestration.batch import BatchCandidate

log = get_logger(__name__)


class RollbackHandler(ABC):
    @abstractmethod
    async def rollback(self, candidate: "BatchCandidate", error: BaseException) -> bool:
        """Compensate for a failed item.  Returns True when the rollback succeeded."""
        ...


class CancelRollbackHandler(RollbackHandler):
    """Cancels the failed item's remote operation.

    Usage::

        handler = CancelRollbackHandler(client, recorder)
        ok = await handler.rollback(candidate, exc)
    """

    def __init__(self, client: CascadeDeletionClient, recorder: ActivityRecorder) -> None:
        self._client = client
        self._recorder = recorder

    async def rollback(self, candidate: "BatchCandidate", error: BaseException) -> bool:
        await self._recorder.record(
            AuditEvent.ROLLBACK_ATTEMPTED,
            entity_id=candidate.entity_id,
            operation_id=candidate.operation_id,
            cause=str(error),
        )
        log.info(
            "rollback_executing",
            entity_id=candidate.entity_id,
            operation_id=candidate.operation_id,
        )

        failure: str | None = None
        try:
            if not await self._client.cancel_operation(candidate.operation_id):
                failure = "cancellation rejected by the operation engine"
        except Exception as exc:
            failure = str(exc) or exc.__class__.__name__

        if failure is None:
            log.info("rollback_completed", operation_id=candidate.operation_id)
            return True

        log.critical(
            "rollback_failed",
            entity_id=candidate.entity_id,
            operation_id=candidate.operation_id,
            error=failure,
        )
        await self._recorder.record(
            AuditEvent.ROLLBACK_FAILED,
            entity_id=candidate.entity_id,
            operation_id=candidate.operation_id,
            error=failure,
            severity="critical",
        )
        return False
