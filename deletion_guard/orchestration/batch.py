"""Orchestration layer — Sequential batch deletion.

Given candidates and their previews, the orchestrator keeps only the ones
whose impact says ``can_proceed`` and executes them one at a time, in list
order.  A failed item is recorded, handed to the rollback handler and the
batch moves on; nothing is retried within the same run.

Invariant: ``report.succeeded + report.failed == report.total`` where
``total`` counts the eligible candidates.  Ineligible candidates still
appear in ``report.items`` with ``attempted=False``.

Usage::

    orchestrator = BatchOrchestrator(client, recorder, rollback=CancelRollbackHandler(client, recorder))
    report = await orchestrator.run(candidates, on_progress=lambda p: print(p.stage))
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable

from deletion_guard.cascade.client import CascadeDeletionClient
from deletion_guard.cascade.models import DeletionImpact
from deletion_guard.logging import bind_deletion_context, get_logger
from deletion_guard.orchestration.rollback import RollbackHandler
from deletion_guard.security.activity import ActivityRecorder
from deletion_guard.security.audit import AuditEvent

log = get_logger(__name__)


@dataclass(frozen=True)
class BatchCandidate:
    """One entity proposed for deletion, with its preview."""

    entity_id: str
    operation_id: str
    impact: DeletionImpact
    entity_type: str = "student"
    entity_name: str | None = None

    @property
    def can_proceed(self) -> bool:
        return self.impact.can_proceed

    @property
    def label(self) -> str:
        return self.entity_name or self.entity_id


@dataclass
class BatchItemOutcome:
    entity_id: str
    success: bool
    attempted: bool = True
    error: str | None = None
    operation_id: str | None = None
    rolled_back: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "success": self.success,
            "attempted": self.attempted,
            "error": self.error,
            "operation_id": self.operation_id,
            "rolled_back": self.rolled_back,
        }


@dataclass(frozen=True)
class BatchProgress:
    current: int
    total: int
    stage: str

    @property
    def percentage(self) -> float:
        if self.total == 0:
            return 100.0
        return round(self.current / self.total * 100, 1)


@dataclass
class BatchReport:
    """Aggregated result of one batch run."""

    batch_id: str
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    items: list[BatchItemOutcome] = field(default_factory=list)
    started_at: float = 0.0
    finished_at: float = 0.0

    @property
    def skipped(self) -> int:
        return sum(1 for item in self.items if not item.attempted)

    @property
    def status(self) -> str:
        if self.failed == 0:
            return "completed"
        if self.succeeded == 0:
            return "failed"
        return "partial_failure"

    @property
    def duration(self) -> float:
        return self.finished_at - self.started_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "status": self.status,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "items": [item.to_dict() for item in self.items],
            "duration": self.duration,
        }


ProgressCallback = Callable[[BatchProgress], None]


class BatchOrchestrator:
    """Runs batch deletions strictly sequentially."""

    def __init__(
        self,
        client: CascadeDeletionClient,
        recorder: ActivityRecorder,
        rollback: RollbackHandler | None = None,
        *,
        progress_delay: float = 0.5,
    ) -> None:
        self._client = client
        self._recorder = recorder
        self._rollback = rollback
        self._progress_delay = progress_delay

    async def run(
        self,
        candidates: list[BatchCandidate],
        options: dict[str, Any] | None = None,
        on_progress: ProgressCallback | None = None,
        *,
        batch_id: str | None = None,
        confirmation_token: str | None = None,
    ) -> BatchReport:
        """Execute every eligible candidate in order and return the report.

        Args:
            candidates:         Entities with their previews, in execution order.
            options:            Execute options forwarded to the remote engine.
            on_progress:        Called with a :class:`BatchProgress` before each item
                                and once more when the batch finishes.
            batch_id:           Optional batch identifier (generated if None).
            confirmation_token: Token forwarded with every execute call.
        """
        bid = batch_id or f"batch_{uuid.uuid4().hex[:12]}"
        eligible = sum(1 for c in candidates if c.can_proceed)
        report = BatchReport(batch_id=bid, total=eligible, started_at=time.time())
        bind_deletion_context(batch_id=bid)

        await self._recorder.record(
            AuditEvent.BULK_DELETION_STARTED,
            batch_id=bid,
            total=eligible,
            skipped=len(candidates) - eligible,
            scope="bulk",
        )
        log.info("batch_started", batch_id=bid, total=eligible, candidates=len(candidates))

        index = 0
        for candidate in candidates:
            if not candidate.can_proceed:
                report.items.append(
                    BatchItemOutcome(
                        entity_id=candidate.entity_id,
                        success=False,
                        attempted=False,
                        operation_id=candidate.operation_id,
                    )
                )
                continue

            index += 1
            self._notify(
                on_progress, BatchProgress(index, eligible, f"Deleting {candidate.label}...")
            )
            outcome = await self._execute_one(candidate, index, eligible, options, confirmation_token)
            report.items.append(outcome)
            if outcome.success:
                report.succeeded += 1
            else:
                report.failed += 1

            if self._progress_delay > 0:
                await asyncio.sleep(self._progress_delay)

        report.finished_at = time.time()
        self._notify(on_progress, BatchProgress(index, eligible, "completed"))
        await self._recorder.record(
            AuditEvent.BULK_DELETION_COMPLETED,
            batch_id=bid,
            total=report.total,
            succeeded=report.succeeded,
            failed=report.failed,
            scope="bulk",
        )
        log.info(
            "batch_finished",
            batch_id=bid,
            status=report.status,
            succeeded=report.succeeded,
            failed=report.failed,
        )
        return report

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _execute_one(
        self,
        candidate: BatchCandidate,
        index: int,
        total: int,
        options: dict[str, Any] | None,
        confirmation_token: str | None,
    ) -> BatchItemOutcome:
        item_options = dict(options or {})
        item_options.update({"batchMode": True, "batchIndex": index, "batchTotal": total})

        try:
            operation_id = await self._client.execute_deletion(
                candidate.operation_id, item_options, confirmation_token
            )
        except Exception as exc:
            error = str(exc) or exc.__class__.__name__
            log.warning("batch_item_failed", entity_id=candidate.entity_id, error=error)
            await self._recorder.record(
                AuditEvent.DELETION_FAILED,
                entity_id=candidate.entity_id,
                operation_id=candidate.operation_id,
                error=error,
            )
            rolled_back: bool | None = None
            if self._rollback is not None:
                rolled_back = await self._rollback.rollback(candidate, exc)
            return BatchItemOutcome(
                entity_id=candidate.entity_id,
                success=False,
                error=error,
                operation_id=candidate.operation_id,
                rolled_back=rolled_back,
            )

        await self._recorder.record(
            AuditEvent.DELETION_EXECUTED,
            entity_id=candidate.entity_id,
            operation_id=operation_id,
            batch_index=index,
        )
        return BatchItemOutcome(
            entity_id=candidate.entity_id, success=True, operation_id=operation_id
        )

    @staticmethod
    def _notify(callback: ProgressCallback | None, progress: BatchProgress) -> None:
        if callback is None:
            return
        try:
            callback(progress)
        except Exception as exc:
            log.warning("batch_progress_callback_failed", error=str(exc))
