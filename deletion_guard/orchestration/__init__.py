"""Orchestration layer — batch deletion and rollback."""

from deletion_guard.orchestration.batch import (
    BatchCandidate,
    BatchItemOutcome,
    BatchOrchestrator,
    BatchProgress,
    BatchReport,
)
from deletion_guard.orchestration.rollback import CancelRollbackHandler, RollbackHandler

__all__ = [
    "BatchCandidate",
    "BatchItemOutcome",
    "BatchOrchestrator",
    "BatchProgress",
    "BatchReport",
    "CancelRollbackHandler",
    "RollbackHandler",
]
