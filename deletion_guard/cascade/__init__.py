"""Cascade deletion — client for the remote operation engine."""

from deletion_guard.cascade.client import CascadeDeletionApiClient, CascadeDeletionClient
from deletion_guard.cascade.models import (
    BatchPreviewSummary,
    DeletionImpact,
    DeletionOperation,
    DeletionProgress,
    OperationStatus,
    PreviewResponse,
    RiskLevel,
    SystemLimits,
)

__all__ = [
    "BatchPreviewSummary",
    "CascadeDeletionApiClient",
    "CascadeDeletionClient",
    "DeletionImpact",
    "DeletionOperation",
    "DeletionProgress",
    "OperationStatus",
    "PreviewResponse",
    "RiskLevel",
    "SystemLimits",
]
