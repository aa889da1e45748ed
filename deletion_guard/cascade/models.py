"""Cascade deletion — Wire models of the remote operation engine.

All JSON exchanged with the engine is validated through Pydantic v2.  The
engine speaks camelCase; every model accepts both camelCase and snake_case
on input and dumps camelCase with ``model_dump(by_alias=True)``.

Do not add business logic here, only data shapes and their invariants.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class OperationStatus(str, Enum):
    """Lifecycle status of a server-tracked deletion operation."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_active(self) -> bool:
        return self in (OperationStatus.PENDING, OperationStatus.RUNNING)


# ---------------------------------------------------------------------------
# Impact
# ---------------------------------------------------------------------------


class DeletionWarning(WireModel):
    message: str
    type: str | None = None
    severity: str = "medium"
    details: dict[str, Any] | None = None


class DependentEntity(WireModel):
    id: str
    type: str
    name: str | None = None
    relationship_type: str | None = None
    cascade_action: str | None = None
    affected_count: int = 0
    children: list["DependentEntity"] = Field(default_factory=list)


class DeletionImpact(WireModel):
    """Preview of what deleting one entity would cause."""

    can_proceed: bool = Field(
        validation_alias=AliasChoices("canProceed", "can_proceed", "canDelete"),
        serialization_alias="canProceed",
    )
    risk_level: RiskLevel = RiskLevel.LOW
    total_affected_records: int = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices(
            "totalAffectedRecords", "total_affected_records", "totalAffectedCount"
        ),
        serialization_alias="totalAffectedRecords",
    )
    warnings: list[DeletionWarning] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    entity_type: str | None = None
    entity_id: str | None = None
    entity_name: str | None = None
    cascade_depth: int | None = None
    requires_confirmation: bool = False
    dependents: list[DependentEntity] = Field(default_factory=list)

    @field_validator("warnings", mode="before")
    @classmethod
    def _coerce_warnings(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [{"message": w} if isinstance(w, str) else w for w in value]
        return value

    @field_validator("errors", mode="before")
    @classmethod
    def _coerce_errors(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [
                e if isinstance(e, str) else str(e.get("message") or e.get("error") or e)
                for e in value
            ]
        return value


class PreviewResponse(WireModel):
    impact: DeletionImpact
    operation_id: str
    estimated_duration: float | None = None
    required_permissions: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


class ExecuteResponse(WireModel):
    operation_id: str
    status: str = "started"
    estimated_duration: float | None = None
    websocket_channel: str | None = None


class CancelResponse(WireModel):
    success: bool
    message: str = ""


class DeletionOperation(WireModel):
    id: str
    entity_type: str
    entity_id: str
    status: OperationStatus
    created_at: str | None = None
    entity_name: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    failed_at: str | None = None
    error: str | None = None
    user_id: str | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _normalise_status(cls, value: Any) -> Any:
        if value == "in_progress":
            return OperationStatus.RUNNING.value
        return value


class DeletionProgress(WireModel):
    operation_id: str
    current: int = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices("current", "completedSteps", "completed_steps"),
    )
    total: int = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices("total", "totalSteps", "total_steps"),
    )
    stage: str = Field(
        default="",
        validation_alias=AliasChoices("stage", "currentStep", "current_step", "phase"),
    )
    percentage: float = 0.0
    last_updated_at: str | None = None
    errors: list[Any] = Field(default_factory=list)


class OperationHistory(WireModel):
    operations: list[DeletionOperation] = Field(default_factory=list)
    total_count: int = 0


# ---------------------------------------------------------------------------
# Batch
# ---------------------------------------------------------------------------


class BatchEntity(WireModel):
    entity_type: str
    entity_id: str


class BatchPreviewResponse(WireModel):
    previews: list[PreviewResponse] = Field(default_factory=list)
    batch_id: str


class BatchPreviewSummary(WireModel):
    """Aggregated view of a batch preview."""

    batch_id: str
    previews: list[DeletionImpact]
    total_affected: int
    has_warnings: bool
    has_errors: bool


class BatchExecuteResponse(WireModel):
    operation_ids: list[str] = Field(default_factory=list)
    batch_id: str


class SystemLimits(WireModel):
    max_concurrent_operations: int
    max_depth: int
    max_batch_size: int
    supported_entity_types: list[str] = Field(default_factory=list)
