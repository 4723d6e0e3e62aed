"""Data models for pipeline runs, tool results, and parsed reports."""

from delivery_pipeline.models.execution import (
    ArtifactKind,
    CommandResult,
    ExternalArtifact,
    StageOutcome,
    TriggerEvent,
)
from delivery_pipeline.models.pipeline import (
    PipelineRun,
    RunStateError,
    RunStatus,
    StageResult,
    StageStatus,
)
from delivery_pipeline.models.reports import (
    Finding,
    GateCondition,
    QualityGateVerdict,
    ScanReport,
    Severity,
    TestReport,
)

__all__ = [
    "ArtifactKind",
    "CommandResult",
    "ExternalArtifact",
    "Finding",
    "GateCondition",
    "PipelineRun",
    "QualityGateVerdict",
    "RunStateError",
    "RunStatus",
    "ScanReport",
    "Severity",
    "StageOutcome",
    "StageResult",
    "StageStatus",
    "TestReport",
    "TriggerEvent",
]
