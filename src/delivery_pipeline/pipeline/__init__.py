"""Stage sequencing, run context, error taxonomy, and logging.

``PipelineOrchestrator`` lives in :mod:`delivery_pipeline.pipeline.orchestrator`
and is imported from there; it depends on the stage adapters, which in turn
depend on this package.
"""

from delivery_pipeline.pipeline.context import SecretStore, StageContext
from delivery_pipeline.pipeline.errors import (
    BuildError,
    DeployApplyError,
    DeployAuthError,
    ImagePushError,
    MissingSecretError,
    PipelineDefinitionError,
    PipelineFailedError,
    QualityGateRejection,
    ScanFindingError,
    StageError,
    TestFailure,
)
from delivery_pipeline.pipeline.logging import (
    log_command,
    log_stage_result,
    log_stage_start,
    setup_logging,
)
from delivery_pipeline.pipeline.redaction import redact
from delivery_pipeline.pipeline.sequencer import StageSequencer, linear_chain, order_stages

__all__ = [
    "BuildError",
    "DeployApplyError",
    "DeployAuthError",
    "ImagePushError",
    "MissingSecretError",
    "PipelineDefinitionError",
    "PipelineFailedError",
    "QualityGateRejection",
    "ScanFindingError",
    "SecretStore",
    "StageContext",
    "StageError",
    "StageSequencer",
    "TestFailure",
    "linear_chain",
    "log_command",
    "log_stage_result",
    "log_stage_start",
    "order_stages",
    "redact",
    "setup_logging",
]
