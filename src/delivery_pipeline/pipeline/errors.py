"""Stage failure taxonomy.

Every stage signals failure by raising a :class:`StageError` subclass.  The
sequencer turns it into a failed ``StageResult`` and halts the run:

- **BuildError**: compilation or packaging failed, or no artifact produced
- **ScanFindingError**: blocking scan policy tripped, or a scanner crashed
- **TestFailure**: non-zero test exit or failing/erroring test cases
- **QualityGateRejection**: gate verdict not OK, or analysis timed out
- **ImagePushError**: image build, registry login, or push rejected
- **DeployAuthError**: cloud identity or cluster credential setup failed
- **DeployApplyError**: cluster unreachable or manifest rejected

None of these are retried.
"""

from delivery_pipeline.models.execution import ExternalArtifact


class StageError(Exception):
    """Base class for a terminal stage failure.

    Attributes:
        stage: Name of the failing stage (filled in by the sequencer when
            the raising adapter does not know it).
        reports: Reports written before the failure, kept for diagnosis.
        artifacts: Artifacts produced before the failure.
        error_class: Short machine-readable class, e.g. ``"build_error"``.
    """

    error_class = "stage_error"
    suggestion = "Check the stage logs for details."

    def __init__(
        self,
        message: str,
        *,
        stage: str = "",
        reports: list[ExternalArtifact] | None = None,
        artifacts: list[ExternalArtifact] | None = None,
    ) -> None:
        self.message = message
        self.stage = stage
        self.reports = list(reports or [])
        self.artifacts = list(artifacts or [])
        super().__init__(message)

    def __str__(self) -> str:
        prefix = f"[{self.stage}] " if self.stage else ""
        return f"{prefix}{self.error_class}: {self.message}"


class BuildError(StageError):
    error_class = "build_error"
    suggestion = "Fix the compilation or packaging error shown in the build output."


class ScanFindingError(StageError):
    error_class = "scan_findings"
    suggestion = (
        "Review the vulnerability and secret reports; upgrade affected "
        "dependencies or remove leaked credentials, or relax scan.severity_threshold."
    )


class TestFailure(StageError):
    __test__ = False

    error_class = "test_failure"
    suggestion = "Fix the failing tests listed in the test report."


class QualityGateRejection(StageError):
    error_class = "quality_gate_rejected"
    suggestion = (
        "Inspect the failing quality-gate conditions (coverage, duplication, "
        "issues) on the analysis server."
    )


class ImagePushError(StageError):
    error_class = "image_push_error"
    suggestion = "Check the Dockerfile, registry credentials, and repository permissions."


class DeployAuthError(StageError):
    error_class = "deploy_auth_error"
    suggestion = "Verify the service-account key and the project/zone/cluster settings."


class DeployApplyError(StageError):
    error_class = "deploy_apply_error"
    suggestion = "Check cluster reachability and validate the manifests against the API server."


class MissingSecretError(StageError):
    error_class = "missing_secret"
    suggestion = "Set the environment variable referenced in the secrets section of the config."


class PipelineDefinitionError(ValueError):
    """Raised when the stage graph is empty, has unknown dependencies, or a cycle."""


class PipelineFailedError(Exception):
    """Raised by the orchestrator when a run ends ``failed`` and the caller asked for it.

    Attributes:
        run: The terminal ``PipelineRun``.
        cause: The ``StageError`` (or other exception) that halted the run.
    """

    def __init__(self, run: object, cause: BaseException | None = None) -> None:
        self.run = run
        self.cause = cause
        stage = getattr(run, "failed_stage", None) or "unknown"
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Pipeline failed at stage '{stage}'{detail}")
