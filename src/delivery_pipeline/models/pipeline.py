"""Pipeline run and stage result models."""

from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from delivery_pipeline.models.execution import ExternalArtifact, TriggerEvent


class RunStatus(StrEnum):
    """Overall status of a pipeline run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class StageStatus(StrEnum):
    """Recorded outcome of one executed stage."""

    SUCCESS = "success"
    FAILURE = "failure"


class StageResult(BaseModel):
    """Immutable record of one executed stage."""

    model_config = ConfigDict(frozen=True)

    stage: str
    status: StageStatus
    artifacts: tuple[ExternalArtifact, ...] = ()
    reports: tuple[ExternalArtifact, ...] = ()
    message: str = ""
    error_class: str | None = None
    duration_seconds: float = 0.0
    timestamp: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))

    @property
    def succeeded(self) -> bool:
        return self.status == StageStatus.SUCCESS


class RunStateError(RuntimeError):
    """Raised on an illegal run status transition."""


class PipelineRun(BaseModel):
    """A linear record of one pipeline execution.

    Status moves ``pending -> running -> succeeded | failed``.  Once the run
    is terminal no further results may be recorded and it never re-enters
    ``running``.
    """

    run_id: str
    pipeline: str = "delivery"
    trigger: TriggerEvent = Field(default_factory=TriggerEvent)
    status: RunStatus = RunStatus.PENDING
    started_at: datetime | None = None
    finished_at: datetime | None = None
    results: list[StageResult] = []
    failed_stage: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in {RunStatus.SUCCEEDED, RunStatus.FAILED}

    def result_for(self, stage: str) -> StageResult | None:
        """Return the recorded result for *stage*, or None if it never ran."""
        for result in self.results:
            if result.stage == stage:
                return result
        return None

    def start(self) -> None:
        if self.status != RunStatus.PENDING:
            msg = f"Run {self.run_id} cannot start from status '{self.status}'"
            raise RunStateError(msg)
        self.status = RunStatus.RUNNING
        self.started_at = datetime.now(tz=UTC)

    def record(self, result: StageResult) -> None:
        """Append a stage result; a failure makes the run terminally failed."""
        if self.status != RunStatus.RUNNING:
            msg = (
                f"Cannot record stage '{result.stage}' on run {self.run_id} "
                f"with status '{self.status}'"
            )
            raise RunStateError(msg)
        if self.result_for(result.stage) is not None:
            msg = f"Stage '{result.stage}' already recorded on run {self.run_id}"
            raise RunStateError(msg)
        self.results.append(result)
        if not result.succeeded:
            self.failed_stage = result.stage
            self._finish(RunStatus.FAILED)

    def finish(self) -> RunStatus:
        """Close a running run.

        A run reaching this point with no failures is ``succeeded``; a run
        already failed by :meth:`record` keeps its status.
        """
        if self.status == RunStatus.RUNNING:
            failed = any(not r.succeeded for r in self.results)
            self._finish(RunStatus.FAILED if failed else RunStatus.SUCCEEDED)
        return self.status

    def _finish(self, status: RunStatus) -> None:
        self.status = status
        self.finished_at = datetime.now(tz=UTC)

    def save(self, path: Path) -> None:
        """Serialize the run to a JSON file.

        Args:
            path: Destination file path.
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.model_dump_json(indent=2))

    @classmethod
    def load(cls, path: Path) -> "PipelineRun":
        """Deserialize a run from a JSON file.

        Args:
            path: Source file path.

        Returns:
            Loaded PipelineRun instance.
        """
        return cls.model_validate_json(path.read_text())
