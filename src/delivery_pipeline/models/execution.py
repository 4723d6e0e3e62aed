"""Tool invocation results, stage outcomes, and external artifact references."""

from enum import StrEnum

from pydantic import BaseModel, Field


class ArtifactKind(StrEnum):
    """Kind of state a pipeline stage produced or points at."""

    PACKAGE = "package"
    REPORT = "report"
    IMAGE = "image"
    QUALITY_GATE = "quality_gate"
    MANIFEST = "manifest"


class ExternalArtifact(BaseModel):
    """Pointer to something a stage produced.

    The run records the reference only (a path, an image tag, an analysis
    id, a ``Kind/name`` resource identifier), never the content.
    """

    kind: ArtifactKind
    ref: str
    description: str = ""


class CommandResult(BaseModel):
    """Result of running an external tool as a subprocess."""

    command: list[str]
    exit_code: int
    stdout: str
    stderr: str
    duration_seconds: float
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


class StageOutcome(BaseModel):
    """What a successful ``BaseStage.execute`` hands back to the sequencer.

    Failures are signalled by raising a ``StageError`` instead.
    """

    artifacts: list[ExternalArtifact] = Field(default_factory=list)
    reports: list[ExternalArtifact] = Field(default_factory=list)
    message: str = ""


class TriggerEvent(BaseModel):
    """The event that started a run (a push to a branch, or a manual start)."""

    event: str = "push"
    branch: str = "main"
    commit_sha: str = ""

    @property
    def short_sha(self) -> str:
        return self.commit_sha[:7] if self.commit_sha else "local"
