"""Progress callback protocol for pipeline lifecycle events.

Defines the ``ProgressCallback`` Protocol that display implementations must
satisfy.  All lifecycle hooks are represented as methods with no return value,
allowing any concrete class (e.g. ``PipelineDisplay``) to be used wherever a
``ProgressCallback`` is expected.
"""

from typing import Protocol, runtime_checkable


@runtime_checkable
class ProgressCallback(Protocol):
    """Protocol for pipeline progress callbacks.

    Implementations receive lifecycle events during a run: stage
    transitions and the run's terminal status.
    """

    def on_stage_start(self, stage: str, depends_on: list[str]) -> None:
        """Called when a stage begins execution.

        Args:
            stage: Stage name (e.g. ``"build"``, ``"quality_gate"``).
            depends_on: Stages that had to succeed first.
        """
        ...

    def on_stage_complete(self, stage: str, duration_seconds: float, message: str) -> None:
        """Called when a stage finishes successfully.

        Args:
            stage: Stage name.
            duration_seconds: Wall-clock time in seconds.
            message: One-line summary from the stage.
        """
        ...

    def on_stage_fail(
        self, stage: str, error_class: str, message: str, suggestion: str
    ) -> None:
        """Called when a stage fails.  The run halts after this.

        Args:
            stage: Stage name.
            error_class: Classification of the error.
            message: Human-readable error message.
            suggestion: Actionable fix suggestion.
        """
        ...

    def on_pipeline_complete(self, run_dir: str, total_seconds: float) -> None:
        """Called when every stage succeeded.

        Args:
            run_dir: Path to the run output directory.
            total_seconds: Total run wall-clock time.
        """
        ...

    def on_pipeline_fail(self, stage: str, error: str) -> None:
        """Called when the run terminates ``failed``.

        Args:
            stage: The stage that failed.
            error: Human-readable error description.
        """
        ...
