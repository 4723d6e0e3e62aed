"""Structured error display using Rich panels.

Renders pipeline failures as formatted Rich panels with the failing stage,
error classification, human-readable message, report locations, and an
actionable fix suggestion.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.panel import Panel
from rich.text import Text

from delivery_pipeline.pipeline.errors import (
    PipelineDefinitionError,
    PipelineFailedError,
    StageError,
)

if TYPE_CHECKING:
    from rich.console import Console


class ErrorDisplay:
    """Renders structured error panels for pipeline failures.

    All output goes through the shared ``Console`` instance (typically
    ``stderr=True``) so it does not interfere with stdout or the Rich Live
    display.
    """

    def __init__(self, console: Console) -> None:
        self.console = console

    def show_error(
        self,
        stage: str,
        error_class: str,
        message: str,
        suggestion: str,
        reports: list[str] | None = None,
    ) -> None:
        """Render a structured error panel.

        Args:
            stage: Name of the failing stage.
            error_class: Classification of the error.
            message: Human-readable error description (truncated to 500 chars).
            suggestion: Actionable fix suggestion.
            reports: Report locations produced before the failure.
        """
        body = Text()
        body.append("Stage:       ", style="bold")
        body.append(f"{stage}\n")
        body.append("Error Class: ", style="bold")
        body.append(f"{error_class}\n")
        body.append("Message:     ", style="bold")
        body.append(f"{message[:500]}\n")
        if reports:
            body.append("Reports:     ", style="bold")
            body.append("\n             ".join(reports) + "\n")
        body.append("Suggestion:  ", style="bold")
        body.append(suggestion)

        self.console.print(Panel(body, border_style="red", title="Pipeline Failed"))

    @staticmethod
    def format_pipeline_error(error: BaseException) -> tuple[str, str, str, str]:
        """Inspect an exception and return structured error fields.

        Returns:
            Tuple of ``(stage, error_class, message, suggestion)``.
        """
        if isinstance(error, PipelineFailedError) and error.cause is not None:
            stage = getattr(error.run, "failed_stage", None) or "unknown"
            _, error_class, message, suggestion = ErrorDisplay.format_pipeline_error(error.cause)
            return stage, error_class, message, suggestion

        if isinstance(error, StageError):
            return (error.stage or "unknown", error.error_class, error.message, error.suggestion)

        if isinstance(error, PipelineDefinitionError):
            return (
                "pipeline",
                "invalid_definition",
                str(error),
                "Fix the stage dependencies in the pipeline definition",
            )

        return (
            "unknown",
            type(error).__name__,
            str(error)[:500],
            "Check the pipeline log for the full stack trace",
        )
