"""Typer CLI entry point for the delivery pipeline."""

import asyncio
from pathlib import Path
from typing import TYPE_CHECKING

import typer
from dotenv import load_dotenv

if TYPE_CHECKING:
    from rich.console import Console

    from delivery_pipeline.config import Settings

load_dotenv()

app = typer.Typer(
    name="delivery-pipeline",
    help="Build, scan, test, gate, containerize and deploy in one gated chain",
    no_args_is_help=True,
)

EXIT_FAILED = 1
EXIT_CONFIG = 2
EXIT_INTERRUPTED = 130


_config_option = typer.Option(
    "pipeline.yaml",
    "--config",
    "-c",
    help="Path to configuration YAML file",
    exists=True,
)


def _load_settings(config: Path, console: "Console") -> "Settings":
    from pydantic import ValidationError

    from delivery_pipeline.config import Settings

    try:
        return Settings.from_yaml(config)
    except (ValueError, ValidationError) as e:
        console.print(f"[red]Invalid configuration:[/red] {e}")
        raise typer.Exit(code=EXIT_CONFIG) from None


@app.command()
def run(
    config: Path = _config_option,
    branch: str = typer.Option("main", "--branch", "-b", help="Branch the event refers to"),
    commit: str = typer.Option("", "--commit", help="Commit SHA that triggered the run"),
    event: str = typer.Option(
        "push", "--event", "-e", help="Trigger event: 'push' or 'manual'"
    ),
) -> None:
    """Run the delivery pipeline for one trigger event."""
    from rich.console import Console

    from delivery_pipeline.display.error_display import ErrorDisplay
    from delivery_pipeline.display.pipeline_display import PipelineDisplay
    from delivery_pipeline.models.execution import TriggerEvent
    from delivery_pipeline.pipeline.errors import PipelineDefinitionError
    from delivery_pipeline.pipeline.orchestrator import PipelineOrchestrator

    console = Console(stderr=True)
    error_display = ErrorDisplay(console)
    settings = _load_settings(config, console)

    try:
        orchestrator = PipelineOrchestrator(settings, console=console)
    except PipelineDefinitionError as e:
        error_display.show_error(*ErrorDisplay.format_pipeline_error(e))
        raise typer.Exit(code=EXIT_CONFIG) from None

    trigger = TriggerEvent(event=event, branch=branch, commit_sha=commit)
    if not orchestrator.should_trigger(trigger):
        console.print(
            f"Branch '{branch}' is not a trigger branch "
            f"({', '.join(settings.pipeline.trigger_branches)}); nothing to do."
        )
        raise typer.Exit(code=0)

    display = PipelineDisplay(orchestrator.stage_names, console=console)
    orchestrator.callback = display

    try:
        display.start()
        pipeline_run = asyncio.run(orchestrator.run(trigger))
        display.stop()
    except KeyboardInterrupt:
        display.stop()
        error_display.show_error(
            "pipeline",
            "interrupted",
            "Run interrupted by user",
            "Re-run the pipeline; stages already applied are not rolled back",
        )
        raise typer.Exit(code=EXIT_INTERRUPTED) from None

    if pipeline_run.failed_stage:
        failed = pipeline_run.result_for(pipeline_run.failed_stage)
        error_display.show_error(
            pipeline_run.failed_stage,
            failed.error_class or "error",
            failed.message,
            _suggestion_for(failed.error_class),
            reports=[r.ref for r in failed.reports],
        )
        raise typer.Exit(code=EXIT_FAILED)


def _suggestion_for(error_class: str | None) -> str:
    from delivery_pipeline.pipeline import errors

    for cls in errors.StageError.__subclasses__():
        if cls.error_class == error_class:
            return cls.suggestion
    return errors.StageError.suggestion


@app.command()
def plan(config: Path = _config_option) -> None:
    """Show the stage execution order, dependencies and declared secrets."""
    from rich.console import Console
    from rich.table import Table

    from delivery_pipeline.pipeline.orchestrator import build_stages
    from delivery_pipeline.pipeline.sequencer import order_stages

    console = Console()
    settings = _load_settings(config, console)

    table = Table(title=f"Pipeline '{settings.pipeline.name}'", show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("Stage", style="cyan")
    table.add_column("Depends on")
    table.add_column("Secrets")
    for i, stage in enumerate(order_stages(build_stages(settings)), start=1):
        table.add_row(
            str(i),
            stage.name,
            ", ".join(stage.depends_on) or "-",
            ", ".join(stage.secrets) or "-",
        )
    console.print(table)
    policy = "blocking" if settings.scan.blocking else "advisory"
    console.print(
        f"Trigger branches: {', '.join(settings.pipeline.trigger_branches)}  |  "
        f"Scan policy: {policy} (threshold {settings.scan.severity_threshold.value})"
    )


@app.command()
def status(
    record: Path = typer.Argument(
        ..., help="Run directory or pipeline_run.json file", exists=True
    ),
) -> None:
    """Show a recorded run."""
    from rich.console import Console
    from rich.table import Table

    from delivery_pipeline.models.pipeline import PipelineRun
    from delivery_pipeline.pipeline.orchestrator import RUN_RECORD

    path = record / RUN_RECORD if record.is_dir() else record
    pipeline_run = PipelineRun.load(path)

    console = Console()
    table = Table(
        title=f"Run {pipeline_run.run_id}: {pipeline_run.status.value}",
        show_header=True,
        header_style="bold",
    )
    table.add_column("Stage", style="cyan")
    table.add_column("Status")
    table.add_column("Duration", justify="right")
    table.add_column("Artifacts / reports")
    table.add_column("Message")
    for result in pipeline_run.results:
        style = "green" if result.succeeded else "red"
        refs = [a.ref for a in (*result.artifacts, *result.reports)]
        table.add_row(
            result.stage,
            f"[{style}]{result.status.value}[/{style}]",
            f"{result.duration_seconds:.1f}s",
            "\n".join(refs) or "-",
            result.message[:200],
        )
    console.print(table)
    if pipeline_run.status.value == "failed":
        raise typer.Exit(code=EXIT_FAILED)


if __name__ == "__main__":
    app()
