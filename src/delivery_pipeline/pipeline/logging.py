"""Structured logging for pipeline runs.

Provides dual-sink logging via loguru:

- **Console sink**: Human-readable, colorized, shows the stage name.
  When a shared Rich ``Console`` is provided, output routes through it to
  avoid corrupting the Rich Live display.
- **File sink**: JSON-structured JSONL written to ``{log_dir}/{run_id}/pipeline.jsonl``
  for programmatic parsing and audit trails.

Every tool invocation is logged with its (masked) command line, exit code and
duration.  Tool output is logged at DEBUG so it lands in the JSONL file only.
"""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING

from loguru import logger

if TYPE_CHECKING:
    from pathlib import Path

    from rich.console import Console

    from delivery_pipeline.models.execution import CommandResult
    from delivery_pipeline.models.pipeline import StageResult


def setup_logging(
    log_dir: Path,
    run_id: str,
    console: Console | None = None,
    level: str = "INFO",
) -> Path:
    """Configure loguru sinks for a pipeline run.

    Removes all existing handlers first to avoid duplicate output.

    Args:
        log_dir: Root directory for log storage.
        run_id: Unique identifier for this pipeline run.
        console: Optional shared Rich Console for output routing.
        level: Minimum level for the console sink.

    Returns:
        Path of the JSONL log file.
    """
    logger.remove()

    if console is not None:
        logger.add(
            lambda msg: console.print(msg, end="", highlight=False, markup=False),
            format="{time:HH:mm:ss} | {level: <8} | {message}",
            level=level,
            colorize=False,
        )
    else:
        logger.add(
            sys.stderr,
            format=(
                "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level>"
                " | <cyan>{extra[stage]}</cyan> | {message}"
            ),
            level=level,
            filter=lambda record: "stage" in record["extra"],
        )
        logger.add(
            sys.stderr,
            format=(
                "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level>"
                " | {message}"
            ),
            level=level,
            filter=lambda record: "stage" not in record["extra"],
        )

    log_file = log_dir / run_id / "pipeline.jsonl"
    log_file.parent.mkdir(parents=True, exist_ok=True)
    logger.add(
        str(log_file),
        format="{message}",
        serialize=True,
        level="DEBUG",
    )
    return log_file


def log_stage_start(stage: str, depends_on: list[str]) -> None:
    with logger.contextualize(stage=stage):
        logger.info(
            "Stage started (depends on: {deps})",
            deps=", ".join(depends_on) or "nothing",
        )


def log_stage_result(result: StageResult) -> None:
    """Log a recorded stage result at INFO on success, ERROR on failure."""
    with logger.contextualize(stage=result.stage):
        if result.succeeded:
            logger.info(
                "Stage succeeded in {duration:.1f}s ({artifacts} artifact(s), {reports} report(s))",
                duration=result.duration_seconds,
                artifacts=len(result.artifacts),
                reports=len(result.reports),
            )
        else:
            logger.error(
                "Stage failed in {duration:.1f}s ({error_class}): {message}",
                duration=result.duration_seconds,
                error_class=result.error_class,
                message=result.message,
            )


def log_command(stage: str, result: CommandResult) -> None:
    """Log one tool invocation.  The command must already be masked."""
    with logger.contextualize(stage=stage):
        if result.ok:
            logger.info(
                "Command succeeded in {duration:.1f}s: {command}",
                duration=result.duration_seconds,
                command=" ".join(result.command),
            )
        else:
            logger.warning(
                "Command failed (exit={exit_code}, timed_out={timed_out}) in {duration:.1f}s: {command}",
                exit_code=result.exit_code,
                timed_out=result.timed_out,
                duration=result.duration_seconds,
                command=" ".join(result.command),
            )
        logger.debug("stdout:\n{stdout}", stdout=result.stdout)
        logger.debug("stderr:\n{stderr}", stderr=result.stderr)
