"""Dependency-ordered stage execution with first-failure short-circuit.

The sequencer validates the stage graph, orders it topologically (ties keep
declaration order, so a linear chain runs exactly as declared), and executes
one stage at a time.  A stage runs only if every dependency recorded a
success.  The first failure makes the run terminally ``failed``; later
stages are never executed and never recorded.
"""

from __future__ import annotations

import time
import traceback
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

from delivery_pipeline.models.pipeline import PipelineRun, RunStatus, StageResult, StageStatus
from delivery_pipeline.pipeline.context import SecretStore, StageContext
from delivery_pipeline.pipeline.errors import PipelineDefinitionError, StageError
from delivery_pipeline.pipeline.logging import log_stage_result, log_stage_start
from delivery_pipeline.pipeline.redaction import redact

if TYPE_CHECKING:
    from delivery_pipeline.display.callbacks import ProgressCallback
    from delivery_pipeline.runners.command import CommandRunner
    from delivery_pipeline.stages.base import BaseStage


def order_stages(stages: list[BaseStage]) -> list[BaseStage]:
    """Validate the stage graph and return it in execution order.

    Raises:
        PipelineDefinitionError: On an empty list, duplicate names, unknown
            dependencies, or a dependency cycle.
    """
    if not stages:
        msg = "Pipeline must have at least one stage"
        raise PipelineDefinitionError(msg)

    by_name: dict[str, BaseStage] = {}
    for stage in stages:
        if stage.name in by_name:
            msg = f"Duplicate stage name '{stage.name}'"
            raise PipelineDefinitionError(msg)
        by_name[stage.name] = stage

    for stage in stages:
        for dep in stage.depends_on:
            if dep not in by_name:
                msg = f"Stage '{stage.name}' depends on unknown stage '{dep}'"
                raise PipelineDefinitionError(msg)

    remaining = {s.name: set(s.depends_on) for s in stages}
    ordered: list[BaseStage] = []
    while remaining:
        ready = [s for s in stages if s.name in remaining and not remaining[s.name]]
        if not ready:
            msg = f"Dependency cycle among stages: {', '.join(sorted(remaining))}"
            raise PipelineDefinitionError(msg)
        stage = ready[0]
        ordered.append(stage)
        del remaining[stage.name]
        for deps in remaining.values():
            deps.discard(stage.name)
    return ordered


def linear_chain(stages: list[BaseStage]) -> list[BaseStage]:
    """Make each stage depend on the one before it (in addition to its own deps)."""
    for previous, stage in zip(stages, stages[1:]):
        if previous.name not in stage.depends_on:
            stage.depends_on.insert(0, previous.name)
    return stages


class StageSequencer:
    """Executes a validated stage graph and records a :class:`PipelineRun`.

    Args:
        stages: Stage definitions; validated and ordered on construction.
        runner: Base command runner, specialised per stage with its secrets.
        secrets: Store the scoped per-stage secrets are drawn from.
        workspace: Source checkout root.
        reports_dir: Where stages write their reports.
        callback: Optional progress callback.
        on_record: Called after every recorded result (used to persist the run).
    """

    def __init__(
        self,
        stages: list[BaseStage],
        runner: CommandRunner,
        secrets: SecretStore,
        workspace: Path,
        reports_dir: Path,
        callback: ProgressCallback | None = None,
        on_record: Callable[[PipelineRun], None] | None = None,
    ) -> None:
        self.stages = order_stages(stages)
        self.runner = runner
        self.secrets = secrets
        self.workspace = workspace
        self.reports_dir = reports_dir
        self.callback = callback
        self.on_record = on_record

    def _dependencies_met(self, run: PipelineRun, stage: BaseStage) -> bool:
        for dep in stage.depends_on:
            result = run.result_for(dep)
            if result is None or result.status != StageStatus.SUCCESS:
                return False
        return True

    def _context(self, run: PipelineRun, stage: BaseStage) -> StageContext:
        scoped = self.secrets.scoped(stage.secrets, stage=stage.name)
        upstream = tuple(
            artifact
            for result in run.results
            if result.succeeded
            for artifact in (*result.artifacts, *result.reports)
        )
        return StageContext(
            stage=stage.name,
            workspace=self.workspace,
            reports_dir=self.reports_dir,
            trigger=run.trigger,
            runner=self.runner.with_secrets(stage.name, tuple(scoped.values())),
            secrets=scoped,
            upstream=upstream,
        )

    def _execute(self, run: PipelineRun, stage: BaseStage) -> tuple[StageResult, BaseException | None]:
        t0 = time.monotonic()
        secret_values: tuple[str, ...] = ()
        try:
            context = self._context(run, stage)
            secret_values = tuple(context.secrets.values())
            outcome = stage.execute(context)
        except StageError as exc:
            exc.stage = exc.stage or stage.name
            return (
                StageResult(
                    stage=stage.name,
                    status=StageStatus.FAILURE,
                    artifacts=tuple(exc.artifacts),
                    reports=tuple(exc.reports),
                    message=redact(exc.message, secret_values),
                    error_class=exc.error_class,
                    duration_seconds=time.monotonic() - t0,
                ),
                exc,
            )
        except Exception as exc:  # noqa: BLE001
            # Adapter bugs and unexpected SDK errors still halt the run as a failure.
            logger.error(
                redact(f"Stage '{stage.name}' raised an unexpected error: {exc!r}", secret_values)
            )
            logger.debug(redact("".join(traceback.format_exception(exc)), secret_values))
            return (
                StageResult(
                    stage=stage.name,
                    status=StageStatus.FAILURE,
                    message=redact(f"{type(exc).__name__}: {exc}", secret_values),
                    error_class=type(exc).__name__,
                    duration_seconds=time.monotonic() - t0,
                ),
                exc,
            )
        return (
            StageResult(
                stage=stage.name,
                status=StageStatus.SUCCESS,
                artifacts=tuple(outcome.artifacts),
                reports=tuple(outcome.reports),
                message=redact(outcome.message, secret_values),
                duration_seconds=time.monotonic() - t0,
            ),
            None,
        )

    def run(self, run: PipelineRun) -> tuple[PipelineRun, BaseException | None]:
        """Execute stages in order until one fails or all succeed.

        Returns:
            The terminal run and the exception that halted it (None on success).
        """
        run.start()
        self._notify(run)
        cause: BaseException | None = None

        for stage in self.stages:
            if run.status != RunStatus.RUNNING:
                break
            if not self._dependencies_met(run, stage):
                logger.error(f"Stage '{stage.name}' has unmet dependencies; not executed")
                continue

            log_stage_start(stage.name, stage.depends_on)
            if self.callback:
                self.callback.on_stage_start(stage.name, stage.depends_on)

            result, cause = self._execute(run, stage)
            run.record(result)
            log_stage_result(result)
            self._notify(run)

            if self.callback:
                if result.succeeded:
                    self.callback.on_stage_complete(stage.name, result.duration_seconds, result.message)
                else:
                    suggestion = getattr(cause, "suggestion", "Check the pipeline log for the stack trace")
                    self.callback.on_stage_fail(
                        stage.name, result.error_class or "error", result.message, suggestion
                    )

        run.finish()
        self._notify(run)
        return run, cause

    def _notify(self, run: PipelineRun) -> None:
        if self.on_record:
            self.on_record(run)
