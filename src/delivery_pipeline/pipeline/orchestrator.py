"""Pipeline orchestrator wiring the delivery stages to the sequencer.

Runs the full chain: build -> security_scan -> test -> quality_gate ->
image -> deploy, each stage depending on the one before.  The orchestrator
owns everything around the chain: trigger filtering, the run directory,
logging setup, persisting the run record after every stage, and reporting
the terminal status to the display.
"""

import asyncio
import time
from datetime import datetime
from pathlib import Path
from uuid import uuid4

from loguru import logger
from rich.console import Console

from delivery_pipeline.config import Settings
from delivery_pipeline.display.callbacks import ProgressCallback
from delivery_pipeline.models.execution import TriggerEvent
from delivery_pipeline.models.pipeline import PipelineRun, RunStatus
from delivery_pipeline.pipeline.context import SecretStore
from delivery_pipeline.pipeline.errors import PipelineFailedError
from delivery_pipeline.pipeline.logging import setup_logging
from delivery_pipeline.pipeline.sequencer import StageSequencer, linear_chain, order_stages
from delivery_pipeline.runners.command import CommandRunner
from delivery_pipeline.stages.base import BaseStage
from delivery_pipeline.stages.build import BuildStage
from delivery_pipeline.stages.deploy import DeployStage
from delivery_pipeline.stages.image import ImageStage
from delivery_pipeline.stages.quality_gate import QualityGateStage
from delivery_pipeline.stages.security_scan import SecurityScanStage
from delivery_pipeline.stages.testing import TestStage

RUN_RECORD = "pipeline_run.json"


def build_stages(settings: Settings) -> list[BaseStage]:
    """Return the six delivery stages as a linear dependency chain."""
    return linear_chain(
        [
            BuildStage(settings.build),
            SecurityScanStage(settings.scan),
            TestStage(settings.test),
            QualityGateStage(settings.quality_gate),
            ImageStage(settings.image),
            DeployStage(settings.deploy),
        ]
    )


class PipelineOrchestrator:
    """Runs one pipeline per trigger event.

    Each call to :meth:`run` creates an isolated run directory
    (``<output_dir>/<run_id>/``) holding the run record, reports and the
    JSONL log.  Runs share nothing else.

    Args:
        settings: Validated settings.
        callback: Optional progress callback (the Rich display).
        console: Shared Rich console for log routing.
        stages: Stage list override; defaults to :func:`build_stages`.
    """

    def __init__(
        self,
        settings: Settings,
        callback: ProgressCallback | None = None,
        console: Console | None = None,
        stages: list[BaseStage] | None = None,
    ) -> None:
        self.settings = settings
        self.callback = callback
        self.console = console
        self.stages = order_stages(stages if stages is not None else build_stages(settings))
        self.secrets = SecretStore(settings.secrets)

    @property
    def stage_names(self) -> list[str]:
        return [s.name for s in self.stages]

    def should_trigger(self, trigger: TriggerEvent) -> bool:
        """Push events start a run only on a designated branch; manual runs always start."""
        if trigger.event == "manual":
            return True
        return trigger.branch in self.settings.pipeline.trigger_branches

    def _new_run(self, trigger: TriggerEvent) -> PipelineRun:
        # The random suffix keeps same-commit runs started in the same second apart.
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        run_id = f"{stamp}_{trigger.short_sha}_{uuid4().hex[:8]}"
        return PipelineRun(run_id=run_id, pipeline=self.settings.pipeline.name, trigger=trigger)

    async def run(
        self, trigger: TriggerEvent | None = None, raise_on_failure: bool = False
    ) -> PipelineRun:
        """Execute the pipeline for *trigger*.

        Stages block on their external tools, so the sequencer runs in a
        worker thread while the event loop keeps the display responsive.

        Returns:
            The terminal run record.

        Raises:
            PipelineFailedError: If the run failed and *raise_on_failure* is set.
        """
        trigger = trigger or TriggerEvent(event="manual")
        pipeline_start = time.monotonic()

        run = self._new_run(trigger)
        output_root = Path(self.settings.pipeline.output_dir)
        run_dir = output_root / run.run_id
        run_dir.mkdir(parents=True, exist_ok=False)
        record_path = run_dir / RUN_RECORD

        setup_logging(output_root, run.run_id, console=self.console)
        logger.info(
            f"Pipeline '{run.pipeline}' started: run_id={run.run_id} "
            f"event={trigger.event} branch={trigger.branch} commit={trigger.short_sha}"
        )
        run.save(record_path)

        workspace = Path(self.settings.pipeline.workspace).resolve()
        sequencer = StageSequencer(
            self.stages,
            runner=CommandRunner(workspace),
            secrets=self.secrets,
            workspace=workspace,
            reports_dir=run_dir / "reports",
            callback=self.callback,
            on_record=lambda r: r.save(record_path),
        )
        run, cause = await asyncio.to_thread(sequencer.run, run)

        total = time.monotonic() - pipeline_start
        if run.status == RunStatus.SUCCEEDED:
            logger.info(f"Pipeline succeeded in {total:.1f}s: {record_path}")
            if self.callback:
                self.callback.on_pipeline_complete(str(run_dir), total)
            return run

        logger.error(f"Pipeline failed at stage '{run.failed_stage}' after {total:.1f}s")
        if self.callback:
            failed = run.result_for(run.failed_stage) if run.failed_stage else None
            error = f"{failed.error_class}: {failed.message}" if failed else ""
            self.callback.on_pipeline_fail(run.failed_stage or "unknown", error)
        if raise_on_failure:
            raise PipelineFailedError(run, cause)
        return run
