"""Quality-gate stage: submit an analysis and block on the server's verdict."""

from collections.abc import Callable
from pathlib import Path

from loguru import logger

from delivery_pipeline.config import QualityGateConfig
from delivery_pipeline.models.execution import ArtifactKind, ExternalArtifact, StageOutcome
from delivery_pipeline.pipeline.context import StageContext
from delivery_pipeline.pipeline.errors import QualityGateRejection
from delivery_pipeline.pipeline.redaction import tail
from delivery_pipeline.runners.command import format_command
from delivery_pipeline.runners.sonar import (
    AnalysisTimeoutError,
    SonarClient,
    SonarError,
    read_report_task,
)
from delivery_pipeline.stages.base import BaseStage

TOKEN_SECRET = "sonar_token"
HOST_SECRET = "sonar_host_url"


class QualityGateStage(BaseStage):
    """Rebuilds, runs the analysis command, then polls for the gate verdict.

    Args:
        config: Quality-gate settings.
        client_factory: ``(host_url, token) -> SonarClient``; replaced in tests.
    """

    error_type = QualityGateRejection

    def __init__(
        self,
        config: QualityGateConfig,
        name: str = "quality_gate",
        client_factory: Callable[[str, str], SonarClient] = SonarClient,
        **kwargs,
    ) -> None:
        kwargs.setdefault("secrets", [TOKEN_SECRET, HOST_SECRET])
        super().__init__(name, **kwargs)
        self.config = config
        self._client_factory = client_factory

    def _run(self, context: StageContext, command: list[str], what: str) -> None:
        result = context.runner.run(command, timeout=self.config.command_timeout)
        if not result.ok:
            raise self.fail(
                f"{what} failed (exit={result.exit_code}): "
                f"{tail(result.stderr or result.stdout)}"
            )

    def execute(self, context: StageContext) -> StageOutcome:
        token = context.secret(TOKEN_SECRET)
        host_url = context.secret(HOST_SECRET)

        if self.config.rebuild_command:
            self._run(context, self.config.rebuild_command, "Rebuild")
        self._run(
            context,
            format_command(
                self.config.analysis_command,
                project_key=self.config.project_key,
                host_url=host_url,
                token=token,
            ),
            "Analysis",
        )

        try:
            task = read_report_task(context.workspace / Path(self.config.report_task_file))
            with self._client_factory(host_url, token) as sonar:
                analysis_id = sonar.wait_for_analysis(
                    task["ceTaskId"],
                    timeout=self.config.timeout,
                    poll_interval=self.config.poll_interval,
                )
                verdict = sonar.quality_gate(analysis_id)
        except AnalysisTimeoutError as exc:
            raise self.fail(f"Quality gate timed out: {exc}") from exc
        except SonarError as exc:
            raise self.fail(str(exc)) from exc

        gate_ref = ExternalArtifact(
            kind=ArtifactKind.QUALITY_GATE,
            ref=analysis_id,
            description=f"{self.config.project_key}: {verdict.status}",
        )
        if not verdict.passed:
            conditions = "; ".join(
                f"{c.metric} {c.actual} (threshold {c.comparator or ''} {c.threshold})"
                for c in verdict.failing_conditions
            ) or "no condition details"
            raise self.fail(
                f"Quality gate {verdict.status}: {conditions}",
                reports=[gate_ref],
            )

        logger.info(f"Quality gate passed for analysis {analysis_id}")
        return StageOutcome(reports=[gate_ref], message=f"Quality gate {verdict.status}")
