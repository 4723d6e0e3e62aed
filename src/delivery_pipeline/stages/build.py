"""Build stage: compile the source checkout and package an artifact."""

from loguru import logger

from delivery_pipeline.config import BuildConfig
from delivery_pipeline.models.execution import ArtifactKind, ExternalArtifact, StageOutcome
from delivery_pipeline.pipeline.context import StageContext
from delivery_pipeline.pipeline.errors import BuildError
from delivery_pipeline.pipeline.redaction import tail
from delivery_pipeline.stages.base import BaseStage


class BuildStage(BaseStage):
    """Runs the configured build command and locates the packaged artifact.

    When the glob matches several files the most recently modified one is
    taken as the package.
    """

    error_type = BuildError

    def __init__(self, config: BuildConfig, name: str = "build", **kwargs) -> None:
        super().__init__(name, **kwargs)
        self.config = config

    def execute(self, context: StageContext) -> StageOutcome:
        result = context.runner.run(self.config.command, timeout=self.config.timeout)
        if result.timed_out:
            raise self.fail(f"Build timed out after {self.config.timeout}s")
        if not result.ok:
            raise self.fail(
                f"Build command exited with {result.exit_code}: "
                f"{tail(result.stderr or result.stdout)}"
            )

        matches = sorted(
            context.workspace.glob(self.config.artifact_glob),
            key=lambda p: p.stat().st_mtime,
        )
        if not matches:
            raise self.fail(
                f"Build succeeded but produced no artifact matching "
                f"'{self.config.artifact_glob}'"
            )
        package = matches[-1]
        logger.info(f"Packaged artifact: {package}")
        return StageOutcome(
            artifacts=[
                ExternalArtifact(
                    kind=ArtifactKind.PACKAGE,
                    ref=str(package),
                    description=f"{package.stat().st_size} bytes",
                )
            ],
            message=f"Built {package.name}",
        )
