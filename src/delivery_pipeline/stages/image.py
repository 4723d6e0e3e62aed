"""Image stage: build a container image around the package and push it."""

from collections.abc import Callable
from pathlib import Path

from delivery_pipeline.config import ImageConfig
from delivery_pipeline.models.execution import ArtifactKind, ExternalArtifact, StageOutcome
from delivery_pipeline.pipeline.context import StageContext
from delivery_pipeline.pipeline.errors import ImagePushError
from delivery_pipeline.runners.docker_engine import DockerEngine, DockerOperationError
from delivery_pipeline.stages.base import BaseStage

USERNAME_SECRET = "registry_username"
PASSWORD_SECRET = "registry_password"


def image_reference(config: ImageConfig, tag: str) -> str:
    return f"{config.registry.rstrip('/')}/{config.repository}:{tag}"


class ImageStage(BaseStage):
    """Builds, tags, authenticates and pushes.

    The primary tag is ``image.tag`` when set, otherwise the short commit
    SHA of the trigger.  With ``push_latest`` the image is also pushed as
    ``latest``; tag overwrites are left to the registry.
    """

    error_type = ImagePushError

    def __init__(
        self,
        config: ImageConfig,
        name: str = "image",
        engine_factory: Callable[[], DockerEngine] = DockerEngine,
        **kwargs,
    ) -> None:
        kwargs.setdefault("secrets", [USERNAME_SECRET, PASSWORD_SECRET])
        super().__init__(name, **kwargs)
        self.config = config
        self._engine_factory = engine_factory

    def execute(self, context: StageContext) -> StageOutcome:
        package = context.artifact(ArtifactKind.PACKAGE)
        if package is None or not Path(package).exists():
            raise self.fail(f"No packaged artifact available to embed (got {package!r})")

        primary = image_reference(self.config, self.config.tag or context.trigger.short_sha)
        # Primary goes last: downstream stages read the most recent image artifact.
        references = [primary]
        if self.config.push_latest and not primary.endswith(":latest"):
            references.insert(0, image_reference(self.config, "latest"))

        engine = self._engine_factory()
        try:
            engine.build(
                context.workspace / self.config.context_dir,
                self.config.dockerfile,
                references,
            )
            engine.login(
                self.config.registry,
                context.secret(USERNAME_SECRET),
                context.secret(PASSWORD_SECRET),
            )
            digests = {ref: engine.push(ref) for ref in references}
        except DockerOperationError as exc:
            raise self.fail(str(exc)) from exc

        return StageOutcome(
            artifacts=[
                ExternalArtifact(
                    kind=ArtifactKind.IMAGE,
                    ref=ref,
                    description=digests[ref] or "",
                )
                for ref in references
            ],
            message=f"Pushed {primary}",
        )
