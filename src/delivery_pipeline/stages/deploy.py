"""Deploy stage: authenticate to the cloud project and apply manifests.

Cloud CLI state and the generated kubeconfig live in a private temporary
directory for the duration of the stage, so credentials never touch the
worker's global configuration and concurrent runs do not share them.
"""

import os
import tempfile
from collections.abc import Callable
from pathlib import Path

from loguru import logger

from delivery_pipeline.config import DeployConfig
from delivery_pipeline.models.execution import ArtifactKind, ExternalArtifact, StageOutcome
from delivery_pipeline.pipeline.context import StageContext
from delivery_pipeline.pipeline.errors import DeployApplyError, DeployAuthError
from delivery_pipeline.pipeline.redaction import tail
from delivery_pipeline.runners.kube import ClusterClient, ClusterError, add_exec_env, load_manifests
from delivery_pipeline.stages.base import BaseStage

KEY_SECRET = "gcp_service_account_key"


class DeployStage(BaseStage):
    """Authenticates, selects the cluster, ensures the namespace, applies manifests.

    Args:
        config: Deployment target settings.
        cluster_factory: ``(kubeconfig_path) -> ClusterClient``; replaced in tests.
    """

    error_type = DeployApplyError

    def __init__(
        self,
        config: DeployConfig,
        name: str = "deploy",
        cluster_factory: Callable[[Path], ClusterClient] = lambda path: ClusterClient(kubeconfig=path),
        **kwargs,
    ) -> None:
        kwargs.setdefault("secrets", [KEY_SECRET])
        super().__init__(name, **kwargs)
        self.config = config
        self._cluster_factory = cluster_factory

    def _authenticate(self, context: StageContext, state_dir: Path) -> dict[str, str]:
        """Activate the service account and fetch cluster credentials.

        The kubeconfig's exec credential plugin is pinned to the same
        cloud CLI state, so cluster calls authenticate as the activated
        service account.

        Returns:
            Environment variables pointing the cloud CLI and kubeconfig at
            *state_dir*.
        """
        env = {
            "CLOUDSDK_CONFIG": str(state_dir / "gcloud"),
            "KUBECONFIG": str(state_dir / "kubeconfig"),
        }
        key_file = state_dir / "service-account.json"
        fd = os.open(key_file, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "w") as handle:
            handle.write(context.secret(KEY_SECRET))

        cfg = self.config
        steps = [
            ["gcloud", "auth", "activate-service-account", f"--key-file={key_file}"],
            ["gcloud", "config", "set", "project", cfg.project],
            [
                "gcloud", "container", "clusters", "get-credentials", cfg.cluster,
                "--zone", cfg.zone, "--project", cfg.project,
            ],
        ]
        for command in steps:
            result = context.runner.run(command, timeout=cfg.command_timeout, env=env)
            if not result.ok:
                raise DeployAuthError(
                    f"'{' '.join(command[:4])}' failed (exit={result.exit_code}): "
                    f"{tail(result.stderr)}",
                    stage=self.name,
                )
        try:
            add_exec_env(Path(env["KUBECONFIG"]), {"CLOUDSDK_CONFIG": env["CLOUDSDK_CONFIG"]})
        except ClusterError as exc:
            raise DeployAuthError(str(exc), stage=self.name) from exc
        logger.info(
            f"Authenticated to project {cfg.project}, cluster {cfg.cluster} ({cfg.zone})"
        )
        return env

    def execute(self, context: StageContext) -> StageOutcome:
        cfg = self.config
        if not (cfg.project and cfg.zone and cfg.cluster):
            raise DeployAuthError(
                "deploy.project, deploy.zone and deploy.cluster must all be set",
                stage=self.name,
            )

        substitutions = {"NAMESPACE": cfg.namespace}
        image = context.artifact(ArtifactKind.IMAGE)
        if image:
            substitutions["IMAGE"] = image
        try:
            manifests = load_manifests(context.workspace / cfg.manifests_dir, substitutions)
        except ClusterError as exc:
            raise self.fail(str(exc)) from exc

        with tempfile.TemporaryDirectory(prefix="deploy-") as tmp:
            env = self._authenticate(context, Path(tmp))
            cluster = self._cluster_factory(Path(env["KUBECONFIG"]))
            try:
                created = cluster.ensure_namespace(cfg.namespace)
                applied = [
                    cluster.apply(doc, cfg.namespace, cfg.field_manager) for doc in manifests
                ]
            except ClusterError as exc:
                raise self.fail(str(exc)) from exc

        return StageOutcome(
            artifacts=[
                ExternalArtifact(
                    kind=ArtifactKind.MANIFEST,
                    ref=f"{cfg.cluster}/{cfg.namespace}/{ident}",
                )
                for ident in applied
            ],
            message=(
                f"Applied {len(applied)} manifest(s) to namespace {cfg.namespace}"
                f"{' (created)' if created else ''}"
            ),
        )
