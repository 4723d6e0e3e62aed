"""Shared pytest fixtures for the delivery-pipeline test suite."""

from pathlib import Path
from types import MappingProxyType

import pytest

from delivery_pipeline.config import Settings
from delivery_pipeline.models.execution import (
    CommandResult,
    ExternalArtifact,
    StageOutcome,
    TriggerEvent,
)
from delivery_pipeline.pipeline.context import StageContext
from delivery_pipeline.stages.base import BaseStage


class FakeRunner:
    """Stands in for CommandRunner: records argv, replays scripted results.

    ``handlers`` maps the first argv element (e.g. ``"mvn"``) to a callable
    ``(command, env) -> CommandResult``; unmatched commands succeed.
    """

    def __init__(self, handlers=None) -> None:
        self.handlers = dict(handlers or {})
        self.calls: list[list[str]] = []
        self.envs: list[dict] = []
        self.stage = ""
        self.masked: tuple[str, ...] = ()

    def with_secrets(self, stage, secrets):
        self.stage = stage
        self.masked = tuple(secrets)
        return self

    def run(self, command, timeout=None, cwd=None, env=None):
        self.calls.append(list(command))
        self.envs.append(dict(env or {}))
        handler = self.handlers.get(command[0])
        if handler is not None:
            return handler(command, env or {})
        return ok_result(command)


def ok_result(command, stdout="", stderr="") -> CommandResult:
    return CommandResult(
        command=list(command), exit_code=0, stdout=stdout, stderr=stderr, duration_seconds=0.1
    )


def failed_result(command, exit_code=1, stderr="boom", timed_out=False) -> CommandResult:
    return CommandResult(
        command=list(command),
        exit_code=exit_code,
        stdout="",
        stderr=stderr,
        duration_seconds=0.1,
        timed_out=timed_out,
    )


class RecordingStage(BaseStage):
    """Stage double that records its executions and optionally raises."""

    def __init__(self, name, log, error=None, outcome=None, **kwargs) -> None:
        super().__init__(name, **kwargs)
        self.log = log
        self.error = error
        self.outcome = outcome or StageOutcome(message=f"{name} ok")
        self.contexts: list[StageContext] = []

    def execute(self, context):
        self.log.append(self.name)
        self.contexts.append(context)
        if self.error is not None:
            raise self.error
        return self.outcome


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """A checkout with a packaged jar, a Dockerfile and one manifest."""
    ws = tmp_path / "workspace"
    (ws / "target").mkdir(parents=True)
    (ws / "target" / "bankapp-0.0.1.jar").write_bytes(b"jar")
    (ws / "Dockerfile").write_text("FROM eclipse-temurin:17-jdk-alpine\n")
    (ws / "k8s").mkdir()
    (ws / "k8s" / "deployment.yaml").write_text(
        "apiVersion: apps/v1\n"
        "kind: Deployment\n"
        "metadata:\n"
        "  name: bankapp\n"
        "spec:\n"
        "  template:\n"
        "    spec:\n"
        "      containers:\n"
        "        - name: bankapp\n"
        "          image: ${IMAGE}\n"
        "---\n"
        "apiVersion: v1\n"
        "kind: Service\n"
        "metadata:\n"
        "  name: bankapp-service\n"
    )
    return ws


@pytest.fixture
def make_context(workspace: Path, fake_runner: FakeRunner, tmp_path: Path):
    """Factory for a StageContext rooted at the test workspace."""

    def _make(
        stage: str = "stage",
        secrets: dict[str, str] | None = None,
        upstream: list[ExternalArtifact] | None = None,
        runner=None,
        trigger: TriggerEvent | None = None,
    ) -> StageContext:
        return StageContext(
            stage=stage,
            workspace=workspace,
            reports_dir=tmp_path / "reports",
            trigger=trigger or TriggerEvent(branch="main", commit_sha="0123456789abcdef"),
            runner=runner or fake_runner,
            secrets=MappingProxyType(dict(secrets or {})),
            upstream=tuple(upstream or ()),
        )

    return _make


@pytest.fixture
def minimal_config_dict(tmp_path: Path) -> dict:
    """Return a minimal configuration dictionary for testing."""
    return {
        "pipeline": {
            "name": "bankapp",
            "trigger_branches": ["main"],
            "workspace": str(tmp_path / "workspace"),
            "output_dir": str(tmp_path / "runs"),
        },
        "scan": {"blocking": True, "severity_threshold": "HIGH"},
        "quality_gate": {"project_key": "bankapp"},
        "image": {"registry": "registry.example.com", "repository": "bank/bankapp"},
        "deploy": {
            "project": "bank-project",
            "zone": "us-central1-a",
            "cluster": "bank-cluster",
            "namespace": "webapps",
        },
        "secrets": {
            "sonar_token": "squ_test_token",
            "sonar_host_url": "http://sonar.local:9000",
            "registry_username": "ci-bot",
            "registry_password": "hunter2-registry",
            "gcp_service_account_key": '{"type": "service_account"}',
        },
    }


@pytest.fixture
def settings(minimal_config_dict: dict) -> Settings:
    return Settings.model_validate(minimal_config_dict)
