"""Pydantic settings models for all configuration."""

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field

from delivery_pipeline.models.reports import Severity


class PipelineConfig(BaseModel):
    """Run-level settings: naming, trigger filter, and filesystem locations."""

    name: str = "delivery"
    trigger_branches: list[str] = ["main"]
    workspace: str = "."
    output_dir: str = "./pipeline-runs"


class BuildConfig(BaseModel):
    """Compile and package the application."""

    command: list[str] = ["mvn", "clean", "package", "-DskipTests"]
    artifact_glob: str = "target/*.jar"
    timeout: int = 1800


class ScanConfig(BaseModel):
    """Filesystem vulnerability scan and secret scan.

    ``blocking`` selects the policy: when false the reports are written and
    the stage succeeds regardless of findings; when true any finding at or
    above ``severity_threshold`` fails the stage.
    """

    vulnerability_command: list[str] = [
        "trivy", "fs", "--format", "json", "--output", "{report}", ".",
    ]
    secret_command: list[str] = [
        "gitleaks", "detect", "--source", ".", "--report-format", "json",
        "--report-path", "{report}", "--exit-code", "0",
    ]
    vulnerability_report: str = "trivy-fs-report.json"
    secret_report: str = "gitleaks-report.json"
    blocking: bool = False
    severity_threshold: Severity = Severity.HIGH
    secret_severity: Severity = Severity.CRITICAL
    timeout: int = 900


class TestConfig(BaseModel):
    """Automated test suite execution."""

    __test__ = False

    command: list[str] = ["mvn", "test"]
    reports_glob: str = "target/surefire-reports/TEST-*.xml"
    timeout: int = 1800


class QualityGateConfig(BaseModel):
    """Static-analysis submission and quality-gate polling."""

    project_key: str = "bankapp"
    rebuild_command: list[str] | None = ["mvn", "package", "-DskipTests"]
    analysis_command: list[str] = [
        "mvn", "sonar:sonar",
        "-Dsonar.projectKey={project_key}",
        "-Dsonar.host.url={host_url}",
        "-Dsonar.token={token}",
    ]
    report_task_file: str = "target/sonar/report-task.txt"
    poll_interval: float = 5.0
    timeout: int = 300
    command_timeout: int = 1800


class ImageConfig(BaseModel):
    """Container image build and push."""

    registry: str = "docker.io"
    repository: str = "bankapp/bankapp"
    tag: str | None = None
    push_latest: bool = True
    context_dir: str = "."
    dockerfile: str = "Dockerfile"


class DeployConfig(BaseModel):
    """Managed cluster deployment target."""

    project: str = ""
    zone: str = ""
    cluster: str = ""
    namespace: str = "bankapp"
    manifests_dir: str = "k8s"
    field_manager: str = "delivery-pipeline"
    command_timeout: int = 300


class Settings(BaseModel):
    """Root configuration model for the delivery pipeline."""

    pipeline: PipelineConfig = PipelineConfig()
    build: BuildConfig = BuildConfig()
    scan: ScanConfig = ScanConfig()
    test: TestConfig = TestConfig()
    quality_gate: QualityGateConfig = QualityGateConfig()
    image: ImageConfig = ImageConfig()
    deploy: DeployConfig = DeployConfig()
    secrets: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_yaml(cls, path: Path) -> "Settings":
        """Load and validate settings from a YAML configuration file.

        Environment variable substitution is supported: if a YAML value
        starts with ``$``, the corresponding environment variable is
        resolved at load time.  The ``secrets`` section is left untouched
        here; its references are resolved per stage by
        :class:`~delivery_pipeline.pipeline.context.SecretStore` so that an
        unset credential only fails the stage that needs it.

        Args:
            path: Path to the YAML configuration file.

        Returns:
            Validated Settings instance.

        Raises:
            FileNotFoundError: If the YAML file does not exist.
            ValueError: If a referenced environment variable is not set.
        """
        raw = yaml.safe_load(path.read_text()) or {}
        secrets = raw.pop("secrets", None) or {}
        resolved = _resolve_env_vars(raw)
        resolved["secrets"] = {str(k): str(v) for k, v in secrets.items()}
        return cls.model_validate(resolved)


def _resolve_env_vars(data: object) -> object:
    """Recursively resolve environment variable references in config data.

    Any string value starting with ``$`` is treated as an environment variable
    reference and replaced with the value of that variable.

    Args:
        data: Configuration data (dict, list, or scalar).

    Returns:
        Data with environment variable references resolved.

    Raises:
        ValueError: If a referenced environment variable is not set.
    """
    if isinstance(data, dict):
        return {k: _resolve_env_vars(v) for k, v in data.items()}
    if isinstance(data, list):
        return [_resolve_env_vars(item) for item in data]
    if isinstance(data, str) and data.startswith("$"):
        var_name = data[1:]
        value = os.environ.get(var_name)
        if value is None:
            msg = (
                f"Environment variable '{var_name}' is not set "
                f"(referenced as '{data}' in config)"
            )
            raise ValueError(msg)
        return value
    return data
