"""Adapters for the external tools and services the stages drive."""

from delivery_pipeline.runners.command import CommandRunner, format_command
from delivery_pipeline.runners.docker_engine import DockerEngine, DockerOperationError
from delivery_pipeline.runners.kube import ClusterClient, ClusterError, load_manifests
from delivery_pipeline.runners.sonar import AnalysisTimeoutError, SonarClient, SonarError

__all__ = [
    "AnalysisTimeoutError",
    "ClusterClient",
    "ClusterError",
    "CommandRunner",
    "DockerEngine",
    "DockerOperationError",
    "SonarClient",
    "SonarError",
    "format_command",
    "load_manifests",
]
