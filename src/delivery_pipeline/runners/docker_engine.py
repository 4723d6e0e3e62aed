"""Docker client management for image build, registry login, and push.

DockerEngine is the single point of contact with the Docker daemon.  The
image stage uses it for every container-image operation.
"""

from __future__ import annotations

import logging
from pathlib import Path

import docker
from docker.errors import APIError, BuildError, DockerException

logger = logging.getLogger(__name__)


class DockerOperationError(Exception):
    """Raised when a daemon or registry operation fails."""


class DockerEngine:
    """Builds, tags and pushes images through the Docker SDK.

    Args:
        client: Optional pre-built client (tests pass a mock).  When omitted
            the client is created from the environment on first use.
    """

    def __init__(self, client: docker.DockerClient | None = None) -> None:
        self._client = client

    def get_client(self) -> docker.DockerClient:
        """Return the Docker client, connecting and pinging on first use.

        Raises:
            DockerOperationError: If the daemon is not running or not accessible.
        """
        if self._client is None:
            try:
                self._client = docker.from_env()
                self._client.ping()
            except DockerException as exc:
                msg = f"Cannot connect to Docker daemon: {exc}"
                raise DockerOperationError(msg) from exc
            logger.info("DockerEngine connected to Docker daemon")
        return self._client

    def build(self, context_dir: Path, dockerfile: str, tags: list[str]) -> str:
        """Build an image from *context_dir* and apply every tag in *tags*.

        Returns:
            The built image id.

        Raises:
            DockerOperationError: If the build fails.
        """
        client = self.get_client()
        logger.info("Building image '%s' from '%s'", tags[0], context_dir)
        try:
            image, _logs = client.images.build(
                path=str(context_dir),
                dockerfile=dockerfile,
                tag=tags[0],
                rm=True,
            )
            for extra in tags[1:]:
                repository, tag = split_reference(extra)
                image.tag(repository, tag=tag)
        except (BuildError, APIError) as exc:
            msg = f"Image build failed: {exc}"
            raise DockerOperationError(msg) from exc
        logger.info("Image '%s' built (%s)", tags[0], image.short_id)
        return image.id

    def login(self, registry: str, username: str, password: str) -> None:
        """Authenticate to *registry*.

        Raises:
            DockerOperationError: If the registry rejects the credentials.
        """
        client = self.get_client()
        try:
            client.login(username=username, password=password, registry=registry)
        except APIError as exc:
            msg = f"Registry login to '{registry}' failed: {exc.explanation or exc}"
            raise DockerOperationError(msg) from exc
        logger.info("Logged in to registry '%s' as '%s'", registry, username)

    def push(self, reference: str) -> str | None:
        """Push *reference* and return the pushed digest when the registry reports one.

        The push API streams JSON status lines and reports failures inside
        the stream rather than raising, so each line is inspected.

        Raises:
            DockerOperationError: If the push is rejected.
        """
        client = self.get_client()
        repository, tag = split_reference(reference)
        digest = None
        try:
            for line in client.images.push(repository, tag=tag, stream=True, decode=True):
                if "error" in line:
                    detail = line.get("errorDetail", {}).get("message") or line["error"]
                    msg = f"Push of '{reference}' rejected: {detail}"
                    raise DockerOperationError(msg)
                aux = line.get("aux") or {}
                if "Digest" in aux:
                    digest = aux["Digest"]
        except APIError as exc:
            msg = f"Push of '{reference}' failed: {exc}"
            raise DockerOperationError(msg) from exc
        logger.info("Pushed '%s' (digest=%s)", reference, digest)
        return digest


def split_reference(reference: str) -> tuple[str, str]:
    """Split ``registry/repo:tag`` into ``(registry/repo, tag)``.

    A colon that belongs to a registry port (``host:5000/repo``) is not a tag
    separator; references without a tag get ``latest``.
    """
    last_segment = reference.rsplit("/", 1)[-1]
    if ":" in last_segment:
        repository, tag = reference.rsplit(":", 1)
        return repository, tag
    return reference, "latest"
