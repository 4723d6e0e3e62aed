"""Per-stage execution context and scoped secret injection.

Each stage receives a fresh :class:`StageContext` holding only the secrets
that stage declared.  Secrets live in memory for the duration of the stage
call and are never attached to the run record.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING

from delivery_pipeline.models.execution import ArtifactKind, ExternalArtifact, TriggerEvent
from delivery_pipeline.pipeline.errors import MissingSecretError

if TYPE_CHECKING:
    from delivery_pipeline.runners.command import CommandRunner


class SecretStore:
    """Named secrets, resolved lazily from the environment.

    Values beginning with ``$`` are environment variable references and are
    looked up only when a stage asks for that secret, so a missing
    credential fails the stage that needs it rather than the whole config.
    """

    def __init__(self, secrets: Mapping[str, str] | None = None) -> None:
        self._secrets = dict(secrets or {})

    def names(self) -> list[str]:
        return sorted(self._secrets)

    def resolve(self, name: str, stage: str = "") -> str:
        raw = self._secrets.get(name)
        if raw is None:
            msg = f"Secret '{name}' is not configured"
            raise MissingSecretError(msg, stage=stage)
        if raw.startswith("$"):
            value = os.environ.get(raw[1:])
            if value is None:
                msg = f"Secret '{name}' references unset environment variable '{raw[1:]}'"
                raise MissingSecretError(msg, stage=stage)
            return value
        return raw

    def scoped(self, names: list[str] | tuple[str, ...], stage: str = "") -> Mapping[str, str]:
        """Return a read-only mapping holding only the requested secrets.

        Raises:
            MissingSecretError: If any requested secret is absent or unresolvable.
        """
        return MappingProxyType({name: self.resolve(name, stage) for name in names})


@dataclass(frozen=True)
class StageContext:
    """Everything a stage may use while executing.

    Attributes:
        stage: Name of the stage this context was built for.
        workspace: Source checkout root.
        reports_dir: Directory for this run's machine-readable reports.
        trigger: The event that started the run.
        runner: Command runner pre-loaded with this stage's secrets for masking.
        secrets: Read-only mapping of the secrets this stage declared.
        upstream: Artifacts recorded by earlier successful stages.
    """

    stage: str
    workspace: Path
    reports_dir: Path
    trigger: TriggerEvent
    runner: CommandRunner
    secrets: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    upstream: tuple[ExternalArtifact, ...] = ()

    def secret(self, name: str) -> str:
        try:
            return self.secrets[name]
        except KeyError:
            msg = f"Stage '{self.stage}' did not declare secret '{name}'"
            raise MissingSecretError(msg, stage=self.stage) from None

    def artifact(self, kind: ArtifactKind) -> str | None:
        """Return the most recent upstream artifact reference of *kind*."""
        for item in reversed(self.upstream):
            if item.kind == kind:
                return item.ref
        return None

    def __repr__(self) -> str:
        return (
            f"StageContext(stage={self.stage!r}, workspace={str(self.workspace)!r}, "
            f"secrets={sorted(self.secrets)!r})"
        )
