"""External tool execution as subprocesses with timeout and output capture.

CommandRunner runs build tools, scanners and cloud CLIs with:
- Working directory pinned to the source checkout
- Timeout enforcement (the process is killed, result marked timed_out)
- Separate stdout/stderr capture
- Secret masking of argv and output before anything is returned or logged

A missing executable is reported as exit code 127, the way a shell does,
so stages handle it like any other tool failure.
"""

from __future__ import annotations

import os
import subprocess
import time
from collections.abc import Mapping
from pathlib import Path

from delivery_pipeline.models.execution import CommandResult
from delivery_pipeline.pipeline.logging import log_command
from delivery_pipeline.pipeline.redaction import redact, redact_command


class CommandRunner:
    """Run tool commands for one stage.

    Args:
        cwd: Default working directory for commands.
        stage: Stage name used for log context.
        secrets: Secret values to mask in logged argv and captured output.
        env: Extra environment variables layered over ``os.environ``.
    """

    def __init__(
        self,
        cwd: Path,
        stage: str = "",
        secrets: list[str] | tuple[str, ...] = (),
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.cwd = cwd
        self.stage = stage
        self._secrets = tuple(secrets)
        self._env = dict(env or {})

    def with_secrets(self, stage: str, secrets: list[str] | tuple[str, ...]) -> CommandRunner:
        """Return a runner for *stage* that also masks *secrets*."""
        return CommandRunner(
            self.cwd,
            stage=stage,
            secrets=self._secrets + tuple(secrets),
            env=self._env,
        )

    def run(
        self,
        command: list[str],
        timeout: int | None = None,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        """Run *command* to completion and capture its output.

        Args:
            command: Argument vector; never passed through a shell.
            timeout: Seconds before the process is killed.
            cwd: Working directory override.
            env: Extra environment variables for this call only.

        Returns:
            CommandResult with masked command, stdout and stderr.
        """
        full_env = {**os.environ, **self._env, **(env or {})}
        start = time.monotonic()
        timed_out = False
        try:
            completed = subprocess.run(
                command,
                cwd=str(cwd or self.cwd),
                env=full_env,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=timeout,
                check=False,
            )
            exit_code = completed.returncode
            stdout = completed.stdout or ""
            stderr = completed.stderr or ""
        except subprocess.TimeoutExpired as exc:
            timed_out = True
            exit_code = -1
            stdout = _decode(exc.stdout)
            stderr = _decode(exc.stderr) + f"\nTimed out after {timeout}s"
        except FileNotFoundError:
            exit_code = 127
            stdout = ""
            stderr = f"{command[0]}: command not found"

        result = CommandResult(
            command=redact_command(command, self._secrets),
            exit_code=exit_code,
            stdout=redact(stdout, self._secrets),
            stderr=redact(stderr, self._secrets),
            duration_seconds=time.monotonic() - start,
            timed_out=timed_out,
        )
        log_command(self.stage, result)
        return result


def _decode(data: bytes | str | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


def format_command(command: list[str], **values: object) -> list[str]:
    """Fill ``{placeholder}`` fields in each argument of a configured command."""
    return [arg.format(**values) if "{" in arg else arg for arg in command]
