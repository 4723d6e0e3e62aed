"""Rich-based pipeline display with Live layout, status table, and progress bar.

``PipelineDisplay`` implements the ``ProgressCallback`` protocol, providing an
interactive terminal experience during a run.  In non-TTY environments (CI
agents, piped output) it falls back to plain text status lines.

All Rich output is routed through a shared ``Console(stderr=True)`` instance so
stdout remains clean for programmatic consumers.
"""

from __future__ import annotations

from rich.console import Console, Group
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table
from rich.text import Text

from delivery_pipeline.display.callbacks import ProgressCallback

DEFAULT_STAGES = ["build", "security_scan", "test", "quality_gate", "image", "deploy"]

_STATUS_STYLES = {
    "succeeded": "[green]succeeded[/green]",
    "running": "[yellow]running[/yellow]",
    "failed": "[red]failed[/red]",
    "pending": "[dim]pending[/dim]",
    "not run": "[dim]not run[/dim]",
}


class PipelineDisplay(ProgressCallback):
    """Interactive Rich display for pipeline progress.

    When running in a terminal, renders a Live layout with a status table
    (one row per stage) and a progress bar.  In non-interactive
    environments, falls back to plain ``console.print`` calls.

    Args:
        stages: Stage names in execution order.
        console: Optional console; a stderr console is created otherwise.
    """

    def __init__(
        self, stages: list[str] | None = None, console: Console | None = None
    ) -> None:
        self.console = console or Console(stderr=True)
        self._interactive: bool = self.console.is_terminal
        self._order = list(stages or DEFAULT_STAGES)

        self._stages: dict[str, dict] = {}
        for name in self._order:
            self._stages[name] = {
                "name": name,
                "status": "pending",
                "duration": 0.0,
                "message": "",
            }

        self._live = None
        self._progress: Progress | None = None
        self._task = None

    # ------------------------------------------------------------------
    # Rich renderable builders
    # ------------------------------------------------------------------

    def _build_table(self) -> Table:
        table = Table(title="Delivery Stages", expand=True)
        table.add_column("Stage", style="bold")
        table.add_column("Status")
        table.add_column("Duration", justify="right")
        table.add_column("Detail", overflow="fold")

        for name in self._order:
            stage = self._stages[name]
            duration_str = f'{stage["duration"]:.1f}s' if stage["duration"] > 0 else "-"
            table.add_row(
                stage["name"],
                _STATUS_STYLES.get(stage["status"], stage["status"]),
                duration_str,
                stage["message"][:120],
            )
        return table

    def _build_renderable(self):
        panel = Panel(self._build_table(), border_style="blue", title="delivery-pipeline")
        return Group(panel, self._progress)

    # ------------------------------------------------------------------
    # Lifecycle methods
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the Live display (interactive mode only).

        Safe to call multiple times; the Progress instance and task are
        created once.
        """
        if self._progress is None:
            self._progress = Progress(
                SpinnerColumn(spinner_name="dots"),
                TextColumn("{task.description}"),
                BarColumn(),
                TaskProgressColumn(),
                TimeElapsedColumn(),
                console=self.console,
                disable=not self._interactive,
            )
            self._task = self._progress.add_task("Pipeline", total=len(self._order))

        if self._interactive and self._live is None:
            from rich.live import Live

            self._live = Live(
                self._build_renderable(), console=self.console, refresh_per_second=4
            )
            self._live.start()

    def stop(self) -> None:
        """Stop the Live display if active."""
        if self._live is not None:
            self._live.stop()
            self._live = None

    # ------------------------------------------------------------------
    # ProgressCallback implementation
    # ------------------------------------------------------------------

    def _ensure(self, stage: str) -> dict:
        if stage not in self._stages:
            self._order.append(stage)
            self._stages[stage] = {"name": stage, "status": "pending", "duration": 0.0, "message": ""}
        return self._stages[stage]

    def on_stage_start(self, stage: str, depends_on: list[str]) -> None:
        self._ensure(stage)["status"] = "running"
        self._refresh()
        if not self._interactive:
            after = f" after {', '.join(depends_on)}" if depends_on else ""
            self.console.print(f"[{stage}] Starting{after}", markup=False)

    def on_stage_complete(self, stage: str, duration_seconds: float, message: str) -> None:
        row = self._ensure(stage)
        row.update(status="succeeded", duration=duration_seconds, message=message)
        if self._progress is not None and self._task is not None:
            self._progress.advance(self._task, 1)
        self._refresh()
        if not self._interactive:
            self.console.print(
                f"[{stage}] Succeeded ({duration_seconds:.1f}s) {message}", markup=False
            )

    def on_stage_fail(
        self, stage: str, error_class: str, message: str, suggestion: str
    ) -> None:
        row = self._ensure(stage)
        row.update(status="failed", message=f"{error_class}: {message}")
        for name in self._order:
            if self._stages[name]["status"] == "pending":
                self._stages[name]["status"] = "not run"
        self._refresh()
        if not self._interactive:
            self.console.print(f"[{stage}] Failed ({error_class}): {message}", markup=False)

    def on_pipeline_complete(self, run_dir: str, total_seconds: float) -> None:
        self.stop()
        summary = Text.assemble(
            ("All stages succeeded in ", ""),
            (f"{total_seconds:.1f}s", "bold"),
            ("\nRun record: ", ""),
            (run_dir, "bold"),
        )
        self.console.print(Panel(summary, border_style="green", title="Succeeded"))

    def on_pipeline_fail(self, stage: str, error: str) -> None:
        self.stop()
        self.console.print(self._build_table())

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _refresh(self) -> None:
        if self._interactive and self._live is not None:
            self._live.update(self._build_renderable())
