"""Rendering helpers for pipeline status and the run report.

Provides status labels and Rich renderables for the stage table, the
dry-run plan and the final run summary printed by the CLI.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from rich.panel import Panel
from rich.table import Table

from release_pipeline.orchestration.orchestrator import (
    PipelineState,
    RunReport,
    Stage,
    StageStatus,
)
from release_pipeline.orchestration.release import PlannedStage

_LABELS = {
    StageStatus.PENDING: "⏳ Waiting",
    StageStatus.RUNNING: "▶️  Running",
    StageStatus.SUCCEEDED: "✅ Done",
    StageStatus.FAILED: "❌ Failed",
}

_OUTCOMES = {
    PipelineState.NOT_STARTED: ("Release not started", "red"),
    PipelineState.TEST_FAILED: ("Tests failed; nothing was tagged or published", "red"),
    PipelineState.TAG_FAILED: ("Tagging failed; nothing was published", "red"),
    PipelineState.PUBLISH_FAILED: ("Publishing stopped; earlier units stay published", "red"),
    PipelineState.COMPLETED: ("Release completed", "green"),
    PipelineState.CANCELLED: ("Release cancelled", "yellow"),
}


def status_label(status: StageStatus | str) -> str:
    """Return the display label for a stage status.

    Examples
    --------
    >>> status_label(StageStatus.SUCCEEDED)
    '✅ Done'
    """
    try:
        return _LABELS[StageStatus(status)]
    except ValueError:
        return str(status)


def _duration(stage: Stage) -> str:
    seconds = stage.duration_seconds
    return "" if seconds is None else f"{seconds:.1f}s"


def _detail(stage: Stage) -> str:
    if stage.error is not None:
        return str(stage.error)
    if stage.result is not None and stage.status is StageStatus.SUCCEEDED:
        value = getattr(stage.result, "value", None)
        return str(value) if isinstance(value, str) else ""
    return ""


def render_stage_table(stages: Iterable[Stage], *, title: str = "Release pipeline") -> Table:
    """Build a table with one row per stage (needs, status, duration, detail)."""
    table = Table(title=title, show_header=True, header_style="bold blue")
    table.add_column("Stage", style="bold")
    table.add_column("Needs")
    table.add_column("Status")
    table.add_column("Duration", justify="right")
    table.add_column("Detail", overflow="fold")
    for stage in stages:
        table.add_row(
            stage.name,
            ", ".join(sorted(stage.needs)) or "-",
            status_label(stage.status),
            _duration(stage),
            _detail(stage),
        )
    return table


def render_plan(planned: Sequence[PlannedStage], *, version: str | None = None) -> Table:
    title = "Release plan" if version is None else f"Release plan for {version}"
    table = Table(title=title, show_header=True, header_style="bold blue")
    table.add_column("#", justify="right")
    table.add_column("Stage", style="bold")
    table.add_column("Needs")
    table.add_column("Timeout", justify="right")
    for index, stage in enumerate(planned, 1):
        table.add_row(
            str(index),
            stage.name,
            ", ".join(stage.needs) or "-",
            f"{stage.timeout:g}s",
        )
    return table


def render_run_summary(report: RunReport) -> Panel:
    """Build a panel naming the run outcome and, on failure, the failed stage.

    Parameters
    ----------
    report : RunReport
        Report returned by the orchestrator or the release runner.

    Returns
    -------
    Panel
        Green on completion, yellow on cancellation, red otherwise.
    """
    message, style = _OUTCOMES.get(report.state, (report.state.value, "red"))
    lines = [message]
    if report.version:
        lines.append(f"Version: {report.version}")
    failed = report.failed_stage
    if failed is not None:
        lines.append(f"Failed stage: {failed.name}")
    if report.error is not None:
        lines.append(f"Error: {report.error}")
    return Panel("\n".join(lines), title="Release", border_style=style)


__all__ = ["render_plan", "render_run_summary", "render_stage_table", "status_label"]
