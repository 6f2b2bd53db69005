"""Rich output formatting for the feed-engine CLI.

All functions write to a :class:`rich.console.Console` instance (typically
bound to *stderr*) so that machine-readable output on *stdout* is never
polluted with human-readable decoration.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

if TYPE_CHECKING:
    from datetime import datetime

    from feed_engine.models.execution import ExecutionSnapshot
    from feed_engine.models.history import ExecutionDetail, ExecutionStats, ExecutionSummary, StageStats
    from feed_engine.pipeline.registry import PipelineRegistry


# ---------------------------------------------------------------------------
# Status colour mapping
# ---------------------------------------------------------------------------

_STATUS_COLOURS: dict[str, str] = {
    "SUCCESS": "green",
    "FAILED": "red",
    "IN_PROGRESS": "yellow",
    "PENDING": "dim",
}

_LEVEL_COLOURS: dict[str, str] = {
    "ERROR": "red",
    "WARN": "yellow",
    "INFO": "white",
}


def _coloured(value: str, colours: dict[str, str]) -> str:
    colour = colours.get(value, "white")
    return f"[{colour}]{value}[/{colour}]"


def _coloured_status(status: str) -> str:
    """Return a Rich markup string with the status colour-coded."""
    return _coloured(status, _STATUS_COLOURS)


def _fmt_time(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value is not None else "-"


def _fmt_millis(value: float | int | None) -> str:
    return f"{value:,.0f}ms" if value is not None else "-"


# ---------------------------------------------------------------------------
# Live run result
# ---------------------------------------------------------------------------


def display_execution_snapshot(console: Console, snapshot: ExecutionSnapshot, show_logs: bool = False) -> None:
    """Render the outcome of a run with a per-stage table.

    Parameters
    ----------
    console:
        Rich console to write to (typically stderr).
    snapshot:
        The finished run.
    show_logs:
        Also print the execution log stream.
    """
    header_lines = [
        f"[bold]Job:[/bold]        {snapshot.job_id if snapshot.job_id is not None else '-'}",
        f"[bold]Execution:[/bold]  {snapshot.execution_id if snapshot.execution_id is not None else '(not saved)'}",
        f"[bold]Status:[/bold]     {_coloured_status(snapshot.status.value)}",
        f"[bold]Duration:[/bold]   {_fmt_millis(snapshot.duration_millis)}",
        f"[bold]Progress:[/bold]   {snapshot.completion_percentage:.0f}% "
        f"({snapshot.successful_stages + snapshot.failed_stages}/{snapshot.total_stages} stages)",
    ]
    if snapshot.error:
        header_lines.append(f"[bold]Error:[/bold]      [red]{snapshot.error}[/red]")
    border = "green" if snapshot.status.value == "SUCCESS" else "red"
    console.print(Panel("\n".join(header_lines), title="Feed Execution", border_style=border))

    table = Table(title="Stages", show_lines=False, pad_edge=True, expand=False)
    table.add_column("#", justify="right")
    table.add_column("Stage", style="bold")
    table.add_column("Status")
    table.add_column("Duration", justify="right")
    table.add_column("Error")
    for order, stage in enumerate(snapshot.stages, start=1):
        table.add_row(
            str(order),
            stage.name,
            _coloured_status(stage.status.value),
            _fmt_millis(stage.duration_millis) if stage.end_time else "-",
            stage.error or "",
        )
    console.print(table)

    if show_logs:
        for line in snapshot.logs:
            console.print(line, markup=False, highlight=False)


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------


def display_history(console: Console, executions: list[ExecutionSummary]) -> None:
    if not executions:
        console.print("[dim]No executions found.[/dim]")
        return

    table = Table(title="Execution History", show_lines=False, pad_edge=True, expand=False)
    table.add_column("ID", justify="right", style="bold")
    table.add_column("Status")
    table.add_column("Started")
    table.add_column("Duration", justify="right")
    table.add_column("Parameters")
    table.add_column("Error")
    for ex in executions:
        table.add_row(
            str(ex.id),
            _coloured_status(ex.status.value),
            _fmt_time(ex.start_time),
            _fmt_millis(ex.duration_millis),
            ex.parameters or "",
            ex.error or "",
        )
    console.print(table)


def display_execution_detail(console: Console, detail: ExecutionDetail) -> None:
    """Render one persisted execution with its stages and log trail."""
    ex = detail.execution
    header_lines = [
        f"[bold]Execution:[/bold]  {ex.id}",
        f"[bold]Job:[/bold]        {ex.job_id}",
        f"[bold]Status:[/bold]     {_coloured_status(ex.status.value)}",
        f"[bold]Started:[/bold]    {_fmt_time(ex.start_time)}",
        f"[bold]Ended:[/bold]      {_fmt_time(ex.end_time)}",
        f"[bold]Duration:[/bold]   {_fmt_millis(ex.duration_millis)}",
        f"[bold]Parameters:[/bold] {ex.parameters or '(none)'}",
    ]
    if ex.error:
        header_lines.append(f"[bold]Error:[/bold]      [red]{ex.error}[/red]")
    console.print(Panel("\n".join(header_lines), title="Execution Detail", border_style="blue"))

    table = Table(title="Stages", show_lines=False, pad_edge=True, expand=False)
    table.add_column("#", justify="right")
    table.add_column("Stage", style="bold")
    table.add_column("Status")
    table.add_column("Duration", justify="right")
    table.add_column("Parameters")
    table.add_column("Error")
    for stage in detail.stages:
        table.add_row(
            str(stage.stage_order),
            stage.name,
            _coloured_status(stage.status.value),
            _fmt_millis(stage.duration_millis),
            stage.parameters or "",
            stage.error or "",
        )
    console.print(table)

    stage_names = {stage.id: stage.name for stage in detail.stages}
    log_table = Table(title="Logs", show_lines=False, pad_edge=True, expand=False)
    log_table.add_column("Time")
    log_table.add_column("Level")
    log_table.add_column("Stage")
    log_table.add_column("Message")
    for log in detail.logs:
        log_table.add_row(
            log.timestamp.strftime("%H:%M:%S"),
            _coloured(log.log_level.value, _LEVEL_COLOURS),
            stage_names.get(log.stage_id, "") if log.stage_id is not None else "",
            log.message,
        )
    console.print(log_table)


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------


def display_stats(console: Console, stats: ExecutionStats, stage_stats: list[StageStats]) -> None:
    lines = [
        f"[bold]Total:[/bold]        {stats.total}",
        f"[bold]Successful:[/bold]   [green]{stats.successful}[/green]",
        f"[bold]Failed:[/bold]       [red]{stats.failed}[/red]",
        f"[bold]Success rate:[/bold] {stats.success_rate:.1f}%",
        f"[bold]Avg duration:[/bold] {_fmt_millis(stats.average_duration_millis)}",
    ]
    console.print(Panel("\n".join(lines), title=f"Job {stats.job_id} Statistics", border_style="blue"))

    if not stage_stats:
        return
    table = Table(title="Stages", show_lines=False, pad_edge=True, expand=False)
    table.add_column("Stage", style="bold")
    table.add_column("Runs", justify="right")
    table.add_column("Failures", justify="right")
    table.add_column("Avg Duration", justify="right")
    for row in stage_stats:
        table.add_row(
            row.name,
            str(row.runs),
            str(row.failures),
            _fmt_millis(row.average_duration_millis),
        )
    console.print(table)


def display_pipelines(console: Console, registry: PipelineRegistry) -> None:
    jobs_by_pipeline: dict[str, list[int]] = {}
    for job_id, name in sorted(registry.jobs.items()):
        jobs_by_pipeline.setdefault(name, []).append(job_id)

    table = Table(title="Pipelines", show_lines=False, pad_edge=True, expand=False)
    table.add_column("Pipeline", style="bold")
    table.add_column("Stages")
    table.add_column("Jobs")
    for definition in registry.pipelines:
        stages = definition.build()
        table.add_row(
            definition.name,
            " → ".join(stage.name for stage in stages),
            ", ".join(str(j) for j in jobs_by_pipeline.get(definition.name, [])) or "-",
        )
    console.print(table)
