"""feed-engine CLI application.

Provides commands to run a job's pipeline and to inspect, summarise and
purge execution history.  Human-readable output goes to *stderr* via Rich;
``--json`` writes machine-readable results to *stdout*.

Exit codes: 0 success, 1 the run finished ``FAILED``, 2 not found,
3 invalid input or storage failure.
"""

from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import typer
from rich.console import Console
from sqlalchemy.ext.asyncio import AsyncEngine

from feed_engine.cli.display import (
    display_execution_detail,
    display_execution_snapshot,
    display_history,
    display_pipelines,
    display_stats,
)
from feed_engine.config import Settings, load_settings
from feed_engine.exceptions import (
    ExecutionNotFoundError,
    InvalidQueryError,
    JobNotFoundError,
    PersistenceError,
)
from feed_engine.logging_config import configure_logging
from feed_engine.models.execution import ExecutionStatus
from feed_engine.pipeline.registry import PipelineRegistry
from feed_engine.services.execution_service import FeedExecutionService
from feed_engine.services.history_service import HistoryStore, parse_status, parse_timestamp
from feed_engine.services.stats_service import StatsAggregator
from feed_engine.state.database import create_tables, dispose_engine, get_engine

T = TypeVar("T")

# ---------------------------------------------------------------------------
# App & global state
# ---------------------------------------------------------------------------

app = typer.Typer(
    name="feed-engine",
    help="feed-engine - staged feed execution with tracked history",
    no_args_is_help=True,
)
console = Console(stderr=True)

# Mutable global options populated by the Typer callback.
_json_output: bool = False
_settings_overrides: dict[str, Any] = {}


# ---------------------------------------------------------------------------
# Callback -- global options
# ---------------------------------------------------------------------------


@app.callback()
def _global_options(
    json_mode: bool = typer.Option(
        False,
        "--json/--no-json",
        help="Emit structured JSON to stdout instead of human-readable output.",
    ),
    database_url: str | None = typer.Option(
        None,
        "--database-url",
        help="History database URL (overrides FEED_DATABASE_URL).",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug logging.",
    ),
) -> None:
    """Global options applied to every command."""
    global _json_output, _settings_overrides  # noqa: PLW0603
    _json_output = json_mode
    _settings_overrides = {}
    if database_url is not None:
        _settings_overrides["database_url"] = database_url

    settings = _load_settings()
    configure_logging("DEBUG" if verbose else settings.log_level, settings.structured_logging)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_settings() -> Settings:
    try:
        return load_settings(**_settings_overrides)
    except ValueError as exc:
        console.print(f"[red]Invalid configuration: {exc}[/red]")
        raise typer.Exit(code=3) from exc


def _with_engine(settings: Settings, fn: Callable[[AsyncEngine], Awaitable[T]]) -> T:
    """Run *fn* against a fresh engine with the history tables in place."""

    async def _main() -> T:
        engine = get_engine(
            settings.database_url,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
        )
        try:
            await create_tables(engine)
            return await fn(engine)
        finally:
            await dispose_engine(engine)

    return asyncio.run(_main())


def _emit_json(payload: Any) -> None:
    sys.stdout.write(json.dumps(payload, indent=2, default=str) + "\n")


def _parse_date_option(value: str | None, label: str, *, end_of_day: bool = False) -> Any:
    if value is None:
        return None
    try:
        return parse_timestamp(value, end_of_day=end_of_day)
    except InvalidQueryError as exc:
        console.print(f"[red]Invalid {label} date '{value}': {exc}[/red]")
        raise typer.Exit(code=3) from exc


# ---------------------------------------------------------------------------
# init-db
# ---------------------------------------------------------------------------


@app.command("init-db")
def init_db() -> None:
    """Create the execution history tables."""
    settings = _load_settings()

    async def _noop(_engine: AsyncEngine) -> None:
        return None

    _with_engine(settings, _noop)
    console.print(f"[green]History tables ready at {settings.database_url}[/green]")


# ---------------------------------------------------------------------------
# pipelines
# ---------------------------------------------------------------------------


@app.command()
def pipelines() -> None:
    """List registered pipelines and the jobs mapped to them."""
    settings = _load_settings()
    registry = _build_registry(settings)

    if _json_output:
        _emit_json(
            [
                {
                    "name": d.name,
                    "description": d.description,
                    "stages": [s.name for s in d.build()],
                    "jobs": sorted(j for j, name in registry.jobs.items() if name == d.name),
                }
                for d in registry.pipelines
            ]
        )
    else:
        display_pipelines(console, registry)


def _build_registry(settings: Settings) -> PipelineRegistry:
    try:
        return PipelineRegistry.from_settings(settings)
    except ValueError as exc:
        console.print(f"[red]Invalid job configuration: {exc}[/red]")
        raise typer.Exit(code=3) from exc


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------


@app.command()
def run(
    job_id: int = typer.Argument(..., help="Job to execute."),
    params: str | None = typer.Option(
        None,
        "--params",
        "-p",
        help="Stage parameters: 'k=v,k2=v2' or a JSON object keyed by stage name.",
    ),
    show_logs: bool = typer.Option(False, "--logs", help="Print the execution log stream."),
) -> None:
    """Execute the pipeline for JOB_ID and record its history."""
    settings = _load_settings()
    registry = _build_registry(settings)

    async def _execute(engine: AsyncEngine) -> Any:
        service = FeedExecutionService(HistoryStore(engine), registry, settings)
        return await service.execute(job_id, params)

    try:
        snapshot = _with_engine(settings, _execute)
    except JobNotFoundError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=2) from exc

    if _json_output:
        _emit_json(snapshot.model_dump(mode="json"))
    else:
        display_execution_snapshot(console, snapshot, show_logs=show_logs)

    if snapshot.status is not ExecutionStatus.SUCCESS:
        raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# history
# ---------------------------------------------------------------------------


@app.command()
def history(
    job_id: int = typer.Argument(..., help="Job whose executions to list."),
    status: str | None = typer.Option(None, "--status", help="IN_PROGRESS, SUCCESS or FAILED."),
    start: str | None = typer.Option(None, "--start", help="Earliest start time (YYYY-MM-DD or ISO datetime)."),
    end: str | None = typer.Option(None, "--end", help="Latest start time (YYYY-MM-DD or ISO datetime)."),
    limit: int | None = typer.Option(None, "--limit", min=1, help="Maximum rows to return."),
    offset: int = typer.Option(0, "--offset", min=0, help="Rows to skip (newest first)."),
) -> None:
    """List executions for JOB_ID, newest first."""
    settings = _load_settings()
    try:
        status_filter = parse_status(status) if status is not None else None
    except InvalidQueryError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=3) from exc
    start_dt = _parse_date_option(start, "start")
    end_dt = _parse_date_option(end, "end", end_of_day=True)

    async def _query(engine: AsyncEngine) -> Any:
        return await HistoryStore(engine).list_filtered(
            job_id,
            status=status_filter,
            start=start_dt,
            end=end_dt,
            limit=limit,
            offset=offset,
        )

    try:
        executions = _with_engine(settings, _query)
    except InvalidQueryError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=3) from exc

    if _json_output:
        _emit_json([e.model_dump(mode="json") for e in executions])
    else:
        display_history(console, executions)


# ---------------------------------------------------------------------------
# show
# ---------------------------------------------------------------------------


@app.command()
def show(
    job_id: int = typer.Argument(..., help="Job the execution belongs to."),
    execution_id: int = typer.Argument(..., help="Execution to display."),
) -> None:
    """Show one execution with its stages and logs."""
    settings = _load_settings()

    async def _load(engine: AsyncEngine) -> Any:
        return await HistoryStore(engine).get_details(job_id, execution_id)

    try:
        detail = _with_engine(settings, _load)
    except ExecutionNotFoundError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=2) from exc

    if _json_output:
        _emit_json(detail.model_dump(mode="json"))
    else:
        display_execution_detail(console, detail)


# ---------------------------------------------------------------------------
# stats
# ---------------------------------------------------------------------------


@app.command()
def stats(job_id: int = typer.Argument(..., help="Job to summarise.")) -> None:
    """Show success rate and durations for JOB_ID."""
    settings = _load_settings()

    async def _collect(engine: AsyncEngine) -> Any:
        aggregator = StatsAggregator(engine)
        return await aggregator.stats_for(job_id), await aggregator.stage_stats_for(job_id)

    job_stats, stage_stats = _with_engine(settings, _collect)

    if _json_output:
        payload = job_stats.model_dump(mode="json")
        payload["stages"] = [s.model_dump(mode="json") for s in stage_stats]
        _emit_json(payload)
    else:
        display_stats(console, job_stats, stage_stats)


# ---------------------------------------------------------------------------
# purge
# ---------------------------------------------------------------------------


@app.command()
def purge(
    before: str = typer.Option(..., "--before", help="Delete executions started before this date/time."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Delete executions (with their stages and logs) started before a cutoff."""
    settings = _load_settings()
    cutoff = _parse_date_option(before, "cutoff")

    if not yes and not typer.confirm(f"Delete all executions started before {cutoff.isoformat()}?"):
        console.print("[yellow]Aborted.[/yellow]")
        raise typer.Exit(code=0)

    async def _purge(engine: AsyncEngine) -> int:
        return await HistoryStore(engine).purge_older_than(cutoff)

    try:
        deleted = _with_engine(settings, _purge)
    except PersistenceError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=3) from exc

    if _json_output:
        _emit_json({"deleted": deleted, "cutoff": cutoff.isoformat()})
    else:
        console.print(f"[green]Deleted {deleted} execution(s).[/green]")
