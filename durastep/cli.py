"""Command line interface for inspecting step checkpoints."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import typer

from durastep.config import load_config
from durastep.persistence import StepStatus, get_store

app = typer.Typer(help="CLI for durastep checkpoint stores")

runs_app = typer.Typer(help="Commands for inspecting runs")

app.add_typer(runs_app, name="runs")


@app.callback()
def main(
    database_url: Optional[str] = typer.Option(
        None, "--database-url", help="Override the configured checkpoint database"
    ),
) -> None:
    """durastep CLI entry point."""
    config = load_config()
    logging.basicConfig(level=config.log_level.upper())
    if database_url:
        get_store(database_url=database_url, config=config)


@runs_app.command("list")
def runs_list() -> None:
    """
    List all runs that have checkpoints.

    Shows each run id with its number of completed and pending steps.

    Example:
        durastep runs list
        # Output: onboarding-42    completed=4    pending=0
    """
    store = get_store()
    runs = asyncio.run(store.list_runs())
    if not runs:
        typer.echo("No runs found")
        return
    for run in runs:
        typer.echo(f"{run.run_id}\tcompleted={run.completed}\tpending={run.pending}")


@runs_app.command("show")
def runs_show(run_id: str) -> None:
    """
    Show the checkpoints of a run in step order.

    Example:
        durastep runs show onboarding-42
        # Output: Run onboarding-42: 3 completed, 1 pending
        #         - create-record-0: COMPLETED {"record_id": 7}
        #         - provision-laptop-1: PENDING
    """
    store = get_store()
    steps = asyncio.run(store.list_steps(run_id))
    if not steps:
        typer.echo("Run not found")
        raise typer.Exit(code=1)
    completed = sum(1 for s in steps if s.status == StepStatus.COMPLETED)
    typer.echo(f"Run {run_id}: {completed} completed, {len(steps) - completed} pending")
    for step in steps:
        typer.echo(
            f"- {step.step_key}: {step.status.value}"
            + (f" {step.output}" if step.output is not None else "")
        )


@runs_app.command("pending")
def runs_pending(run_id: str) -> None:
    """
    List steps that were claimed but never committed.

    These are either still running or were interrupted by a crash; the
    store cannot tell the two apart. Re-running the workflow executes them
    again.
    """
    store = get_store()
    steps = asyncio.run(store.list_steps(run_id))
    pending = [s for s in steps if s.status == StepStatus.PENDING]
    if not pending:
        typer.echo("No pending steps")
        return
    for step in pending:
        typer.echo(f"{step.step_key}\tclaimed at {step.created_at}")


@runs_app.command("purge")
def runs_purge(
    run_id: str,
    yes: bool = typer.Option(False, "--yes", help="Confirm deletion"),
) -> None:
    """Delete every checkpoint of a run. A later replay starts from scratch."""
    if not yes:
        typer.secho("Refusing to purge without --yes", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    store = get_store()
    removed = asyncio.run(store.purge_run(run_id))
    typer.echo(f"Removed {removed} checkpoints for {run_id}")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
