"""
shareflow failed - inspect and replay abandoned file tasks.
"""

import asyncio
from datetime import UTC, datetime

import typer
from rich.table import Table

from shareflow.cli.common import console, load_cli_config
from shareflow.config.loader import Config
from shareflow.exceptions import ShareflowError
from shareflow.factory import build_failed_sink, build_queue_backend
from shareflow.retry.sink import FailedTaskEntry

app = typer.Typer(name="failed", help="Inspect and replay abandoned file tasks")


def _require_queue(config: Config) -> None:
    if not config.get("failed_tasks.queue"):
        typer.echo("Error: failed_tasks.queue is not configured; abandoned tasks were only logged", err=True)
        raise typer.Exit(1)


async def _recent(config: Config, limit: int) -> list[FailedTaskEntry]:
    backend = build_queue_backend(config)
    async with backend:
        return await build_failed_sink(config, backend).get_recent(limit)


async def _replay(config: Config, limit: int | None) -> int:
    backend = build_queue_backend(config)
    async with backend:
        sink = build_failed_sink(config, backend)
        return await sink.replay(backend, config.get("queues.tasks"), limit=limit)


@app.command("list")
def list_failed(
    ctx: typer.Context,
    limit: int = typer.Option(20, "--limit", "-n", min=1, help="Maximum entries to show"),
) -> None:
    """Show the most recently abandoned file tasks."""
    config = load_cli_config(ctx)
    _require_queue(config)
    try:
        entries = asyncio.run(_recent(config, limit))
    except ShareflowError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e

    if not entries:
        console.print("[dim]No failed tasks[/dim]")
        return

    table = Table(title=f"Failed tasks ({len(entries)})", show_header=True)
    table.add_column("Failed at", style="dim")
    table.add_column("File", style="cyan")
    table.add_column("Source", style="green")
    table.add_column("Job", style="dim")
    table.add_column("Attempts", justify="right")
    table.add_column("Error", style="red")

    for entry in entries:
        task = entry.task
        table.add_row(
            datetime.fromtimestamp(entry.failed_at, UTC).strftime("%Y-%m-%d %H:%M:%S"),
            f"{task.get('file_name')} ({task.get('file_id')})",
            str(task.get("source")),
            str(task.get("job_id")),
            str(entry.total_attempts),
            f"{entry.exception_type}: {entry.exception_message}",
        )

    console.print(table)


@app.command("replay")
def replay_failed(
    ctx: typer.Context,
    limit: int | None = typer.Option(None, "--limit", "-n", min=1, help="Replay at most this many tasks"),
) -> None:
    """Push abandoned file tasks back onto the task queue, oldest first."""
    config = load_cli_config(ctx)
    _require_queue(config)
    try:
        replayed = asyncio.run(_replay(config, limit))
    except ShareflowError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e

    typer.echo(f"Replayed {replayed} task(s) onto {config.get('queues.tasks')}")
