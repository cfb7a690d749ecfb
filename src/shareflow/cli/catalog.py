"""
shareflow catalog - inspect ingested files.
"""

import json

import typer
from rich.table import Table

from shareflow.catalog.base import DEFAULT_PAGE_SIZE
from shareflow.cli.common import console, load_cli_config
from shareflow.exceptions import ShareflowError
from shareflow.factory import build_catalog

app = typer.Typer(name="catalog", help="Inspect the metadata catalog")


def _format_size(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{size} B"


@app.command("list")
def list_records(
    ctx: typer.Context,
    source: str | None = typer.Option(None, "--source", "-s", help="Only records from this source"),
    limit: int = typer.Option(DEFAULT_PAGE_SIZE, "--limit", "-n", min=0, help="Maximum records to show"),
    offset: int = typer.Option(0, "--offset", min=0, help="Records to skip"),
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of a table"),
) -> None:
    """List catalog records, newest first."""
    config = load_cli_config(ctx)
    catalog = build_catalog(config)
    try:
        page = catalog.query(source=source, limit=limit, offset=offset)
    except ShareflowError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e
    finally:
        catalog.close()

    if as_json:
        typer.echo(json.dumps({"images": [r.to_dict() for r in page.rows], "total": page.total}, indent=2))
        return

    if not page.rows:
        console.print("[dim]No catalog records found[/dim]")
        return

    table = Table(title=f"Catalog ({len(page.rows)} of {page.total})", show_header=True)
    table.add_column("Name", style="cyan")
    table.add_column("Source", style="green")
    table.add_column("Provider ID", style="dim")
    table.add_column("Size", justify="right")
    table.add_column("MIME", style="yellow")
    table.add_column("Storage", style="magenta")
    table.add_column("Created", style="dim")

    for record in page.rows:
        table.add_row(
            record.name,
            record.source,
            record.provider_id,
            _format_size(record.size),
            record.mime_type,
            record.storage_locator,
            record.created_at.strftime("%Y-%m-%d %H:%M:%S") if record.created_at else "-",
        )

    console.print(table)
