"""
Main CLI entry point.
"""

from pathlib import Path

import typer

from shareflow import __version__
from shareflow.cli import catalog, failed, run
from shareflow.cli.common import get_state


def version_callback(value: bool):
    """Callback to display version and exit."""
    if value:
        typer.echo(f"shareflow version {__version__}")
        raise typer.Exit()


app = typer.Typer(
    name="shareflow",
    help="shareflow - Queue pipeline that imports shared-folder images into storage and a catalog",
    add_completion=True,
)

app.command("expand")(run.expand)
app.command("work")(run.work)
app.add_typer(catalog.app, name="catalog")
app.add_typer(failed.app, name="failed")


@app.callback(invoke_without_command=True)
def entrypoint(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    config: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        envvar="SHAREFLOW_CONFIG",
        help="Config file or directory holding shareflow.yaml (default: current directory)",
    ),
    env: str | None = typer.Option(None, "--env", "-e", envvar="SHAREFLOW_ENV", help="Environment overlay to apply"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """
    shareflow - Queue pipeline that imports shared-folder images into storage and a catalog.

    Run 'shareflow <command> --help' for help on a specific command.
    """
    state = get_state(ctx)
    state.config_path = config
    state.env = env
    state.verbose = verbose

    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


def main():
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    main()
