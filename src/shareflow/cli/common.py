"""
Helpers shared by the CLI commands.
"""

from dataclasses import dataclass
from pathlib import Path

import typer
from rich.console import Console

from shareflow.config.loader import Config, load_config
from shareflow.exceptions import ConfigurationError
from shareflow.utils.logging import get_logger, setup_logging_from_config

logger = get_logger("shareflow.cli")

console = Console()


@dataclass
class CLIState:
    """Global options captured by the root callback."""

    config_path: Path | None = None
    env: str | None = None
    verbose: bool = False


def get_state(ctx: typer.Context) -> CLIState:
    root = ctx.find_root()
    if not isinstance(root.obj, CLIState):
        root.obj = CLIState()
    return root.obj


def load_cli_config(ctx: typer.Context) -> Config:
    """Load configuration and set up logging, exiting with status 1 on errors."""
    state = get_state(ctx)
    try:
        config = load_config(state.config_path, env=state.env)
    except ConfigurationError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e

    setup_logging_from_config(config.data, verbose=state.verbose)
    if config.source:
        logger.debug(f"Loaded configuration from {config.source}")
    return config
