"""
shareflow expand / shareflow work - run a pipeline stage.

Each command runs one consumer loop until SIGINT or SIGTERM. Scale out by
starting more processes.
"""

import asyncio

import typer

from shareflow.cli.common import load_cli_config
from shareflow.config.loader import Config
from shareflow.exceptions import ShareflowError
from shareflow.factory import (
    build_catalog,
    build_expansion_stage,
    build_metrics,
    build_providers,
    build_queue_backend,
    build_storage,
    build_worker,
)
from shareflow.observability.metrics import MetricsRegistry
from shareflow.utils.logging import get_logger

logger = get_logger("shareflow.cli.run")


def _start_metrics(config: Config) -> MetricsRegistry | None:
    metrics = build_metrics(config)
    if metrics is not None and config.get("metrics.port"):
        metrics.start_http_server(port=int(config.get("metrics.port")))
    return metrics


async def run_expansion(config: Config, *, once: bool = False) -> None:
    metrics = _start_metrics(config)
    backend = build_queue_backend(config)
    async with backend, build_providers(config) as providers:
        stage = build_expansion_stage(config, backend, providers, metrics)
        if once:
            await stage.on_start()
            await stage.run_once()
            return
        stage.install_signal_handlers()
        await stage.run()


async def run_worker(config: Config, *, once: bool = False) -> None:
    metrics = _start_metrics(config)
    backend = build_queue_backend(config)
    storage = build_storage(config)
    catalog = build_catalog(config)
    try:
        async with backend, build_providers(config) as providers:
            worker = build_worker(config, backend, providers, storage, catalog, metrics)
            if once:
                await worker.on_start()
                await worker.run_once()
                return
            worker.install_signal_handlers()
            await worker.run()
    finally:
        catalog.close()
        storage.close()


def _run(coro) -> None:
    try:
        asyncio.run(coro)
    except ShareflowError as e:
        logger.error(str(e))
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e


def expand(
    ctx: typer.Context,
    once: bool = typer.Option(False, "--once", help="Handle at most one folder job, then exit"),
) -> None:
    """Run the folder expansion stage."""
    config = load_cli_config(ctx)
    logger.info(f"Expanding folder jobs from '{config.get('queues.jobs')}' into '{config.get('queues.tasks')}'")
    _run(run_expansion(config, once=once))


def work(
    ctx: typer.Context,
    once: bool = typer.Option(False, "--once", help="Handle at most one file task, then exit"),
) -> None:
    """Run one file processing worker."""
    config = load_cli_config(ctx)
    logger.info(f"Processing file tasks from '{config.get('queues.tasks')}'")
    _run(run_worker(config, once=once))
