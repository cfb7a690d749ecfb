"""
Logging configuration for shareflow.

Console output goes through rich's RichHandler by default; ``plain`` gives a
compact single-line format for container logs and ``json`` emits one JSON
object per line with the current correlation id.
"""

import logging
import sys
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.logging import RichHandler

ROOT_LOGGER = "shareflow"


class FileFormatter(logging.Formatter):
    """Formatter for file logs - clean and parseable."""

    def __init__(self) -> None:
        super().__init__(fmt="%(asctime)s [%(levelname)-8s] %(name)s: %(message)s", datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        result = super().format(record)

        if record.exc_info and not record.exc_text:
            import traceback

            result += "\n" + "".join(traceback.format_exception(*record.exc_info))

        return result


class PlainFormatter(logging.Formatter):
    """``LEVEL: timestamp - msg``, with file:line added for errors."""

    def __init__(self) -> None:
        super().__init__(datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        prefix = f"{record.levelname}: {self.formatTime(record)}"
        if record.levelno >= logging.ERROR and record.pathname:
            prefix = f"{prefix} - {Path(record.pathname).name}:{record.lineno}"
        result = f"{prefix} - {record.getMessage()}"
        if record.exc_info:
            result += "\n" + self.formatException(record.exc_info)
        return result


LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def _parse_level(level: str | int | None) -> int:
    """
    Parse logging level from string or int.

    Unknown names fall back to INFO.
    """
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        return LEVEL_MAP.get(level.upper(), logging.INFO)
    return logging.INFO


def setup_logging(
    level: str | int = logging.INFO,
    log_file: str | Path | None = None,
    fmt: str = "rich",
    file_mode: str = "a",
    console: Console | None = None,
    console_enabled: bool = True,
) -> logging.Logger:
    """
    Configure the ``shareflow`` logger.

    Args:
        level: Logging level as string (DEBUG, INFO, etc.) or int
        log_file: Optional file path to also write logs to
        fmt: Console format: ``rich``, ``plain`` or ``json``
        file_mode: 'a' to append to log_file, 'w' to overwrite
        console: Optional rich Console for the RichHandler
        console_enabled: Whether to log to the console at all

    Returns:
        The configured ``shareflow`` logger
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.handlers.clear()

    level_int = _parse_level(level)
    logger.setLevel(level_int)

    if console_enabled:
        if fmt == "rich":
            handler: logging.Handler = RichHandler(
                level=level_int,
                console=console or Console(stderr=True),
                show_time=True,
                show_path=False,
                rich_tracebacks=True,
                log_time_format="[%X]",
                omit_repeated_times=False,
            )
        else:
            handler = logging.StreamHandler(sys.stderr)
            handler.setLevel(level_int)
            if fmt == "json":
                from shareflow.observability.structured_logging import StructuredFormatter

                handler.setFormatter(StructuredFormatter())
            else:
                handler.setFormatter(PlainFormatter())
        logger.addHandler(handler)

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode=file_mode)
        # The logger level still filters; the file takes everything that passes.
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(FileFormatter())
        logger.addHandler(file_handler)

    return logger


def setup_logging_from_config(config: dict[str, Any], *, verbose: bool = False) -> logging.Logger:
    """
    Configure logging from the ``logging`` section of the shareflow config.

    Args:
        config: Full configuration dictionary
        verbose: Force DEBUG regardless of the configured level
    """
    logging_config = config.get("logging") or {}

    level = "DEBUG" if verbose else logging_config.get("level", "INFO")
    return setup_logging(
        level=level,
        log_file=logging_config.get("file") or None,
        fmt=logging_config.get("format", "rich"),
        file_mode=logging_config.get("file_mode", "a"),
        console_enabled=logging_config.get("console_enabled", True),
    )


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    """
    Get a logger in the shareflow hierarchy.

    Args:
        name: Logger name (default: "shareflow")
    """
    return logging.getLogger(name)
