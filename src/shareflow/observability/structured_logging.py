"""
Structured logging for shareflow.

JSON-formatted logging with correlation IDs, so every line written while a
worker handles one file can be tied back to its job and file.

Usage:
    from shareflow.observability.structured_logging import add_correlation_id

    with add_correlation_id(f"{task.job_id}/{task.file_id}"):
        logger.info("Downloading")  # JSON line carries correlation_id
"""

import json
import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)

# Attributes every LogRecord has; anything else came in through extra=
_RESERVED_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


def get_correlation_id() -> str | None:
    """Get the correlation ID of the current context, if any."""
    return _correlation_id.get()


@contextmanager
def add_correlation_id(correlation_id: str | None = None) -> Iterator[str]:
    """
    Context manager that sets the correlation ID for log records.

    Args:
        correlation_id: Correlation ID (auto-generated if not provided)

    Yields:
        The correlation ID in effect
    """
    cid = correlation_id or str(uuid.uuid4())[:8]
    token = _correlation_id.set(cid)
    try:
        yield cid
    finally:
        _correlation_id.reset(token)


class StructuredFormatter(logging.Formatter):
    """
    JSON log formatter.

    Each line carries timestamp, level, logger, message, the correlation ID
    when set, location, exception info and any ``extra=`` fields.
    """

    def __init__(self, extra_fields: dict[str, Any] | None = None):
        super().__init__()
        self.extra_fields = extra_fields or {}

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        correlation_id = get_correlation_id()
        if correlation_id:
            log_data["correlation_id"] = correlation_id

        log_data["location"] = {
            "file": record.filename,
            "line": record.lineno,
            "function": record.funcName,
        }

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info),
            }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                log_data[key] = value

        log_data.update(self.extra_fields)

        return json.dumps(log_data, default=str)
