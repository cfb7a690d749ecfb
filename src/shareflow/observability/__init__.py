"""
Observability for shareflow: Prometheus metrics and structured logging.
"""

from shareflow.observability.metrics import MetricsRegistry, get_metrics_registry
from shareflow.observability.structured_logging import (
    StructuredFormatter,
    add_correlation_id,
    get_correlation_id,
)

__all__ = [
    "MetricsRegistry",
    "get_metrics_registry",
    "StructuredFormatter",
    "add_correlation_id",
    "get_correlation_id",
]
