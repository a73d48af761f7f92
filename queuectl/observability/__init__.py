"""
Observability module.
Contains logging, metrics, and tracing setup.
"""

from queuectl.observability.logging import setup_logging
from queuectl.observability.metrics import (
    MetricsCollector,
    get_metrics,
    setup_metrics,
)
from queuectl.observability.tracing import get_tracer, instrument_sqlalchemy, setup_tracing

__all__ = [
    "setup_logging",
    "setup_metrics",
    "get_metrics",
    "MetricsCollector",
    "setup_tracing",
    "instrument_sqlalchemy",
    "get_tracer",
]
