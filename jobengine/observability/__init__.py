"""
Observability module.
Contains logging, metrics, and tracing setup.
"""

from jobengine.observability.logging import job_log_context, setup_logging
from jobengine.observability.metrics import (
    MetricsCollector,
    get_metrics,
    setup_metrics,
)
from jobengine.observability.tracing import get_tracer, instrument_sqlalchemy, setup_tracing

__all__ = [
    "setup_logging",
    "job_log_context",
    "setup_metrics",
    "get_metrics",
    "MetricsCollector",
    "setup_tracing",
    "get_tracer",
    "instrument_sqlalchemy",
]
