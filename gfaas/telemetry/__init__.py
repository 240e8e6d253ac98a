"""
OpenTelemetry Integration Module

Provides distributed tracing and metrics collection for job execution:
- tracer: spans around each local or remote job
- metrics: job counters and latency histograms
"""

from .tracer import setup_tracer, create_span, record_error
from .metrics import setup_metrics, increment_counter, record_latency, record_job

__all__ = [
    "setup_tracer",
    "create_span",
    "record_error",
    "setup_metrics",
    "increment_counter",
    "record_latency",
    "record_job",
]
