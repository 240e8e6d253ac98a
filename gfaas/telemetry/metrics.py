"""
OpenTelemetry Metrics Collection

Job counters and latency histograms. Instruments are created lazily against
whatever MeterProvider is installed; without setup_metrics() they are no-ops.
"""

import logging
from typing import Any, Dict, Optional

from opentelemetry import metrics
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader

logger = logging.getLogger(__name__)

METER_NAME = "gfaas"

# Instruments created so far, by name
_counters = {}
_histograms = {}

_DESCRIPTIONS = {
    "gfaas.jobs.submitted": "Jobs handed to an executor",
    "gfaas.jobs.completed": "Jobs that produced an output",
    "gfaas.jobs.failed": "Jobs that ended with an error",
    "gfaas.jobs.latency": "Job duration from submission to result",
    "gfaas.rpc.requests": "JSON-RPC requests sent to the requestor daemon",
    "gfaas.rpc.errors": "Failed JSON-RPC requests",
    "gfaas.rpc.latency": "JSON-RPC round trip time",
}


def setup_metrics(service_name: str, otlp_endpoint: str = "localhost:4317", export_interval_ms: int = 5000):
    """Configure OpenTelemetry metrics collection

    Args:
        service_name: Service name
        otlp_endpoint: OTLP receiver address
        export_interval_ms: Metrics export interval in milliseconds
    """
    reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=otlp_endpoint),
        export_interval_millis=export_interval_ms
    )
    metrics.set_meter_provider(MeterProvider(metric_readers=[reader]))

    logger.info(f"OpenTelemetry metrics configured, service name: {service_name}, OTLP endpoint: {otlp_endpoint}")
    return metrics.get_meter(service_name)


def get_counter(name: str, description: str, unit: str = "1"):
    """Get or create counter"""
    if name not in _counters:
        meter = metrics.get_meter(METER_NAME)
        _counters[name] = meter.create_counter(name=name, description=description, unit=unit)
    return _counters[name]


def get_histogram(name: str, description: str, unit: str = "ms"):
    """Get or create histogram"""
    if name not in _histograms:
        meter = metrics.get_meter(METER_NAME)
        _histograms[name] = meter.create_histogram(name=name, description=description, unit=unit)
    return _histograms[name]


def increment_counter(name: str, amount: int = 1, attributes: Optional[Dict[str, Any]] = None):
    """Increment counter value

    Args:
        name: Counter name
        amount: Amount to increment
        attributes: Attribute labels
    """
    counter = get_counter(name, _DESCRIPTIONS.get(name, name))
    counter.add(amount, attributes or {})


def record_latency(name: str, value_ms: float, attributes: Optional[Dict[str, Any]] = None):
    """Record latency histogram

    Args:
        name: Histogram name
        value_ms: Latency value in milliseconds
        attributes: Attribute labels
    """
    histogram = get_histogram(name, _DESCRIPTIONS.get(name, name))
    histogram.record(value_ms, attributes or {})


def record_job(mode: str, result, elapsed_s: float) -> None:
    """Record the outcome of one job"""
    attributes = {"mode": mode}
    if result.ok:
        increment_counter("gfaas.jobs.completed", 1, attributes)
    else:
        increment_counter("gfaas.jobs.failed", 1, {**attributes, "error_kind": result.error_kind.value})
    record_latency("gfaas.jobs.latency", elapsed_s * 1000, attributes)
