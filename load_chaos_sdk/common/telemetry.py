"""
OpenTelemetry metrics export for run observations.

When enabled, every observation recorded by the metrics aggregator is mirrored
to an OTLP collector so that runs can be watched live in an external backend.
Without setup, all functions here are no-ops.
"""

import os
import re
import threading
from typing import Dict, Optional, Tuple

from opentelemetry import metrics
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.metrics.view import View, ExplicitBucketHistogramAggregation
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.sdk.resources import Resource

from load_chaos_sdk.common.logger import get_logger

logger = get_logger(__name__)

# Global providers
_meter_provider: Optional[MeterProvider] = None
_meter: Optional[metrics.Meter] = None

_instruments: Dict[Tuple[str, str], object] = {}
_instruments_lock = threading.Lock()
_error_code_counter: Optional[metrics.Counter] = None

# Latency buckets in milliseconds
LATENCY_BUCKETS_MS = [5, 10, 25, 50, 100, 200, 500, 1000, 2000, 5000, 10000, 30000]

# OTel instrument names allow letters, digits and _./-
_INVALID_NAME_CHARS = re.compile(r"[^A-Za-z0-9_./-]+")


def setup_telemetry(
    service_name: str = "load-chaos",
    otlp_endpoint: str = "http://localhost:4317",
    export_interval_millis: int = 5000,
) -> bool:
    """
    Setup OpenTelemetry metrics with an OTLP exporter.

    Args:
        service_name: Name reported as ``service.name``.
        otlp_endpoint: OTLP gRPC endpoint URL (overridden by
            OTEL_EXPORTER_OTLP_ENDPOINT).
        export_interval_millis: Export period.

    Returns:
        True if telemetry was initialized, False otherwise.
    """
    global _meter_provider, _meter, _error_code_counter

    try:
        endpoint_from_env = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
        if endpoint_from_env:
            otlp_endpoint = endpoint_from_env
            logger.info(f"Using OTLP endpoint from env OTEL_EXPORTER_OTLP_ENDPOINT={otlp_endpoint}")

        resource = Resource.create({
            "service.name": service_name,
            "service.version": "0.1.0",
        })

        exporter = OTLPMetricExporter(endpoint=otlp_endpoint, insecure=True)
        reader = PeriodicExportingMetricReader(exporter, export_interval_millis=export_interval_millis)
        views = [
            View(
                instrument_name="*_duration",
                aggregation=ExplicitBucketHistogramAggregation(boundaries=LATENCY_BUCKETS_MS),
            )
        ]
        _meter_provider = MeterProvider(resource=resource, metric_readers=[reader], views=views)
        metrics.set_meter_provider(_meter_provider)
        _meter = metrics.get_meter(__name__)

        _error_code_counter = _meter.create_counter(
            name="load_chaos_error_codes_total",
            description="Total number of harness errors by code",
            unit="1",
        )
        logger.info(f"OpenTelemetry metrics initialized for '{service_name}' -> {otlp_endpoint}")
        return True

    except Exception as e:
        logger.error(f"Failed to setup OpenTelemetry: {e}", exc_info=True)
        _meter_provider = None
        _meter = None
        return False


def telemetry_enabled() -> bool:
    """Return True once setup_telemetry() succeeded."""
    return _meter is not None


def _instrument(name: str, kind: str):
    name = _INVALID_NAME_CHARS.sub("_", name).strip("_")
    key = (name, kind)
    with _instruments_lock:
        instrument = _instruments.get(key)
        if instrument is None:
            if kind == "trend":
                instrument = _meter.create_histogram(name=name, unit="ms")
            else:
                instrument = _meter.create_counter(name=name, unit="1")
            _instruments[key] = instrument
        return instrument


def record_observation(name: str, kind: str, value: float) -> None:
    """
    Mirror one observation to OpenTelemetry.

    Counters add ``value``, rates add 1 with a ``passed`` attribute and
    trends are recorded into a histogram.
    """
    if _meter is None:
        return
    instrument = _instrument(name, kind)
    if kind == "trend":
        instrument.record(value)
    elif kind == "rate":
        instrument.add(1, {"passed": bool(value)})
    else:
        instrument.add(value)


def record_error_code(error_code: str, component: Optional[str] = None) -> None:
    """
    Record a structured error code for observability.
    """
    if _error_code_counter is None:
        return
    attrs = {"error_code": error_code}
    if component:
        attrs["component"] = component
    _error_code_counter.add(1, attrs)


def shutdown_telemetry() -> None:
    """Flush and shut down the meter provider, if any."""
    global _meter_provider, _meter, _error_code_counter
    if _meter_provider is not None:
        try:
            _meter_provider.shutdown()
        except Exception as e:
            logger.warning(f"OpenTelemetry shutdown failed: {e}")
    _meter_provider = None
    _meter = None
    _error_code_counter = None
    with _instruments_lock:
        _instruments.clear()
