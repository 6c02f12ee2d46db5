"""
Unit tests for the logging and telemetry helpers.
"""

import json
import logging

import pytest
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import InMemoryMetricReader

from load_chaos_sdk.common import telemetry
from load_chaos_sdk.common.errors import ErrorCode, PlanError
from load_chaos_sdk.common.logger import StructuredLogger, setup_logging


@pytest.fixture
def sdk_logger():
    """The package logger, restored after the test."""
    root = logging.getLogger("load_chaos_sdk")
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def in_memory_meter(monkeypatch):
    """Route telemetry to an in-memory reader."""
    reader = InMemoryMetricReader()
    provider = MeterProvider(metric_readers=[reader])
    meter = provider.get_meter("tests")
    monkeypatch.setattr(telemetry, "_meter", meter)
    monkeypatch.setattr(
        telemetry, "_error_code_counter", meter.create_counter("load_chaos_error_codes_total")
    )
    telemetry._instruments.clear()
    yield reader
    telemetry._instruments.clear()
    provider.shutdown()


def _metrics_by_name(reader):
    data = reader.get_metrics_data()
    found = {}
    for resource_metrics in data.resource_metrics:
        for scope_metrics in resource_metrics.scope_metrics:
            for metric in scope_metrics.metrics:
                found[metric.name] = metric
    return found


def test_structured_logger_emits_json(caplog):
    """Test StructuredLogger writes one JSON document per event."""
    events = StructuredLogger("load_chaos_sdk.events")
    with caplog.at_level(logging.INFO, logger="load_chaos_sdk.events"):
        events.info("chaos_transition", previous="idle", current="active")

    payload = json.loads(caplog.records[-1].getMessage())
    assert payload["message"] == "chaos_transition"
    assert payload["previous"] == "idle"
    assert payload["current"] == "active"
    assert "timestamp" in payload


def test_setup_logging_uses_env_level(sdk_logger, monkeypatch):
    """Test setup_logging falls back to LOAD_CHAOS_LOG_LEVEL."""
    monkeypatch.setenv("LOAD_CHAOS_LOG_LEVEL", "debug")
    setup_logging()

    assert sdk_logger.level == logging.DEBUG
    assert len(sdk_logger.handlers) == 1


def test_setup_logging_writes_file(sdk_logger, tmp_path):
    """Test setup_logging adds a file handler and creates parent directories."""
    log_file = tmp_path / "logs" / "run.log"
    setup_logging("WARNING", str(log_file))
    logging.getLogger("load_chaos_sdk.unit").warning("disk check")
    for handler in sdk_logger.handlers:
        handler.flush()

    assert sdk_logger.level == logging.WARNING
    assert "disk check" in log_file.read_text(encoding="utf-8")


def test_setup_logging_unknown_level_defaults_to_info(sdk_logger):
    """Test an unknown level name falls back to INFO."""
    setup_logging("chatty")
    assert sdk_logger.level == logging.INFO


def test_telemetry_is_noop_without_setup(monkeypatch):
    """Test recording functions do nothing before setup."""
    monkeypatch.setattr(telemetry, "_meter", None)
    monkeypatch.setattr(telemetry, "_error_code_counter", None)

    assert not telemetry.telemetry_enabled()
    telemetry.record_observation("http_reqs", "counter", 1)
    telemetry.record_error_code(ErrorCode.TRANSPORT_ERROR)


def test_record_observation_by_kind(in_memory_meter):
    """Test counters, rates and trends map onto OpenTelemetry instruments."""
    telemetry.record_observation("http_reqs", "counter", 2)
    telemetry.record_observation("http_req_failed", "rate", True)
    telemetry.record_observation("http_req_failed", "rate", False)
    telemetry.record_observation("http_req_duration{get posts}", "trend", 120.0)

    found = _metrics_by_name(in_memory_meter)
    assert found["http_reqs"].data.data_points[0].value == 2
    rate_points = found["http_req_failed"].data.data_points
    assert sorted(p.attributes["passed"] for p in rate_points) == [False, True]
    assert found["http_req_duration_get_posts"].data.data_points[0].count == 1


def test_record_error_code(in_memory_meter):
    """Test error codes are counted with their component."""
    telemetry.record_error_code(ErrorCode.STREAM_ERROR, component="stream_session")

    points = _metrics_by_name(in_memory_meter)["load_chaos_error_codes_total"].data.data_points
    assert points[0].attributes == {"error_code": "LC-STREAM", "component": "stream_session"}
    assert points[0].value == 1


def test_plan_error_is_value_error():
    """Test PlanError can be handled as a ValueError."""
    with pytest.raises(ValueError):
        raise PlanError("no stages")
