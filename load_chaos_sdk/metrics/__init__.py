"""Metrics aggregation and threshold evaluation."""

from load_chaos_sdk.metrics.aggregator import Metric, MetricKind, MetricsAggregator, percentile
from load_chaos_sdk.metrics.thresholds import (
    Threshold,
    ThresholdResult,
    Verdict,
    evaluate_thresholds,
    parse_threshold,
    parse_thresholds,
)

__all__ = [
    "Metric",
    "MetricKind",
    "MetricsAggregator",
    "percentile",
    "Threshold",
    "ThresholdResult",
    "Verdict",
    "evaluate_thresholds",
    "parse_threshold",
    "parse_thresholds",
]
