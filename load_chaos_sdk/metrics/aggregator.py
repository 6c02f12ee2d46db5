"""
Metrics Aggregator - thread-safe accumulation of run observations.

Every component of a run (virtual users, the chaos controller, the runner
itself) records observations into one injected aggregator. At run end the
aggregator computes per-metric aggregates and evaluates thresholds into a
verdict.

Metric kinds:
- counter: samples are summed (``count``) and divided by run time (``rate``)
- rate: samples are booleans; ``rate`` is trues / total
- trend: samples are numbers; supports avg/min/max/med/p(N)
"""

import math
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from load_chaos_sdk.common.logger import get_logger
from load_chaos_sdk.common.telemetry import record_observation

logger = get_logger(__name__)


class MetricKind(str, Enum):
    """Kinds of metrics the aggregator understands."""
    COUNTER = "counter"
    RATE = "rate"
    TREND = "trend"


# Built-in metric names
HTTP_REQS = "http_reqs"
HTTP_REQ_DURATION = "http_req_duration"
HTTP_REQ_FAILED = "http_req_failed"
CHECKS = "checks"
ERRORS = "errors"
ITERATIONS = "iterations"
ITERATION_DURATION = "iteration_duration"
VUS = "vus"
CHAOS_EVENTS = "chaos_events"
CHAOS_REQUESTS = "chaos_requests"
RECOVERY_TIME = "recovery_time"

# Statistics each kind produces; trends also support p(N)
KIND_STATS = {
    MetricKind.COUNTER: ("count", "rate"),
    MetricKind.RATE: ("rate", "passes", "fails"),
    MetricKind.TREND: ("avg", "min", "med", "max", "count"),
}


def labelled(name: str, label: str) -> str:
    """Name of the per-label series of a metric, e.g. ``http_req_duration{get posts}``."""
    return f"{name}{{{label}}}"


def percentile(sorted_values: Sequence[float], pct: float) -> Optional[float]:
    """
    Nearest-rank percentile over an already sorted sequence.

    Returns None for an empty sequence.
    """
    if not sorted_values:
        return None
    if pct <= 0:
        return float(sorted_values[0])
    if pct >= 100:
        return float(sorted_values[-1])
    rank = math.ceil(pct / 100.0 * len(sorted_values))
    return float(sorted_values[max(rank, 1) - 1])


@dataclass
class Metric:
    """A named, append-only series of samples."""
    name: str
    kind: MetricKind
    samples: List[float] = field(default_factory=list)

    def aggregate(self, duration_seconds: Optional[float] = None) -> Optional[Dict[str, float]]:
        """
        Compute this metric's aggregate values.

        Returns None when no samples were recorded.
        """
        if not self.samples:
            return None

        if self.kind == MetricKind.COUNTER:
            total = float(sum(self.samples))
            values = {"count": total}
            if duration_seconds:
                values["rate"] = total / duration_seconds
            return values

        if self.kind == MetricKind.RATE:
            passes = sum(1 for s in self.samples if s)
            total = len(self.samples)
            return {
                "rate": passes / total,
                "passes": float(passes),
                "fails": float(total - passes),
            }

        ordered = sorted(self.samples)
        return {
            "avg": sum(ordered) / len(ordered),
            "min": float(ordered[0]),
            "med": percentile(ordered, 50),
            "max": float(ordered[-1]),
            "p(90)": percentile(ordered, 90),
            "p(95)": percentile(ordered, 95),
            "count": float(len(ordered)),
        }

    def supports(self, stat: str) -> bool:
        """True if ``stat`` is a statistic this metric's kind produces."""
        if stat.startswith("p(") and stat.endswith(")"):
            return self.kind == MetricKind.TREND
        return stat in KIND_STATS[self.kind]

    def value_for(self, stat: str, duration_seconds: Optional[float] = None) -> Optional[float]:
        """
        Resolve a single statistic (``rate``, ``count``, ``avg``, ``p(99)``...).

        Returns None when there are no samples or the statistic does not
        apply to this kind; use ``supports`` to tell the two apart.
        """
        if not self.samples or not self.supports(stat):
            return None
        if stat.startswith("p("):
            return percentile(sorted(self.samples), float(stat[2:-1]))
        aggregate = self.aggregate(duration_seconds)
        if aggregate is None:
            return None
        return aggregate.get(stat)


class MetricsAggregator:
    """
    Thread-safe store of named metrics.

    ``record`` can be called concurrently from any number of asyncio tasks or
    threads; all mutation happens under a single lock.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._lock = threading.Lock()
        self._metrics: Dict[str, Metric] = {}
        self._clock = clock
        self._started_at: Optional[float] = None
        self._finished_at: Optional[float] = None
        self._check_tallies: Dict[str, List[int]] = {}

    def start(self) -> None:
        """Mark the start of the measured run window."""
        with self._lock:
            self._started_at = self._clock()
            self._finished_at = None

    def finish(self) -> None:
        """Mark the end of the measured run window."""
        with self._lock:
            self._finished_at = self._clock()

    @property
    def duration_seconds(self) -> Optional[float]:
        with self._lock:
            if self._started_at is None:
                return None
            end = self._finished_at if self._finished_at is not None else self._clock()
            return max(end - self._started_at, 0.0)

    def declare(self, name: str, kind: MetricKind) -> Metric:
        """Create a metric without samples (no-op if it already exists)."""
        with self._lock:
            return self._get_or_create(name, MetricKind(kind))

    def _get_or_create(self, name: str, kind: MetricKind) -> Metric:
        metric = self._metrics.get(name)
        if metric is None:
            metric = Metric(name=name, kind=kind)
            self._metrics[name] = metric
        elif metric.kind != kind:
            raise ValueError(
                f"Metric '{name}' already registered as {metric.kind.value}, not {kind.value}"
            )
        return metric

    def record(self, name: str, kind: MetricKind, value: Any) -> None:
        """
        Append one sample.

        Rate samples are stored as 1.0/0.0.

        Raises:
            ValueError: If ``name`` was previously recorded with another kind.
        """
        kind = MetricKind(kind)
        sample = (1.0 if value else 0.0) if kind == MetricKind.RATE else float(value)
        with self._lock:
            self._get_or_create(name, kind).samples.append(sample)
        record_observation(name, kind.value, sample)

    def add(self, name: str, value: float = 1.0) -> None:
        """Shortcut for counter samples."""
        self.record(name, MetricKind.COUNTER, value)

    def observe(self, name: str, value: float) -> None:
        """Shortcut for trend samples."""
        self.record(name, MetricKind.TREND, value)

    def mark(self, name: str, passed: bool) -> None:
        """Shortcut for rate samples."""
        self.record(name, MetricKind.RATE, passed)

    def record_outcome(self, outcome) -> None:
        """
        Fold a scenario Outcome into the built-in metrics.

        Checks feed ``checks``, the overall pass/fail feeds ``errors`` (true
        means the iteration failed), timings feed ``http_req_duration`` and its per-label
        series, extra samples are recorded verbatim.
        """
        for check in outcome.checks:
            self.record(CHECKS, MetricKind.RATE, check.passed)
            with self._lock:
                tally = self._check_tallies.setdefault(check.name, [0, 0])
                tally[0 if check.passed else 1] += 1
        self.record(ERRORS, MetricKind.RATE, not outcome.passed)
        for timing in outcome.durations:
            self.record(HTTP_REQ_DURATION, MetricKind.TREND, timing.elapsed_ms)
            if timing.label:
                self.record(labelled(HTTP_REQ_DURATION, timing.label), MetricKind.TREND, timing.elapsed_ms)
        for sample in outcome.samples:
            self.record(sample.name, sample.kind, sample.value)

    def get(self, name: str) -> Optional[Metric]:
        """Return a snapshot copy of a metric, or None."""
        with self._lock:
            metric = self._metrics.get(name)
            if metric is None:
                return None
            return Metric(name=metric.name, kind=metric.kind, samples=list(metric.samples))

    def check_results(self) -> Dict[str, Dict[str, int]]:
        """Per-check pass/fail counts, ordered by check name."""
        with self._lock:
            return {
                name: {"passes": tally[0], "fails": tally[1]}
                for name, tally in sorted(self._check_tallies.items())
            }

    def failed_checks(self) -> List[str]:
        """Names of checks that failed at least once."""
        return [name for name, t in self.check_results().items() if t["fails"]]

    def names(self) -> List[str]:
        with self._lock:
            return sorted(self._metrics)

    def snapshot(self) -> Dict[str, Metric]:
        """Copy of every metric, keyed and ordered by name."""
        with self._lock:
            return {
                name: Metric(name=m.name, kind=m.kind, samples=list(m.samples))
                for name, m in sorted(self._metrics.items())
            }

    def aggregates(self) -> Dict[str, Dict[str, Any]]:
        """
        Deterministic ordered report of every metric.

        Metrics without samples report ``values: None``.
        """
        duration = self.duration_seconds
        report: Dict[str, Dict[str, Any]] = {}
        for name, metric in self.snapshot().items():
            report[name] = {
                "kind": metric.kind.value,
                "samples": len(metric.samples),
                "values": metric.aggregate(duration),
            }
        return report

    def evaluate(self, thresholds: Mapping[str, Iterable[str]], missing_policy: str = "fail"):
        """
        Evaluate thresholds against final aggregates.

        Args:
            thresholds: Metric name -> threshold expressions.
            missing_policy: ``fail`` or ``skip`` for metrics without samples.

        Returns:
            A Verdict.
        """
        from load_chaos_sdk.metrics.thresholds import evaluate_thresholds

        return evaluate_thresholds(self, thresholds, missing_policy=missing_policy)
