"""
Threshold expressions and run verdicts.

A threshold is a predicate over one aggregate statistic of a metric, written
the way load-testing tools usually write them:

    http_req_duration: ["p(95)<200", "avg<150"]
    http_req_failed:   ["rate<0.1"]
    chaos_events:      ["count>=1"]

Thresholds are evaluated once, at run end. The verdict is the logical AND of
every evaluated threshold.
"""

import operator
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from load_chaos_sdk.common.errors import ErrorCode
from load_chaos_sdk.common.logger import get_logger
from load_chaos_sdk.common.telemetry import record_error_code

logger = get_logger(__name__)

MISSING_FAIL = "fail"
MISSING_SKIP = "skip"

NO_SAMPLES = "no samples"
NOT_APPLICABLE = "not applicable"

_OPERATORS = {
    "<=": operator.le,
    ">=": operator.ge,
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    ">": operator.gt,
}

_EXPRESSION = re.compile(
    r"^\s*(?P<stat>rate|count|passes|fails|avg|min|max|med|p\(\s*\d+(?:\.\d+)?\s*\))"
    r"\s*(?P<op><=|>=|==|!=|<|>)\s*(?P<value>-?\d+(?:\.\d+)?)\s*$"
)


@dataclass(frozen=True)
class Threshold:
    """A parsed threshold expression for one metric."""
    metric: str
    expression: str
    stat: str
    op: str
    value: float

    def check(self, actual: float) -> bool:
        return _OPERATORS[self.op](actual, self.value)


def parse_threshold(metric: str, expression: str) -> Threshold:
    """
    Parse ``expression`` for ``metric``.

    Raises:
        ValueError: If the expression is not understood.
    """
    match = _EXPRESSION.match(expression)
    if not match:
        raise ValueError(f"Invalid threshold expression for '{metric}': {expression!r}")
    stat = match.group("stat").replace(" ", "")
    if stat.startswith("p("):
        pct = float(stat[2:-1])
        if not 0 <= pct <= 100:
            raise ValueError(f"Percentile out of range in {expression!r}")
    return Threshold(
        metric=metric,
        expression=expression.strip(),
        stat=stat,
        op=match.group("op"),
        value=float(match.group("value")),
    )


def parse_thresholds(thresholds: Mapping[str, Iterable[str]]) -> List[Threshold]:
    """Parse a metric -> expressions mapping, preserving declaration order."""
    parsed = []
    for metric, expressions in thresholds.items():
        if isinstance(expressions, str):
            expressions = [expressions]
        for expression in expressions:
            parsed.append(parse_threshold(metric, expression))
    return parsed


@dataclass
class ThresholdResult:
    """Outcome of one threshold."""
    threshold: Threshold
    actual: Optional[float]
    passed: bool
    evaluated: bool
    reason: Optional[str] = None  # why it was not evaluated

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metric": self.threshold.metric,
            "expression": self.threshold.expression,
            "actual": self.actual,
            "passed": self.passed,
            "evaluated": self.evaluated,
            "reason": self.reason,
        }


@dataclass
class Verdict:
    """Overall pass/fail of a run."""
    results: List[ThresholdResult] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(r.passed for r in self.results)

    @property
    def failures(self) -> List[ThresholdResult]:
        return [r for r in self.results if not r.passed]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "thresholds": [r.to_dict() for r in self.results],
        }


def evaluate_thresholds(
    aggregator,
    thresholds: Mapping[str, Iterable[str]],
    missing_policy: str = MISSING_FAIL,
) -> Verdict:
    """
    Evaluate thresholds against an aggregator's final state.

    A metric with no samples has no aggregate. With ``missing_policy="fail"``
    its thresholds fail explicitly; with ``"skip"`` they are reported as not
    evaluated and do not affect the verdict.
    A statistic the metric's kind does not produce (``count`` on a rate,
    ``p(95)`` on a counter) always fails, whatever the policy.
    """
    if missing_policy not in (MISSING_FAIL, MISSING_SKIP):
        raise ValueError(f"Unknown missing-sample policy: {missing_policy!r}")

    duration = aggregator.duration_seconds
    verdict = Verdict()
    for threshold in parse_thresholds(thresholds):
        metric = aggregator.get(threshold.metric)
        if metric is not None and not metric.supports(threshold.stat):
            logger.error(
                f"[{ErrorCode.THRESHOLD_NOT_APPLICABLE}] {threshold.metric} is a "
                f"{metric.kind.value} metric; '{threshold.stat}' does not apply "
                f"({threshold.expression})"
            )
            record_error_code(ErrorCode.THRESHOLD_NOT_APPLICABLE, component="thresholds")
            verdict.results.append(ThresholdResult(
                threshold=threshold, actual=None, passed=False, evaluated=False,
                reason=NOT_APPLICABLE,
            ))
            continue

        actual = metric.value_for(threshold.stat, duration) if metric else None
        if actual is None:
            logger.warning(
                f"[{ErrorCode.THRESHOLD_MISSING}] No samples for threshold "
                f"{threshold.metric}: {threshold.expression} (policy={missing_policy})"
            )
            verdict.results.append(ThresholdResult(
                threshold=threshold,
                actual=None,
                passed=missing_policy == MISSING_SKIP,
                evaluated=False,
                reason=NO_SAMPLES,
            ))
            continue

        passed = threshold.check(actual)
        verdict.results.append(ThresholdResult(
            threshold=threshold, actual=actual, passed=passed, evaluated=True,
        ))
    return verdict
