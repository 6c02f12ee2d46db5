"""
Scenario model and weighted dispatch.

A scenario is a named, weighted action that a virtual user runs once per
iteration. Each run produces an ``Outcome``: ordered boolean checks, ordered
request timings and optional extra metric samples. Checks never raise; a
scenario that breaks unexpectedly is turned into a single failed check by the
dispatcher.
"""

import asyncio
import dataclasses
import math
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Sequence

from load_chaos_sdk.common.errors import ErrorCode
from load_chaos_sdk.common.logger import get_logger
from load_chaos_sdk.common.telemetry import record_error_code
from load_chaos_sdk.metrics.aggregator import MetricKind

logger = get_logger(__name__)

RESOURCE_EXHAUSTION_EVENTS = "resource_exhaustion_events"
WEIGHT_TOLERANCE = 1e-6


@dataclass(frozen=True)
class Check:
    """A named boolean assertion."""
    name: str
    passed: bool


@dataclass(frozen=True)
class Timing:
    """Elapsed time of one labelled request."""
    label: str
    elapsed_ms: float


@dataclass(frozen=True)
class Sample:
    """An extra metric observation produced by a scenario."""
    name: str
    kind: MetricKind
    value: float


@dataclass
class Outcome:
    """Result of one scenario run."""
    scenario: str = ""
    checks: List[Check] = field(default_factory=list)
    durations: List[Timing] = field(default_factory=list)
    samples: List[Sample] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        """True when every check passed (an outcome with no checks passes)."""
        return all(c.passed for c in self.checks)

    def check(self, name: str, passed: bool) -> bool:
        self.checks.append(Check(name=name, passed=bool(passed)))
        return bool(passed)

    def timing(self, label: str, elapsed_ms: float) -> None:
        self.durations.append(Timing(label=label, elapsed_ms=elapsed_ms))

    def sample(self, name: str, kind: MetricKind, value: float = 1.0) -> None:
        self.samples.append(Sample(name=name, kind=MetricKind(kind), value=value))


@dataclass(frozen=True)
class StatusPolicy:
    """
    Classifies response status codes.

    ``expected`` codes always pass. Backpressure codes (429/503 by default)
    pass only when the run profile accepts them as graceful degradation.
    ``exhaustion`` codes are additionally counted as resource exhaustion
    events whatever the verdict.
    """
    expected: FrozenSet[int] = frozenset({200})
    backpressure: FrozenSet[int] = frozenset({429, 503})
    accept_backpressure: bool = False
    exhaustion: FrozenSet[int] = frozenset({500, 503})

    def accepts(self, status: int) -> bool:
        if status in self.expected:
            return True
        return self.accept_backpressure and status in self.backpressure

    def is_exhaustion(self, status: int) -> bool:
        return status in self.exhaustion

    def with_expected(self, codes: Iterable[int]) -> "StatusPolicy":
        return dataclasses.replace(self, expected=frozenset(codes))


@dataclass
class ScenarioContext:
    """
    Everything a scenario may use while it runs.

    The dispatcher hands each run a copy tagged with the virtual user id and
    iteration number so write payloads can be traced back to their origin.
    """
    client: Any
    policy: StatusPolicy = field(default_factory=StatusPolicy)
    rng: random.Random = field(default_factory=random.Random)
    chaos: Any = None
    stream_url: Optional[str] = None
    stop_event: Optional[asyncio.Event] = None
    vu_id: int = 0
    iteration: int = 0

    def for_iteration(
        self,
        vu_id: int,
        iteration: int,
        rng: Optional[random.Random] = None,
        stop_event: Optional[asyncio.Event] = None,
    ) -> "ScenarioContext":
        return dataclasses.replace(
            self,
            vu_id=vu_id,
            iteration=iteration,
            rng=rng if rng is not None else self.rng,
            stop_event=stop_event if stop_event is not None else self.stop_event,
        )


class Scenario(ABC):
    """
    Abstract base class for scenarios.

    Subclasses implement ``_run_impl()`` and append checks, timings and
    samples to the outcome they are given. Set ``requires_token`` for write
    scenarios: with no token the base class records one failed check and
    makes no network call.
    """

    default_expect: Sequence[int] = (200,)
    requires_token: bool = False

    def __init__(
        self,
        name: str,
        weight: float,
        enabled: bool = True,
        expect: Optional[Sequence[int]] = None,
        budgets_ms: Optional[Dict[str, float]] = None,
        **params: Any,
    ):
        if not 0 < weight <= 1:
            raise ValueError(f"Scenario '{name}' weight must be in (0, 1], got {weight}")
        self.name = name
        self.weight = weight
        self.enabled = enabled
        self.expect = tuple(expect) if expect else tuple(self.default_expect)
        self.budgets_ms = dict(budgets_ms or {})
        self.params = params

    def policy(self, ctx: ScenarioContext) -> StatusPolicy:
        return ctx.policy.with_expected(self.expect)

    async def run(self, ctx: ScenarioContext, token: Optional[str]) -> Outcome:
        outcome = Outcome(scenario=self.name)
        if self.requires_token and not token:
            logger.debug(f"[{ErrorCode.TOKEN_UNAVAILABLE}] {self.name}: no token available")
            outcome.check(f"{self.name} has token", False)
            return outcome
        await self._run_impl(ctx, token, outcome)
        return outcome

    @abstractmethod
    async def _run_impl(self, ctx: ScenarioContext, token: Optional[str], outcome: Outcome) -> None:
        """Perform the scenario's calls and record checks on ``outcome``."""
        pass

    def check_response(
        self,
        outcome: Outcome,
        response,
        policy: Optional[StatusPolicy] = None,
        ctx: Optional[ScenarioContext] = None,
        label: Optional[str] = None,
    ) -> bool:
        """
        Record the standard checks for one response.

        Adds the timing, a ``<label> status ok`` check, a latency budget
        check when one is configured for the label, and a resource exhaustion
        sample for exhaustion status codes. Returns the status check result.
        """
        label = label or response.label
        if policy is None:
            policy = self.policy(ctx)
        if response.completed:
            outcome.timing(label, response.elapsed_ms)
        status_ok = outcome.check(f"{label} status ok", policy.accepts(response.status))
        budget = self.budgets_ms.get(label)
        if budget is not None:
            outcome.check(
                f"{label} response time < {budget:g}ms",
                response.completed and response.elapsed_ms < budget,
            )
        if policy.is_exhaustion(response.status):
            outcome.sample(RESOURCE_EXHAUSTION_EVENTS, MetricKind.COUNTER, 1)
        return status_ok

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r}, weight={self.weight})"


def select_scenario(scenarios: Sequence[Scenario], draw: float):
    """
    Pick the scenario whose cumulative weight interval contains ``draw``.

    Weights partition [0, 1) in declaration order. A draw that lands past the
    accumulated total through floating-point shortfall selects the last
    scenario.

    Raises:
        ValueError: If ``scenarios`` is empty or ``draw`` is outside [0, 1).
    """
    if not scenarios:
        raise ValueError("No scenarios to select from")
    if not 0.0 <= draw < 1.0:
        raise ValueError(f"Draw must be in [0, 1), got {draw}")
    cumulative = 0.0
    for scenario in scenarios:
        cumulative += scenario.weight
        if draw < cumulative:
            return scenario
    return scenarios[-1]


class ScenarioDispatcher:
    """
    Maps a uniform draw to a scenario and runs it.

    Example:
        dispatcher = ScenarioDispatcher(scenarios, context)
        outcome = await dispatcher.dispatch(rng.random(), token, vu_id=3, iteration=10)
    """

    def __init__(self, scenarios: Sequence[Scenario], context: ScenarioContext):
        self.scenarios = [s for s in scenarios if s.enabled]
        if not self.scenarios:
            raise ValueError("At least one enabled scenario is required")
        total = math.fsum(s.weight for s in self.scenarios)
        if abs(total - 1.0) > WEIGHT_TOLERANCE:
            raise ValueError(f"Scenario weights must sum to 1.0 (got {total:.6f})")
        self.context = context

    def select(self, draw: float) -> Scenario:
        return select_scenario(self.scenarios, draw)

    async def dispatch(
        self,
        draw: float,
        token: Optional[str],
        vu_id: int = 0,
        iteration: int = 0,
        rng: Optional[random.Random] = None,
        stop_event: Optional[asyncio.Event] = None,
    ) -> Outcome:
        """
        Run the scenario selected by ``draw``.

        Always returns an Outcome. Any exception escaping the scenario
        (other than cancellation) becomes a failed ``<name> completed`` check.
        """
        scenario = self.select(draw)
        ctx = self.context.for_iteration(vu_id, iteration, rng, stop_event)
        try:
            return await scenario.run(ctx, token)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                f"[{ErrorCode.SCENARIO_CRASHED}] Scenario '{scenario.name}' failed "
                f"(vu={vu_id}, iteration={iteration}): {type(e).__name__}: {e}",
                exc_info=True,
            )
            record_error_code(ErrorCode.SCENARIO_CRASHED, component=scenario.name)
            outcome = Outcome(scenario=scenario.name)
            outcome.check(f"{scenario.name} completed", False)
            return outcome
