"""
Load test runner - orchestrates one run of a RunPlan.

Lifecycle:
    1. Provision accounts into a TokenPool (setup traffic is not measured)
    2. Build scenarios, status policy and chaos controller from the plan
    3. Enable the stage signal and follow it every ``poll_interval`` seconds,
       starting virtual users or stopping the newest ones
    4. At the end of the profile (or on ``abort()``) stop every user, wait up
       to ``graceful_stop`` seconds for in-flight iterations, cancel the rest
    5. Finalize chaos, evaluate thresholds into a verdict

Example:
    plan = load_run_plan("plans/chaos.yaml")
    result = asyncio.run(LoadTestRunner(plan).run())
    print(result.passed)
"""

import asyncio
import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import httpx

from load_chaos_sdk.chaos.controller import ChaosController, ChaosWindow
from load_chaos_sdk.chaos.factory import DisruptionFactory
from load_chaos_sdk.common.errors import PlanError
from load_chaos_sdk.common.logger import StructuredLogger, get_logger
from load_chaos_sdk.metrics.aggregator import VUS, MetricKind, MetricsAggregator
from load_chaos_sdk.metrics.thresholds import Verdict
from load_chaos_sdk.provisioner import build_accounts, provision_accounts
from load_chaos_sdk.runner.virtual_user import ThinkTime, VirtualUser
from load_chaos_sdk.scenarios.base import ScenarioContext, ScenarioDispatcher, StatusPolicy
from load_chaos_sdk.scenarios.factory import ScenarioFactory
from load_chaos_sdk.scheduler import StageScheduler
from load_chaos_sdk.target.client import TargetClient

logger = get_logger(__name__)
events = StructuredLogger("load_chaos_sdk.events.run")


@dataclass
class RunStatus:
    """Live snapshot handed to ``on_tick`` callbacks."""
    elapsed: float
    total_duration: float
    stage_index: Optional[int]
    desired_vus: int
    active_vus: int
    iterations: int
    chaos_state: Optional[str] = None


@dataclass
class RunResult:
    """Everything a reporter needs about a finished run."""
    plan_name: str
    profile: str
    verdict: Verdict
    aggregates: Dict[str, Dict[str, Any]]
    checks: Dict[str, Dict[str, int]]
    started_at: str
    finished_at: str
    duration_seconds: float
    tokens: int
    accounts: int
    peak_vus: int
    iterations: int
    aborted: bool = False
    chaos: Optional[Dict[str, Any]] = None
    stragglers: int = 0
    thresholds: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return self.verdict.passed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plan": self.plan_name,
            "profile": self.profile,
            "passed": self.passed,
            "aborted": self.aborted,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "duration_seconds": round(self.duration_seconds, 3),
            "setup": {"accounts": self.accounts, "tokens": self.tokens},
            "peak_vus": self.peak_vus,
            "iterations": self.iterations,
            "stragglers_cancelled": self.stragglers,
            "verdict": self.verdict.to_dict(),
            "metrics": self.aggregates,
            "checks": self.checks,
            "chaos": self.chaos,
        }


def build_policy(plan) -> StatusPolicy:
    """Profile-level status classification from the plan."""
    return StatusPolicy(
        expected=frozenset({200}),
        backpressure=frozenset(plan.profile.backpressure_statuses),
        accept_backpressure=plan.profile.accept_backpressure,
        exhaustion=frozenset(plan.profile.exhaustion_statuses),
    )


def build_scenarios(plan) -> list:
    """
    Instantiate the plan's enabled scenarios.

    Raises:
        PlanError: If a scenario type is unknown or cannot be built.
    """
    scenarios = []
    for config in plan.enabled_scenarios():
        scenario = ScenarioFactory.create(config)
        if scenario is None:
            raise PlanError(
                f"Cannot build scenario '{config.name}' of type '{config.type}'. "
                f"Available types: {', '.join(sorted(ScenarioFactory.get_available_types()))}"
            )
        scenarios.append(scenario)
    return scenarios


def build_chaos(plan, aggregator, client, rng: random.Random, health_probe=None) -> Optional[ChaosController]:
    """
    Build the chaos controller, or None when chaos is disabled.

    Raises:
        PlanError: If a disruption type is unknown or cannot be built.
    """
    if not plan.chaos.enabled:
        return None
    strategies = []
    for config in plan.chaos.strategies:
        if not config.enabled:
            continue
        strategy = DisruptionFactory.create(config)
        if strategy is None:
            raise PlanError(
                f"Cannot build disruption '{config.name}' of type '{config.type}'. "
                f"Available types: {', '.join(sorted(DisruptionFactory.get_available_types()))}"
            )
        strategies.append(strategy)
    window = ChaosWindow(
        start=plan.chaos.window.start,
        end=plan.chaos.window.end,
        unit=plan.chaos.window.unit,
    )
    return ChaosController(
        strategies=strategies,
        window=window,
        aggregator=aggregator,
        client=client,
        health_probe=health_probe,
        rng=random.Random(rng.random()),
        probe_interval=plan.chaos.probe_interval,
    )


class LoadTestRunner:
    """
    Runs one RunPlan end to end.

    Args:
        plan: Validated RunPlan.
        aggregator: Optional MetricsAggregator (a fresh one by default).
        transport: Optional httpx transport (tests use ``httpx.MockTransport``
            or ``httpx.ASGITransport``).
        health_probe: Optional async callable overriding the chaos health probe.
        on_tick: Optional callback receiving a RunStatus every supervisor tick.
        clock: Monotonic clock in seconds.
    """

    def __init__(
        self,
        plan,
        aggregator: Optional[MetricsAggregator] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        health_probe=None,
        on_tick: Optional[Callable[[RunStatus], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.plan = plan
        self.aggregator = aggregator or MetricsAggregator(clock=clock)
        self.transport = transport
        self.health_probe = health_probe
        self.on_tick = on_tick
        self._clock = clock

        self.scheduler = StageScheduler(plan.stage_list())
        self.rng = random.Random(plan.seed)
        self.think_time = ThinkTime.from_config(plan.think_time)
        self.chaos: Optional[ChaosController] = None

        self._stop = asyncio.Event()
        self._aborted = False
        self._vus: List[VirtualUser] = []
        self._tasks: Dict[int, asyncio.Task] = {}
        self._next_vu_id = 1
        self._iterations = 0
        self._peak_vus = 0
        self._started_at: Optional[float] = None
        self._stragglers = 0

    @property
    def iterations(self) -> int:
        return self._iterations

    @property
    def active_vus(self) -> int:
        return sum(1 for vu in self._vus if not vu.stopping)

    def elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        return self._clock() - self._started_at

    def abort(self) -> None:
        """Stop the run early; in-flight iterations still complete."""
        if not self._stop.is_set():
            logger.warning("Run aborted")
            self._aborted = True
            self._stop.set()

    async def run(self) -> RunResult:
        plan = self.plan
        started_wall = datetime.now(timezone.utc)
        scenarios = build_scenarios(plan)

        async with TargetClient(plan.target, aggregator=self.aggregator, transport=self.transport) as client:
            accounts = build_accounts(
                plan.accounts.count,
                username_prefix=plan.accounts.username_prefix,
                email_prefix=plan.accounts.email_prefix,
                email_domain=plan.accounts.email_domain,
                password=plan.accounts.password,
            )
            client.recording = False
            try:
                token_pool = await provision_accounts(client, accounts, plan.accounts.concurrency)
            finally:
                client.recording = True

            self.chaos = build_chaos(plan, self.aggregator, client, self.rng, self.health_probe)
            context = ScenarioContext(
                client=client,
                policy=build_policy(plan),
                rng=self.rng,
                chaos=self.chaos,
                stream_url=plan.target.stream_url,
                stop_event=self._stop,
            )
            dispatcher = ScenarioDispatcher(scenarios, context)

            self.aggregator.declare(VUS, MetricKind.TREND)
            self.scheduler.mark_ready()
            self.aggregator.start()
            self._started_at = self._clock()
            logger.info(
                f"Run '{plan.name}' started: {len(self.scheduler.stages)} stages, "
                f"{self.scheduler.total_duration:.1f}s, up to {self.scheduler.max_target} VUs, "
                f"{len(token_pool)} tokens"
            )
            events.info("run_started", plan=plan.name, profile=plan.profile.name,
                        duration=self.scheduler.total_duration, tokens=len(token_pool))

            chaos_task = None
            if self.chaos is not None:
                chaos_task = asyncio.create_task(self.chaos.run(self._chaos_progress, self._stop))

            try:
                await self._supervise(dispatcher, token_pool)
            finally:
                self._stop.set()
                await self._drain()
                if chaos_task is not None:
                    await chaos_task
                self.aggregator.finish()

        chaos_summary = None
        if self.chaos is not None:
            self.chaos.finalize()
            chaos_summary = self.chaos.summary()

        verdict = self.aggregator.evaluate(plan.thresholds, plan.missing_sample_policy)
        finished_wall = datetime.now(timezone.utc)
        logger.info(
            f"Run '{plan.name}' finished: {self._iterations} iterations, "
            f"verdict={'PASS' if verdict.passed else 'FAIL'}"
        )
        events.info("run_finished", plan=plan.name, passed=verdict.passed,
                    iterations=self._iterations, aborted=self._aborted)

        return RunResult(
            plan_name=plan.name,
            profile=plan.profile.name,
            verdict=verdict,
            aggregates=self.aggregator.aggregates(),
            checks=self.aggregator.check_results(),
            started_at=started_wall.isoformat(),
            finished_at=finished_wall.isoformat(),
            duration_seconds=self.aggregator.duration_seconds or 0.0,
            tokens=len(token_pool),
            accounts=len(accounts),
            peak_vus=self._peak_vus,
            iterations=self._iterations,
            aborted=self._aborted,
            chaos=chaos_summary,
            stragglers=self._stragglers,
            thresholds=dict(plan.thresholds),
        )

    async def _supervise(self, dispatcher, token_pool) -> None:
        """Follow the stage signal until the profile ends or the run stops."""
        total = self.scheduler.total_duration
        last_stage = None
        while not self._stop.is_set():
            elapsed = self.elapsed()
            if elapsed >= total:
                break

            stage = self.scheduler.stage_index_at(elapsed)
            if stage != last_stage:
                logger.info(f"Stage {stage + 1}/{len(self.scheduler.stages)} at {elapsed:.1f}s")
                last_stage = stage

            desired = self.scheduler.concurrency_at(elapsed)
            self._scale_to(desired, dispatcher, token_pool)
            active = self.active_vus
            self.aggregator.record(VUS, MetricKind.TREND, active)

            if self.on_tick is not None:
                self.on_tick(RunStatus(
                    elapsed=elapsed,
                    total_duration=total,
                    stage_index=stage,
                    desired_vus=desired,
                    active_vus=active,
                    iterations=self._iterations,
                    chaos_state=self.chaos.state.value if self.chaos else None,
                ))

            timeout = min(self.plan.poll_interval, max(total - elapsed, 0.0))
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                pass

    def _scale_to(self, desired: int, dispatcher, token_pool) -> None:
        """Start users up to ``desired``, or stop the newest excess ones."""
        self._reap_finished()
        self._vus = [vu for vu in self._vus if vu.vu_id in self._tasks]
        active = [vu for vu in self._vus if not vu.stopping]

        if len(active) < desired:
            for _ in range(desired - len(active)):
                vu = VirtualUser(
                    vu_id=self._next_vu_id,
                    dispatcher=dispatcher,
                    token_pool=token_pool,
                    aggregator=self.aggregator,
                    think_time=self.think_time,
                    rng=random.Random(self.rng.random()),
                    on_iteration=self._after_iteration,
                )
                self._next_vu_id += 1
                self._vus.append(vu)
                self._tasks[vu.vu_id] = asyncio.create_task(vu.run(), name=f"vu-{vu.vu_id}")
        elif len(active) > desired:
            for vu in active[desired:]:
                vu.stop()

        self._peak_vus = max(self._peak_vus, self.active_vus)

    async def _after_iteration(self) -> None:
        self._iterations += 1
        if self.chaos is not None and not self.chaos.fired:
            await self.chaos.trigger(self._chaos_progress())

    def _chaos_progress(self) -> float:
        return self.chaos.window.progress(
            self.elapsed(), self.scheduler.total_duration, self._iterations
        )

    async def _drain(self) -> None:
        """Stop every user and wait for in-flight iterations."""
        for vu in self._vus:
            vu.stop()
        tasks = [t for t in self._tasks.values() if not t.done()]
        if tasks:
            done, pending = await asyncio.wait(tasks, timeout=self.plan.graceful_stop)
            if pending:
                self._stragglers = len(pending)
                logger.warning(
                    f"{len(pending)} virtual users still busy after {self.plan.graceful_stop}s; cancelling"
                )
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
        self._reap_finished()

    def _reap_finished(self) -> None:
        """Forget finished user tasks, logging any that failed."""
        for vu_id, task in list(self._tasks.items()):
            if not task.done():
                continue
            if not task.cancelled() and task.exception() is not None:
                logger.error(f"Virtual user task {task.get_name()} failed: {task.exception()!r}")
            del self._tasks[vu_id]
