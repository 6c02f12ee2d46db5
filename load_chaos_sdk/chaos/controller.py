"""
Chaos Controller - one disruption per run, with measured recovery.

The controller is a small state machine shared by every virtual user and the
chaos supervisor task:

    IDLE --try_trigger(progress in window)--> ACTIVE
    ACTIVE --disruption issued--> RECOVERING
    RECOVERING --first healthy report--> IDLE   (records recovery_time)

The disruption fires at most once per run. All transitions go through a
compare-and-set guard, so when several callers race exactly one wins and the
others observe a no-op.
"""

import asyncio
import random
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence

from load_chaos_sdk.common.errors import ErrorCode
from load_chaos_sdk.common.logger import StructuredLogger, get_logger
from load_chaos_sdk.common.telemetry import record_error_code
from load_chaos_sdk.metrics.aggregator import CHAOS_EVENTS, RECOVERY_TIME, MetricKind

logger = get_logger(__name__)
events = StructuredLogger("load_chaos_sdk.events.chaos")

WINDOW_UNITS = ("fraction", "seconds", "iterations")


class ChaosState(Enum):
    """Chaos controller states."""
    IDLE = "idle"
    ACTIVE = "active"          # Disruption being issued
    RECOVERING = "recovering"  # Waiting for a healthy probe


class TransitionGuard:
    """
    Atomic compare-and-set over a ChaosState.

    Example:
        guard = TransitionGuard()
        if guard.compare_and_set(ChaosState.IDLE, ChaosState.ACTIVE):
            ...  # only one caller gets here
    """

    def __init__(self, initial: ChaosState = ChaosState.IDLE):
        self._state = initial
        self._lock = threading.Lock()

    @property
    def state(self) -> ChaosState:
        with self._lock:
            return self._state

    def compare_and_set(self, expected: ChaosState, new: ChaosState) -> bool:
        """Move to ``new`` only if the current state is ``expected``."""
        with self._lock:
            if self._state is not expected:
                return False
            self._state = new
            return True


@dataclass(frozen=True)
class ChaosWindow:
    """
    Half-open ``[start, end)`` interval of run progress in which the
    disruption may fire.

    ``unit`` selects what progress means: ``fraction`` of total run time,
    elapsed ``seconds`` or the global ``iterations`` counter.
    """
    start: float
    end: float
    unit: str = "fraction"

    def __post_init__(self) -> None:
        if self.unit not in WINDOW_UNITS:
            raise ValueError(f"Unknown chaos window unit: {self.unit!r}")
        if self.start < 0 or self.end <= self.start:
            raise ValueError(f"Invalid chaos window [{self.start}, {self.end})")

    def contains(self, progress: float) -> bool:
        return self.start <= progress < self.end

    def progress(self, elapsed: float, total_duration: float, iterations: int) -> float:
        """Express the run's position in this window's unit."""
        if self.unit == "iterations":
            return float(iterations)
        if self.unit == "seconds":
            return elapsed
        return elapsed / total_duration if total_duration > 0 else 0.0


class ChaosController:
    """
    Injects one disruption per run and measures the time to recovery.

    Args:
        strategies: Candidate disruptions; one enabled strategy is chosen
            uniformly at random when the trigger fires.
        window: When the trigger may fire.
        aggregator: MetricsAggregator receiving ``chaos_events`` and
            ``recovery_time``.
        client: TargetClient used by disruptions and the default probe.
        health_probe: Async callable returning True when the target is
            healthy (defaults to ``GET /health == 200``).
        clock: Monotonic clock in seconds.
        rng: Random source for strategy selection.
        probe_interval: Seconds between supervisor ticks.
    """

    def __init__(
        self,
        strategies: Sequence,
        window: ChaosWindow,
        aggregator,
        client=None,
        health_probe: Optional[Callable[[], Awaitable[bool]]] = None,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
        probe_interval: float = 1.0,
    ):
        self.strategies = [s for s in strategies if s.enabled]
        self.window = window
        self.aggregator = aggregator
        self.client = client
        self._health_probe = health_probe
        self._clock = clock
        self._rng = rng or random.Random()
        self.probe_interval = probe_interval

        self._guard = TransitionGuard()
        self._fire_lock = threading.Lock()
        self._fired = False
        self._active_at: Optional[float] = None
        self.selected = None
        self.triggered_progress: Optional[float] = None
        self.disruption_result = None
        self.recovery_time_ms: Optional[float] = None

        if aggregator is not None:
            aggregator.declare(CHAOS_EVENTS, MetricKind.COUNTER)
            aggregator.declare(RECOVERY_TIME, MetricKind.TREND)

    @property
    def state(self) -> ChaosState:
        return self._guard.state

    @property
    def fired(self) -> bool:
        with self._fire_lock:
            return self._fired

    def try_trigger(self, progress: float) -> bool:
        """
        Claim the Idle -> Active transition.

        Returns True for exactly one caller per run, and only while
        ``progress`` is inside the window. The winner must then call
        ``inject()`` (``trigger()`` does both).
        """
        if not self.window.contains(progress):
            return False
        with self._fire_lock:
            if self._fired or not self.strategies:
                return False
            if not self._guard.compare_and_set(ChaosState.IDLE, ChaosState.ACTIVE):
                return False
            self._fired = True
            self._active_at = self._clock()
            self.selected = self._rng.choice(self.strategies)
            self.triggered_progress = progress

        if self.aggregator is not None:
            self.aggregator.add(CHAOS_EVENTS, 1)
        logger.info(
            f"Chaos triggered at {self.window.unit}={progress:g}: {self.selected.name}"
        )
        events.info("chaos_triggered", strategy=self.selected.name, progress=progress, unit=self.window.unit)
        return True

    async def inject(self) -> None:
        """Issue the selected disruption, then move Active -> Recovering."""
        if self.state is not ChaosState.ACTIVE or self.selected is None:
            return
        self.disruption_result = await self.selected.apply(self.client, self.aggregator)
        if self._guard.compare_and_set(ChaosState.ACTIVE, ChaosState.RECOVERING):
            logger.info(f"Chaos '{self.selected.name}' issued; monitoring recovery")
            events.info("chaos_recovering", strategy=self.selected.name)

    async def trigger(self, progress: float) -> bool:
        """``try_trigger`` and, when won, ``inject``."""
        if not self.try_trigger(progress):
            return False
        await self.inject()
        return True

    def report_health(self, healthy: bool) -> bool:
        """
        Report a health observation.

        The first healthy report while Recovering moves the controller to
        Idle and records ``recovery_time`` in milliseconds since the
        disruption started. Returns True only for that report.
        """
        if not healthy:
            return False
        if not self._guard.compare_and_set(ChaosState.RECOVERING, ChaosState.IDLE):
            return False
        self.recovery_time_ms = (self._clock() - self._active_at) * 1000
        if self.aggregator is not None:
            self.aggregator.observe(RECOVERY_TIME, self.recovery_time_ms)
        logger.info(f"System recovered in {self.recovery_time_ms:.0f}ms")
        events.info("chaos_recovered", recovery_time_ms=round(self.recovery_time_ms, 1))
        return True

    async def probe(self) -> bool:
        """Run the health probe once and report its result."""
        healthy = await self._probe_health()
        return self.report_health(healthy)

    async def _probe_health(self) -> bool:
        """Run the health probe; a probe that raises counts as unhealthy."""
        try:
            if self._health_probe is not None:
                return bool(await self._health_probe())
            if self.client is None:
                return False
            response = await self.client.health(label="chaos health probe")
            return response.status == 200
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(
                f"[{ErrorCode.HEALTH_PROBE_FAILED}] Health probe failed: {type(e).__name__}: {e}"
            )
            record_error_code(ErrorCode.HEALTH_PROBE_FAILED, component="chaos_controller")
            return False

    async def run(self, progress_fn: Callable[[], float], stop_event: asyncio.Event) -> None:
        """
        Supervisor loop: fire the trigger when the window opens and probe
        health while recovering, every ``probe_interval`` seconds, until
        ``stop_event`` is set.
        """
        while not stop_event.is_set():
            state = self.state
            if state is ChaosState.IDLE and not self.fired:
                await self.trigger(progress_fn())
            elif state is ChaosState.RECOVERING:
                await self.probe()
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.probe_interval)
            except asyncio.TimeoutError:
                pass

    def finalize(self) -> bool:
        """
        Close out the run.

        Returns False (and records no recovery sample) when the disruption
        fired but the target never reported healthy again.
        """
        state = self.state
        if state is ChaosState.IDLE:
            if not self._fired:
                logger.info("Chaos window never reached; no disruption issued")
            return True
        logger.warning(
            f"[{ErrorCode.CHAOS_UNRECOVERED}] Run ended while chaos was {state.value}; "
            f"no recovery_time recorded"
        )
        record_error_code(ErrorCode.CHAOS_UNRECOVERED, component="chaos_controller")
        events.warning("chaos_unrecovered", state=state.value)
        return False

    def summary(self) -> Dict[str, Any]:
        return {
            "triggered": self.fired,
            "strategy": self.selected.name if self.selected else None,
            "window": {"unit": self.window.unit, "start": self.window.start, "end": self.window.end},
            "triggered_at": self.triggered_progress,
            "state": self.state.value,
            "recovered": self.recovery_time_ms is not None,
            "recovery_time_ms": self.recovery_time_ms,
            "disruption": self.disruption_result.to_dict() if self.disruption_result else None,
        }
