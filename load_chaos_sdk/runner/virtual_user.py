"""
Virtual User Runtime.

A virtual user loops until told to stop: pick a token, dispatch one scenario,
fold the outcome into the metrics, pause for the think time, and check the
stop signal again. A stop request never interrupts an in-flight call; it only
prevents the next iteration and cuts the think-time pause short.
"""

import asyncio
import random
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from load_chaos_sdk.common.logger import get_logger
from load_chaos_sdk.metrics.aggregator import ITERATION_DURATION, ITERATIONS, MetricKind

logger = get_logger(__name__)


@dataclass(frozen=True)
class ThinkTime:
    """
    Pause between iterations.

    Modes: ``fixed`` (always ``value`` seconds), ``uniform`` (random in
    ``[min, max)``) and ``none``.
    """
    mode: str = "fixed"
    value: float = 1.0
    min: float = 0.0
    max: float = 0.0

    def __post_init__(self) -> None:
        if self.mode not in ("fixed", "uniform", "none"):
            raise ValueError(f"Unknown think time mode: {self.mode!r}")
        if self.mode == "uniform" and self.max < self.min:
            raise ValueError("uniform think time requires max >= min")

    @classmethod
    def from_config(cls, config) -> "ThinkTime":
        return cls(mode=config.mode, value=config.value, min=config.min, max=config.max)

    def next(self, rng: random.Random) -> float:
        if self.mode == "none":
            return 0.0
        if self.mode == "uniform":
            return rng.uniform(self.min, self.max)
        return self.value


class VirtualUser:
    """
    One simulated client.

    Args:
        vu_id: Identifier (1-based, in start order).
        dispatcher: ScenarioDispatcher shared by all users.
        token_pool: TokenPool shared by all users.
        aggregator: MetricsAggregator shared by all users.
        think_time: ThinkTime policy.
        rng: This user's random source.
        on_iteration: Optional coroutine function awaited after every
            iteration (used by the runner to count iterations and fire the
            chaos trigger).
    """

    def __init__(
        self,
        vu_id: int,
        dispatcher,
        token_pool,
        aggregator,
        think_time: ThinkTime,
        rng: Optional[random.Random] = None,
        on_iteration: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self.vu_id = vu_id
        self.dispatcher = dispatcher
        self.token_pool = token_pool
        self.aggregator = aggregator
        self.think_time = think_time
        self.rng = rng or random.Random()
        self.on_iteration = on_iteration
        self.iterations = 0
        self._stop = asyncio.Event()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        """Ask the user to exit after its current iteration."""
        self._stop.set()

    async def run(self) -> None:
        logger.debug(f"VU {self.vu_id} started")
        while not self._stop.is_set():
            await self.run_iteration()
            delay = self.think_time.next(self.rng)
            if delay > 0 and not self._stop.is_set():
                await self._think(delay)
            else:
                # let the supervisor and other users run between iterations
                await asyncio.sleep(0)
        logger.debug(f"VU {self.vu_id} stopped after {self.iterations} iterations")

    async def run_iteration(self) -> None:
        """Pick a token, dispatch one scenario and record its outcome."""
        start = time.perf_counter()
        token = self.token_pool.pick(self.rng)
        outcome = await self.dispatcher.dispatch(
            self.rng.random(),
            token,
            vu_id=self.vu_id,
            iteration=self.iterations,
            rng=self.rng,
            stop_event=self._stop,
        )
        self.aggregator.record_outcome(outcome)
        self.aggregator.record(ITERATIONS, MetricKind.COUNTER, 1)
        self.aggregator.record(
            ITERATION_DURATION, MetricKind.TREND, (time.perf_counter() - start) * 1000
        )
        self.iterations += 1
        if self.on_iteration is not None:
            await self.on_iteration()

    async def _think(self, delay: float) -> None:
        """Sleep for ``delay`` seconds, waking early if stopped."""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    def __repr__(self) -> str:
        return f"VirtualUser(id={self.vu_id}, iterations={self.iterations}, stopping={self.stopping})"
