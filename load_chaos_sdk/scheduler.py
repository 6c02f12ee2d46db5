"""
Stage Scheduler - converts a ramp profile into a live concurrency signal.

A run declares an ordered list of stages, each a (duration, target) pair.
Within a stage the desired concurrency moves linearly from the previous
stage's target (0 for the first stage) to the stage's own target. The
scheduler only exposes that signal; the runner decides how to start and
stop virtual users to follow it.

Example:
    scheduler = StageScheduler([Stage(30, 10), Stage(30, 0)])
    scheduler.mark_ready()
    scheduler.target_at(15.0)   # 5.0
"""

import re
import threading
from dataclasses import dataclass
from typing import List, Optional, Sequence, Union

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")


def parse_duration(value: Union[str, int, float]) -> float:
    """
    Parse a duration into seconds.

    Accepts plain numbers (seconds) and k6-style strings such as ``"30s"``,
    ``"2m"``, ``"1h"``, ``"1m30s"`` or ``"500ms"``.

    Raises:
        ValueError: If the value is negative or not a recognised duration.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = value.strip().lower()
        try:
            seconds = float(text)
        except ValueError:
            parts = _DURATION_PART.findall(text)
            if not parts or "".join(n + u for n, u in parts) != text:
                raise ValueError(f"Invalid duration: {value!r}")
            factors = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}
            seconds = sum(float(n) * factors[u] for n, u in parts)
    if seconds < 0:
        raise ValueError(f"Duration must be non-negative: {value!r}")
    return seconds


@dataclass(frozen=True)
class Stage:
    """One step of a ramp profile."""
    duration: float
    target: int

    def __post_init__(self) -> None:
        if self.duration < 0:
            raise ValueError("stage duration must be non-negative")
        if self.target < 0:
            raise ValueError("stage target must be non-negative")


class StageScheduler:
    """
    Time-based ramp profile.

    The scheduler reports 0 until ``mark_ready()`` is called, so that a
    runner polling it before provisioning completes never starts users.
    """

    def __init__(self, stages: Sequence[Stage]):
        self.stages: List[Stage] = list(stages)
        self._boundaries: List[float] = []
        elapsed = 0.0
        for stage in self.stages:
            elapsed += stage.duration
            self._boundaries.append(elapsed)
        self._ready = threading.Event()

    @property
    def total_duration(self) -> float:
        """Cumulative duration of all stages, in seconds."""
        return self._boundaries[-1] if self._boundaries else 0.0

    @property
    def max_target(self) -> int:
        return max((s.target for s in self.stages), default=0)

    @property
    def ready(self) -> bool:
        return self._ready.is_set()

    def mark_ready(self) -> None:
        """Enable the signal once setup has completed."""
        self._ready.set()

    def stage_index_at(self, t: float) -> Optional[int]:
        """
        Return the index of the stage containing ``t``, or None outside the
        profile. Stage intervals are half-open except the last, which includes
        its end.
        """
        if not self.stages or t < 0 or t > self.total_duration:
            return None
        for index, end in enumerate(self._boundaries):
            if t < end:
                return index
        return len(self.stages) - 1

    def target_at(self, t: float) -> float:
        """Desired concurrency at elapsed run time ``t`` (seconds)."""
        if not self._ready.is_set():
            return 0.0
        index = self.stage_index_at(t)
        if index is None:
            return 0.0

        stage = self.stages[index]
        start_value = float(self.stages[index - 1].target) if index > 0 else 0.0
        end_value = float(stage.target)
        if stage.duration == 0 or start_value == end_value:
            return end_value

        stage_start = self._boundaries[index] - stage.duration
        progress = (t - stage_start) / stage.duration
        progress = min(max(progress, 0.0), 1.0)
        return start_value + (end_value - start_value) * progress

    def concurrency_at(self, t: float) -> int:
        """The signal rounded to a whole number of virtual users."""
        return int(round(self.target_at(t)))

    def __repr__(self) -> str:
        return f"StageScheduler(stages={len(self.stages)}, total={self.total_duration:.1f}s)"
