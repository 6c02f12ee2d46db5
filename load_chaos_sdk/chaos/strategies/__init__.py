"""Disruption strategies."""

from load_chaos_sdk.chaos.strategies.base import BaseDisruption, DisruptionResult
from load_chaos_sdk.chaos.strategies.amplification import (
    BatchLatencyStrategy,
    PayloadAmplificationStrategy,
    ReadAmplificationStrategy,
)

__all__ = [
    "BaseDisruption",
    "DisruptionResult",
    "BatchLatencyStrategy",
    "PayloadAmplificationStrategy",
    "ReadAmplificationStrategy",
]
