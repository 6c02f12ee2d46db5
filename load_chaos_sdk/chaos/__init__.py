"""Chaos controller and disruption strategies."""

from load_chaos_sdk.chaos.controller import ChaosController, ChaosState, ChaosWindow, TransitionGuard
from load_chaos_sdk.chaos.factory import DisruptionFactory

__all__ = [
    "ChaosController",
    "ChaosState",
    "ChaosWindow",
    "TransitionGuard",
    "DisruptionFactory",
]
