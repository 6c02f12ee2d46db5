"""Scenario model, dispatcher and built-in scenarios."""

from load_chaos_sdk.scenarios.base import (
    Check,
    Outcome,
    Sample,
    Scenario,
    ScenarioContext,
    ScenarioDispatcher,
    StatusPolicy,
    Timing,
    select_scenario,
)
from load_chaos_sdk.scenarios.factory import ScenarioFactory

__all__ = [
    "Check",
    "Outcome",
    "Sample",
    "Scenario",
    "ScenarioContext",
    "ScenarioDispatcher",
    "StatusPolicy",
    "Timing",
    "select_scenario",
    "ScenarioFactory",
]
