"""
Load Chaos SDK - Load generation and chaos injection for HTTP services

This SDK drives a target service with ramping virtual users running weighted
scenarios, injects one disruption per run inside a configured window,
measures recovery through the target's health probe and evaluates declared
thresholds into a pass/fail verdict.
"""

import importlib
from typing import TYPE_CHECKING

__version__ = "0.1.0"

if TYPE_CHECKING:
    from load_chaos_sdk.config_loader import (
        load_run_plan,
        load_builtin_plan,
        parse_run_plan,
        RunPlan,
        TargetConfig,
        ScenarioConfig,
    )
    from load_chaos_sdk.runner.engine import LoadTestRunner, RunResult
    from load_chaos_sdk.metrics.aggregator import MetricsAggregator, MetricKind
    from load_chaos_sdk.scheduler import Stage, StageScheduler
    from load_chaos_sdk.scenarios.base import Scenario, ScenarioDispatcher, Outcome
    from load_chaos_sdk.scenarios.factory import ScenarioFactory
    from load_chaos_sdk.chaos.controller import ChaosController, ChaosState
    from load_chaos_sdk.provisioner import TokenPool, provision_accounts

_LAZY_IMPORTS = {
    "load_run_plan": ("load_chaos_sdk.config_loader", "load_run_plan"),
    "load_builtin_plan": ("load_chaos_sdk.config_loader", "load_builtin_plan"),
    "parse_run_plan": ("load_chaos_sdk.config_loader", "parse_run_plan"),
    "RunPlan": ("load_chaos_sdk.config_loader", "RunPlan"),
    "TargetConfig": ("load_chaos_sdk.config_loader", "TargetConfig"),
    "ScenarioConfig": ("load_chaos_sdk.config_loader", "ScenarioConfig"),
    "LoadTestRunner": ("load_chaos_sdk.runner.engine", "LoadTestRunner"),
    "RunResult": ("load_chaos_sdk.runner.engine", "RunResult"),
    "MetricsAggregator": ("load_chaos_sdk.metrics.aggregator", "MetricsAggregator"),
    "MetricKind": ("load_chaos_sdk.metrics.aggregator", "MetricKind"),
    "Stage": ("load_chaos_sdk.scheduler", "Stage"),
    "StageScheduler": ("load_chaos_sdk.scheduler", "StageScheduler"),
    "Scenario": ("load_chaos_sdk.scenarios.base", "Scenario"),
    "ScenarioDispatcher": ("load_chaos_sdk.scenarios.base", "ScenarioDispatcher"),
    "Outcome": ("load_chaos_sdk.scenarios.base", "Outcome"),
    "ScenarioFactory": ("load_chaos_sdk.scenarios.factory", "ScenarioFactory"),
    "ChaosController": ("load_chaos_sdk.chaos.controller", "ChaosController"),
    "ChaosState": ("load_chaos_sdk.chaos.controller", "ChaosState"),
    "TokenPool": ("load_chaos_sdk.provisioner", "TokenPool"),
    "provision_accounts": ("load_chaos_sdk.provisioner", "provision_accounts"),
}


def __getattr__(name: str):
    if name in _LAZY_IMPORTS:
        module_name, attr_name = _LAZY_IMPORTS[name]
        module = importlib.import_module(module_name)
        value = getattr(module, attr_name)
        globals()[name] = value
        return value
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


def __dir__() -> list[str]:
    return sorted(list(globals().keys()) + list(_LAZY_IMPORTS.keys()))

__all__ = [
    "load_run_plan",
    "load_builtin_plan",
    "parse_run_plan",
    "RunPlan",
    "TargetConfig",
    "ScenarioConfig",
    "LoadTestRunner",
    "RunResult",
    "MetricsAggregator",
    "MetricKind",
    "Stage",
    "StageScheduler",
    "Scenario",
    "ScenarioDispatcher",
    "Outcome",
    "ScenarioFactory",
    "ChaosController",
    "ChaosState",
    "TokenPool",
    "provision_accounts",
    "__version__",
]
