"""
Public lightweight SDK entrypoint.
"""

from load_chaos_sdk import LoadTestRunner, RunPlan, load_builtin_plan, load_run_plan, Scenario, ScenarioFactory

__all__ = ["LoadTestRunner", "RunPlan", "load_builtin_plan", "load_run_plan", "Scenario", "ScenarioFactory"]
